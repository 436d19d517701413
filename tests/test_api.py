from datetime import date, time, timedelta

from app.models.appointment import Appointment
from app.services.events import APPOINTMENT_BOOKED, APPOINTMENT_CANCELLED, APPOINTMENT_REMINDER
from app.services.scheduling import DayOfWeek

from tests.conftest import (
    ADMIN_ID, DOCTOR_ID, OTHER_DOCTOR_ID, OTHER_PATIENT_ID, PATIENT_ID, auth_headers, bearer,
    encode_token, upcoming
)

MONDAY = upcoming(DayOfWeek.MONDAY)
TUESDAY = MONDAY + timedelta(days=1)

appointment_data = {
    "doctor_id": DOCTOR_ID,
    "appointment_date": MONDAY.isoformat(),
    "appointment_time": "10:00:00",
    "duration_minutes": 30,
    "appointment_type": "consultation",
    "reason_for_visit": "Persistent cough"
}


def create(client, headers, **overrides):
    return client.post("/api/v1/appointments", json={**appointment_data, **overrides}, headers=headers)


class TestHealth:

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_api_info(self, client):
        response = client.get("/api/v1/info")
        assert response.status_code == 200
        assert response.json()["endpoints"]["slots"] == "/api/v1/availability/slots"


class TestAuthentication:
    """Gateway-issued bearer tokens and role checks."""

    def test_missing_token(self, client):
        response = client.get("/api/v1/appointments/patient")
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.get(
            "/api/v1/appointments/patient", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_wrong_role(self, client, doctor_headers):
        response = client.get("/api/v1/appointments/patient", headers=doctor_headers)
        assert response.status_code == 403

    def test_non_numeric_subject(self, client):
        response = client.get(
            "/api/v1/appointments/patient", headers=bearer({"sub": "someone@example.com", "role": "patient"})
        )
        assert response.status_code == 401

    def test_upstream_token_with_user_id_claim(self, client, open_week):
        """Username subject, numeric userId, ROLE_-prefixed authorities and no token_type."""
        headers = bearer({"sub": "jane@example.com", "userId": PATIENT_ID, "roles": ["ROLE_PATIENT"]})

        response = client.get("/api/v1/availability/slots", params={
            "doctor_id": DOCTOR_ID, "date": MONDAY.isoformat(), "duration": 30
        }, headers=headers)
        assert response.status_code == 200

        response = create(client, headers)
        assert response.status_code == 201
        assert response.json()["patient_id"] == PATIENT_ID

    def test_user_id_claim_wins_over_numeric_subject(self, client, open_week):
        headers = bearer({"sub": str(OTHER_PATIENT_ID), "userId": PATIENT_ID, "roles": ["ROLE_PATIENT"]})

        response = create(client, headers)
        assert response.json()["patient_id"] == PATIENT_ID

    def test_prefixed_roles_are_honoured(self, client):
        headers = bearer({"sub": "dr.house", "userId": DOCTOR_ID, "roles": ["ROLE_DOCTOR"]})

        response = client.get("/api/v1/appointments/doctor", headers=headers)
        assert response.status_code == 200

        response = client.get("/api/v1/appointments/patient", headers=headers)
        assert response.status_code == 403

    def test_refresh_token_rejected(self, client):
        headers = bearer({"sub": str(PATIENT_ID), "role": "patient", "token_type": "refresh"})

        response = client.get("/api/v1/appointments/patient", headers=headers)
        assert response.status_code == 401

    def test_malformed_claims_rejected(self, client):
        headers = bearer({"sub": str(PATIENT_ID), "roles": "patient", "token_type": "access"})

        response = client.get("/api/v1/appointments/patient", headers=headers)
        assert response.status_code == 401

    def test_expired_token_rejected(self, client):
        token = encode_token({"sub": str(PATIENT_ID), "role": "patient"}, expires_delta=timedelta(minutes=-1))
        response = client.get("/api/v1/appointments/patient", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestAvailabilityEndpoints:

    def test_set_single_day(self, client, doctor_headers, redis_double):
        response = client.post("/api/v1/availability", json={
            "day_of_week": "MONDAY",
            "is_available": True,
            "start_time": "09:00:00",
            "end_time": "12:00:00"
        }, headers=doctor_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["doctor_id"] == DOCTOR_ID
        assert data["day_of_week"] == "monday"
        assert data["start_time"] == "09:00:00"
        assert "doctor.availability.updated" in redis_double.channels()

    def test_invalid_window_rejected(self, client, doctor_headers):
        response = client.post("/api/v1/availability", json={
            "day_of_week": "monday",
            "start_time": "12:00:00",
            "end_time": "09:00:00"
        }, headers=doctor_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"

    def test_weekly_schedule_and_listing(self, client, doctor_headers, patient_headers):
        response = client.put("/api/v1/availability/weekly", json={
            "weekly_schedule": [
                {"day_of_week": "monday", "start_time": "09:00:00", "end_time": "17:00:00"},
                {"day_of_week": "tuesday", "start_time": "13:00:00", "end_time": "17:00:00"},
                {"day_of_week": "sunday", "is_available": False}
            ]
        }, headers=doctor_headers)
        assert response.status_code == 200
        assert [row["day_of_week"] for row in response.json()] == ["monday", "tuesday", "sunday"]

        response = client.get(f"/api/v1/availability/{DOCTOR_ID}", headers=patient_headers)
        assert response.status_code == 200
        assert len(response.json()) == 3

        response = client.get(
            f"/api/v1/availability/{DOCTOR_ID}/date/{upcoming(DayOfWeek.SUNDAY).isoformat()}",
            headers=patient_headers
        )
        assert response.status_code == 409
        assert response.json()["error"] == "Not Available"

        response = client.get(
            f"/api/v1/availability/{DOCTOR_ID}/date/{upcoming(DayOfWeek.WEDNESDAY).isoformat()}",
            headers=patient_headers
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Not Found"

    def test_duplicate_days_rejected(self, client, doctor_headers):
        response = client.put("/api/v1/availability/weekly", json={
            "weekly_schedule": [
                {"day_of_week": "monday", "start_time": "09:00:00", "end_time": "17:00:00"},
                {"day_of_week": "monday", "is_available": False}
            ]
        }, headers=doctor_headers)
        assert response.status_code == 422

    def test_doctor_cannot_edit_another_doctor(self, client, doctor_headers):
        response = client.post("/api/v1/availability", json={
            "doctor_id": OTHER_DOCTOR_ID,
            "day_of_week": "monday",
            "start_time": "09:00:00",
            "end_time": "17:00:00"
        }, headers=doctor_headers)
        assert response.status_code == 403

    def test_admin_can_edit_any_doctor(self, client, admin_headers):
        response = client.post("/api/v1/availability", json={
            "doctor_id": OTHER_DOCTOR_ID,
            "day_of_week": "monday",
            "start_time": "09:00:00",
            "end_time": "17:00:00"
        }, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["doctor_id"] == OTHER_DOCTOR_ID

    def test_patient_cannot_set_availability(self, client, patient_headers):
        response = client.post("/api/v1/availability", json={
            "day_of_week": "monday", "start_time": "09:00:00", "end_time": "17:00:00"
        }, headers=patient_headers)
        assert response.status_code == 403

    def test_slots(self, client, open_week, patient_headers):
        create(client, patient_headers)

        response = client.get("/api/v1/availability/slots", params={
            "doctor_id": DOCTOR_ID, "date": MONDAY.isoformat(), "duration": 30
        }, headers=patient_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["duration_minutes"] == 30
        assert len(data["slots"]) == 15
        assert "10:00:00" not in data["slots"]
        assert data["slots"][0] == "09:00:00"

    def test_slots_reject_bad_duration(self, client, open_week, patient_headers):
        response = client.get("/api/v1/availability/slots", params={
            "doctor_id": DOCTOR_ID, "date": MONDAY.isoformat(), "duration": 5
        }, headers=patient_headers)
        assert response.status_code == 422


class TestAppointmentEndpoints:

    def test_create_appointment(self, client, open_week, patient_headers, redis_double):
        response = create(client, patient_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["patient_id"] == PATIENT_ID
        assert data["doctor_id"] == DOCTOR_ID
        assert data["status"] == "scheduled"
        assert data["end_datetime"] == f"{MONDAY.isoformat()}T10:30:00"
        assert len(redis_double.payloads(APPOINTMENT_BOOKED)) == 1

    def test_patient_id_in_body_ignored_for_patients(self, client, open_week, patient_headers):
        response = create(client, patient_headers, patient_id=OTHER_PATIENT_ID)
        assert response.json()["patient_id"] == PATIENT_ID

    def test_admin_books_for_patient(self, client, open_week, admin_headers):
        response = create(client, admin_headers, patient_id=OTHER_PATIENT_ID)

        assert response.status_code == 201
        assert response.json()["patient_id"] == OTHER_PATIENT_ID
        assert response.json()["created_by"] == ADMIN_ID

    def test_conflict_envelope(self, client, open_week, patient_headers):
        create(client, patient_headers)

        response = create(client, auth_headers(OTHER_PATIENT_ID, "patient"), appointment_time="10:15:00")

        assert response.status_code == 409
        assert response.json() == {
            "error": "Slot Conflict",
            "message": "Time slot conflicts with existing appointment",
            "path": "/api/v1/appointments"
        }

    def test_outside_availability(self, client, open_week, patient_headers):
        response = create(client, patient_headers, appointment_time="17:00:00")

        assert response.status_code == 409
        assert response.json()["error"] == "Not Available"

    def test_past_date(self, client, open_week, patient_headers):
        response = create(client, patient_headers, appointment_date=(date.today() - timedelta(days=1)).isoformat())
        assert response.status_code == 422

    def test_get_own_appointment_only(self, client, open_week, patient_headers, doctor_headers):
        appointment_id = create(client, patient_headers).json()["id"]

        assert client.get(f"/api/v1/appointments/{appointment_id}", headers=patient_headers).status_code == 200
        assert client.get(f"/api/v1/appointments/{appointment_id}", headers=doctor_headers).status_code == 200

        response = client.get(
            f"/api/v1/appointments/{appointment_id}", headers=auth_headers(OTHER_PATIENT_ID, "patient")
        )
        assert response.status_code == 403

    def test_unknown_appointment(self, client, patient_headers):
        response = client.get("/api/v1/appointments/999", headers=patient_headers)

        assert response.status_code == 404
        assert response.json()["message"] == "Appointment not found with id: 999"

    def test_cancel_with_reason(self, client, open_week, patient_headers, redis_double):
        appointment_id = create(client, patient_headers).json()["id"]

        response = client.request(
            "DELETE", f"/api/v1/appointments/{appointment_id}",
            json={"cancellation_reason": "Feeling better"}, headers=patient_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "Feeling better"
        assert redis_double.payloads(APPOINTMENT_CANCELLED)[0]["cancelledBy"] == PATIENT_ID

        response = client.delete(f"/api/v1/appointments/{appointment_id}", headers=patient_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "Invalid State"

    def test_cancel_without_body(self, client, open_week, patient_headers):
        appointment_id = create(client, patient_headers).json()["id"]

        response = client.delete(f"/api/v1/appointments/{appointment_id}", headers=patient_headers)

        assert response.status_code == 200
        assert response.json()["cancellation_reason"] == "No reason provided"

    def test_other_patient_cannot_cancel(self, client, open_week, patient_headers):
        appointment_id = create(client, patient_headers).json()["id"]

        response = client.delete(
            f"/api/v1/appointments/{appointment_id}", headers=auth_headers(OTHER_PATIENT_ID, "patient")
        )
        assert response.status_code == 403

    def test_reschedule(self, client, open_week, patient_headers):
        appointment_id = create(client, patient_headers).json()["id"]

        response = client.put(f"/api/v1/appointments/{appointment_id}/reschedule", json={
            "new_appointment_date": TUESDAY.isoformat(),
            "new_appointment_time": "11:00:00",
            "reschedule_reason": "Work meeting"
        }, headers=patient_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "rescheduled"
        assert data["appointment_date"] == TUESDAY.isoformat()
        assert "Rescheduled from" in data["notes"]

    def test_status_update(self, client, open_week, patient_headers, doctor_headers):
        appointment_id = create(client, patient_headers).json()["id"]

        response = client.put(f"/api/v1/appointments/{appointment_id}/status", json={
            "status": "COMPLETED", "notes": "Prescribed rest"
        }, headers=doctor_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = client.put(f"/api/v1/appointments/{appointment_id}/status", json={
            "status": "archived"
        }, headers=doctor_headers)
        assert response.status_code == 422

        response = client.put(f"/api/v1/appointments/{appointment_id}/status", json={
            "status": "confirmed"
        }, headers=patient_headers)
        assert response.status_code == 403

    def test_patient_history(self, client, open_week, patient_headers):
        create(client, patient_headers)
        create(client, patient_headers, appointment_date=TUESDAY.isoformat())

        response = client.get("/api/v1/appointments/patient", params={"size": 1}, headers=patient_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_elements"] == 2
        assert data["total_pages"] == 2
        assert data["has_next"] is True
        assert data["has_previous"] is False
        assert data["items"][0]["appointment_date"] == TUESDAY.isoformat()

    def test_doctor_schedule_for_day(self, client, open_week, patient_headers, doctor_headers):
        create(client, patient_headers)
        create(client, patient_headers, appointment_date=TUESDAY.isoformat())

        response = client.get(
            "/api/v1/appointments/doctor", params={"date": MONDAY.isoformat()}, headers=doctor_headers
        )

        assert response.status_code == 200
        assert [a["appointment_date"] for a in response.json()] == [MONDAY.isoformat()]

    def test_staff_listing(self, client, open_week, patient_headers, admin_headers):
        create(client, patient_headers)
        create(client, patient_headers, appointment_time="11:00:00")

        response = client.get("/api/v1/appointments", params={
            "doctor_id": DOCTOR_ID, "status": "scheduled"
        }, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["total_elements"] == 2

        assert client.get("/api/v1/appointments", headers=patient_headers).status_code == 403

    def test_statistics(self, client, open_week, patient_headers, admin_headers):
        appointment_id = create(client, patient_headers).json()["id"]
        create(client, patient_headers, appointment_time="11:00:00")
        client.delete(f"/api/v1/appointments/{appointment_id}", headers=patient_headers)

        response = client.get("/api/v1/appointments/statistics", params={
            "from_date": date.today().isoformat(),
            "to_date": (date.today() + timedelta(days=14)).isoformat(),
            "doctor_id": DOCTOR_ID
        }, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_appointments"] == 2
        assert data["scheduled_count"] == 1
        assert data["cancelled_count"] == 1

    def test_reminder_dispatch(self, client, db, patient_headers, admin_headers, redis_double):
        db.add(Appointment(
            patient_id=PATIENT_ID, doctor_id=DOCTOR_ID, appointment_date=date.today() + timedelta(days=1),
            appointment_time=time(10, 0), duration_minutes=30
        ))
        db.commit()

        response = client.post(
            "/api/v1/appointments/reminders/dispatch", params={"hours": 48}, headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["published"] == 1
        assert len(redis_double.payloads(APPOINTMENT_REMINDER)) == 1

        response = client.post("/api/v1/appointments/reminders/dispatch", headers=patient_headers)
        assert response.status_code == 403
