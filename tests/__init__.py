"""
Test suite for the Hospital Appointment Service.

Contains unit tests for the scheduling engine and workflows, and API tests
driven through FastAPI's TestClient.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
