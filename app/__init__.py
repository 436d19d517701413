"""
Hospital Appointment Service

A FastAPI service that manages doctors' weekly availability and the
appointment booking workflow: conflict checks, slot listings, cancellation,
rescheduling and status tracking.
"""

__version__ = "1.0.0"
