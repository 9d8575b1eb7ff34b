"""Appointment domain - booking lifecycle, availability and slot conflicts"""

from .service import AppointmentService

__all__ = ["AppointmentService"]
