"""Shared validation utilities"""

import re
from datetime import date, datetime, timedelta, timezone

from ..config import CLINIC_UTC_OFFSET_HOURS

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

CLINIC_TIMEZONE = timezone(timedelta(hours=CLINIC_UTC_OFFSET_HOURS))

WEEKDAY_NAMES = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


def normalize_time(value: str) -> str:
    """
    Validate an HH:mm time and zero-pad it.

    Args:
        value: Time string such as "9:00" or "09:00"

    Returns:
        Zero-padded time ("09:00")

    Raises:
        ValueError: If the value is not a 24h HH:mm time
    """
    match = TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError("Invalid time format (HH:mm)")
    hours, minutes = match.groups()
    return f"{int(hours):02d}:{minutes}"


def time_to_minutes(value: str) -> int:
    """Minutes since midnight for an HH:mm string"""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def windows_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """True when two half-open [start, end) time windows intersect"""
    return time_to_minutes(start_a) < time_to_minutes(end_b) and time_to_minutes(
        start_b
    ) < time_to_minutes(end_a)


def weekday_name(day: date) -> str:
    """Upper-case English weekday, matching ClinicDoctor.working_days entries"""
    return WEEKDAY_NAMES[day.weekday()]


def validate_time_window(start_time: str, end_time: str, min_minutes: int = 15, max_minutes: int = 240):
    """
    Check that an appointment window is ordered and of a bookable length.

    Raises:
        ValueError: If end is not after start or the duration is out of range
    """
    duration = time_to_minutes(end_time) - time_to_minutes(start_time)
    if duration <= 0:
        raise ValueError("End time must be after start time")
    if duration < min_minutes or duration > max_minutes:
        raise ValueError(f"Appointment must last between {min_minutes} and {max_minutes} minutes")


def validate_not_past(day: date) -> date:
    if day < clinic_today():
        raise ValueError("Date cannot be in the past")
    return day


def clinic_now() -> datetime:
    """Current time at the clinics, independent of the server's timezone"""
    return datetime.now(CLINIC_TIMEZONE)


def clinic_today() -> date:
    return clinic_now().date()
