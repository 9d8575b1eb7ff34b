"""Slot arithmetic over HH:mm strings"""

from typing import Iterable

from ...shared.validators import minutes_to_time, time_to_minutes, windows_overlap

TimeWindow = tuple[str, str]


def generate_time_slots(start_time: str, end_time: str, duration_minutes: int) -> list[TimeWindow]:
    """
    Split a working-hours window into consecutive fixed-length slots.

    A trailing window shorter than ``duration_minutes`` is dropped, so
    09:00-10:45 with 30 minute slots yields 09:00, 09:30 and 10:00 starts.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    start = time_to_minutes(start_time)
    end = time_to_minutes(end_time)
    slots = []
    while start + duration_minutes <= end:
        slots.append((minutes_to_time(start), minutes_to_time(start + duration_minutes)))
        start += duration_minutes
    return slots


def remove_booked(slots: Iterable[TimeWindow], booked: Iterable[TimeWindow]) -> list[TimeWindow]:
    """Drop every slot that overlaps a booked window"""
    booked = list(booked)
    return [
        (start, end)
        for start, end in slots
        if not any(windows_overlap(start, end, b_start, b_end) for b_start, b_end in booked)
    ]


def fits_within(start_time: str, end_time: str, window_start: str, window_end: str) -> bool:
    """True when [start_time, end_time) lies inside [window_start, window_end)"""
    return time_to_minutes(window_start) <= time_to_minutes(start_time) and time_to_minutes(
        end_time
    ) <= time_to_minutes(window_end)
