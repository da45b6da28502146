"""Formatting utilities for display values."""

from datetime import datetime
from typing import Optional

from shop_floor.utils.constants import WORK_ORDER_STATUS_LABELS


def format_progress(progress: int) -> str:
    """Format a 0-100 progress value as a percentage."""
    return f"{progress}%"


def format_status(status: str) -> str:
    """Human label for a work order status ("InProgress" -> "In Progress")."""
    return WORK_ORDER_STATUS_LABELS.get(status, status)


def format_timestamp(value: Optional[datetime]) -> str:
    """Format a timestamp for a report line, '-' when unknown."""
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")
