"""Validation rules for operator input. Each returns a list of error strings."""

from typing import Any, Optional

from shop_floor.store.models import PartRequestInput, WorkOrderDetail
from shop_floor.utils.constants import STATION_UPDATE_STATUSES


def _is_positive_int(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and value > 0
    )


def validate_work_order_input(product_number: str, quantity: Any) -> list[str]:
    """Validate a work order creation request."""
    errors = []
    if not (product_number or "").strip():
        errors.append("product_number is required")
    if not _is_positive_int(quantity):
        errors.append("quantity must be a positive integer")
    return errors


def validate_part_request(data: PartRequestInput,
                          detail: Optional[WorkOrderDetail]) -> list[str]:
    """Validate a part request against the loaded unit/station detail.

    Unit and station must be ones present in the detail; free-text numbers
    that the loaded work order does not have are rejected.
    """
    errors = []

    if not (data.work_order_id or "").strip():
        errors.append("work_order_id is required")

    if not (data.part_number or "").strip():
        errors.append("part_number is required")

    if not _is_positive_int(data.quantity_requested):
        errors.append("quantity_requested must be a positive integer")

    if detail is None or detail.work_order_id != data.work_order_id:
        errors.append(
            f"Detail for {data.work_order_id or 'the work order'} is not loaded"
        )
        return errors

    unit = detail.unit(data.unit_number)
    if unit is None:
        errors.append(
            f"Unit {data.unit_number!r} is not part of {data.work_order_id}"
        )
    elif unit.station(data.station_number) is None:
        errors.append(
            f"Station {data.station_number!r} is not part of "
            f"unit {data.unit_number}"
        )
    return errors


def validate_comment(text: str) -> list[str]:
    errors = []
    if not (text or "").strip():
        errors.append("Comment text is required")
    return errors


def validate_station_status(status: str) -> list[str]:
    if status not in STATION_UPDATE_STATUSES:
        return [
            f"Station status must be one of: {', '.join(STATION_UPDATE_STATUSES)}"
        ]
    return []
