"""Backend payload -> canonical model conversion.

Pure functions: no I/O, no clock reads. The same payload always yields
equal output, so a re-render can diff two normalizations safely. Malformed
records are logged and skipped (or kept-first for duplicates) rather than
failing the whole payload.
"""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from shop_floor.store.models import (
    Comment,
    PartRequest,
    StationDetail,
    UnitDetail,
    WorkOrder,
    WorkOrderDetail,
)
from shop_floor.utils.constants import (
    PART_REQUEST_STATUSES,
    REQUEST_DISPATCHED,
    REQUEST_REQUESTED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    WORK_ORDER_ID_PATTERN,
)

logger = logging.getLogger(__name__)

_WO_ID_RE = re.compile(WORK_ORDER_ID_PATTERN)


# ── Coercion helpers ────────────────────────────────────────────

def _to_int(value: Any, default: int = 0) -> int:
    """Coerce a backend number (often a string) to a non-negative int."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(number, 0)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch numbers into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e12 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Epoch timestamp out of range: {value!r}")
            return None
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Work orders ─────────────────────────────────────────────────

def compute_status(is_completed: bool, parts_supplied: int) -> str:
    if is_completed:
        return STATUS_COMPLETED
    if parts_supplied > 0:
        return STATUS_IN_PROGRESS
    return STATUS_PENDING


def compute_progress(is_completed: bool, parts_supplied: int,
                     total_parts_needed: int) -> int:
    """Percent of parts supplied, rounded half-up and clamped to 0..100."""
    if is_completed:
        return 100
    if total_parts_needed <= 0:
        return 0
    percent = math.floor(parts_supplied / total_parts_needed * 100 + 0.5)
    return min(max(percent, 0), 100)


def _flatten_rows(raw: Iterable) -> list[dict]:
    """The list endpoint sometimes nests one list per unit row."""
    rows = []
    for item in raw or []:
        if isinstance(item, list):
            rows.extend(r for r in item if isinstance(r, dict))
        elif isinstance(item, dict):
            rows.append(item)
    return rows


def normalize_work_orders(raw: Any) -> list[WorkOrder]:
    """Convert the ``/workorders/`` payload into work orders.

    Accepts either the response object (``{"work_orders": [...]}``) or the
    bare list. Rows sharing a ``work_order_id`` collapse into the first one;
    the merged order counts as completed only if every row says so.
    """
    if isinstance(raw, dict):
        raw = raw.get("work_orders", [])

    first_rows: dict[str, dict] = {}
    completed: dict[str, bool] = {}
    for row in _flatten_rows(raw):
        wo_id = _to_str(row.get("work_order_id"))
        if not wo_id:
            logger.warning(f"Skipping work order row without id: {row!r}")
            continue
        if wo_id not in first_rows:
            if not _WO_ID_RE.match(wo_id):
                logger.warning(f"Unexpected work order id format: {wo_id}")
            first_rows[wo_id] = row
            completed[wo_id] = _to_bool(row.get("is_completed"))
        else:
            completed[wo_id] = completed[wo_id] and _to_bool(
                row.get("is_completed")
            )

    orders = []
    for wo_id, row in first_rows.items():
        is_completed = completed[wo_id]
        supplied = _to_int(row.get("parts_supplied"))
        total = _to_int(row.get("total_parts_needed"))
        orders.append(WorkOrder(
            work_order_id=wo_id,
            product_number=_to_str(row.get("product_number")),
            quantity_to_produce=_to_int(row.get("quantity_to_produce")),
            total_parts_needed=total,
            parts_supplied=supplied,
            parts_missing=_to_int(row.get("parts_missing")),
            is_completed=is_completed,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            completed_at=row.get("completed_at"),
            status=compute_status(is_completed, supplied),
            progress=compute_progress(is_completed, supplied, total),
        ))
    return orders


# ── Detail (units / stations) ───────────────────────────────────

def _normalize_station(raw: dict) -> StationDetail:
    return StationDetail(
        station_number=_to_str(raw.get("station_number")),
        station_status=_to_str(raw.get("station_status")),
        part_number=_to_str(raw.get("part_number")),
        part_description=_to_str(raw.get("part_description")),
        quantity_required=_to_int(raw.get("quantity_required")),
        quantity_supplied=_to_int(raw.get("quantity_supplied")),
        station_comments=_to_str(raw.get("station_comments")),
    )


def normalize_detail(raw: Any) -> list[UnitDetail]:
    """Convert a detail document's ``units`` into UnitDetail objects.

    A station number repeated within one unit keeps the first occurrence;
    a station without a number is dropped. Either case is logged.
    """
    if not isinstance(raw, dict):
        return []

    units = []
    for index, raw_unit in enumerate(raw.get("units") or []):
        if not isinstance(raw_unit, dict):
            logger.warning(f"Skipping malformed unit at index {index}")
            continue
        unit_number = _to_str(raw_unit.get("unit_number")) or str(index + 1)
        unit = UnitDetail(unit_number=unit_number)
        seen = set()
        for raw_station in raw_unit.get("stations") or []:
            if not isinstance(raw_station, dict):
                logger.warning(f"Unit {unit_number}: malformed station dropped")
                continue
            station = _normalize_station(raw_station)
            if not station.station_number:
                logger.warning(
                    f"Unit {unit_number}: station without station_number dropped"
                )
                continue
            if station.station_number in seen:
                logger.warning(
                    f"Unit {unit_number}: duplicate station "
                    f"{station.station_number}, keeping first"
                )
                continue
            seen.add(station.station_number)
            unit.stations.append(station)
        units.append(unit)
    return units


def build_detail(raw: Any, work_order_id: str) -> WorkOrderDetail:
    """Wrap ``normalize_detail`` with the owning id and completion flag."""
    is_completed = _to_bool(raw.get("is_completed")) if isinstance(raw, dict) else False
    return WorkOrderDetail(
        work_order_id=work_order_id,
        units=normalize_detail(raw),
        is_completed=is_completed,
    )


# ── Comments ────────────────────────────────────────────────────

def _comment_from_raw(raw: dict, work_order_id: str, index: int) -> Comment:
    wo_id = _to_str(raw.get("work_order_id")) or work_order_id
    comment_id = _to_str(raw.get("id") or raw.get("comment_id"))
    return Comment(
        comment_id=comment_id or f"{wo_id}-comment-{index}",
        work_order_id=wo_id,
        user=_to_str(raw.get("user") or raw.get("user_name")),
        text=_to_str(raw.get("text") or raw.get("comment")),
        timestamp=parse_timestamp(
            raw.get("timestamp") or raw.get("time") or raw.get("created_at")
        ),
    )


def normalize_comments(detail: Any, work_order_id: str) -> list[Comment]:
    """Flatten station comments plus any top-level comments of a detail.

    Each station with non-empty ``station_comments`` yields one read-only
    comment whose id is ``<wo>-unit-<unit>-station-<station>``.
    """
    if not isinstance(detail, dict):
        return []

    comments = []
    for unit in normalize_detail(detail):
        for station in unit.stations:
            if not station.station_comments:
                continue
            comments.append(Comment(
                comment_id=(
                    f"{work_order_id}-unit-{unit.unit_number}"
                    f"-station-{station.station_number}"
                ),
                work_order_id=work_order_id,
                user=f"Unit {unit.unit_number} / Station {station.station_number}",
                text=station.station_comments,
                timestamp=None,
                synthesized=True,
            ))

    for index, raw in enumerate(detail.get("comments") or []):
        if isinstance(raw, dict):
            comments.append(_comment_from_raw(raw, work_order_id, index))
    return comments


def normalize_direct_comments(raw: Any) -> list[Comment]:
    """Convert the ``GET /comments`` payload (list or ``{comments: [...]}``)."""
    if isinstance(raw, dict):
        raw = raw.get("comments", [])
    comments = []
    for index, item in enumerate(raw or []):
        if not isinstance(item, dict):
            continue
        comment = _comment_from_raw(item, "", index)
        if not comment.work_order_id:
            logger.warning(f"Skipping comment without work_order_id: {item!r}")
            continue
        comments.append(comment)
    return comments


# ── Part requests ───────────────────────────────────────────────

def _infer_request_status(raw: dict, supplied: int) -> str:
    status = _to_str(raw.get("status"))
    if status in PART_REQUEST_STATUSES:
        return status
    return REQUEST_REQUESTED if supplied == 0 else REQUEST_DISPATCHED


def synthesize_request_id(work_order_id: str, part_number: str,
                          sequence: int) -> str:
    return f"{work_order_id}-{part_number}-{sequence}"


def normalize_part_requests(raw: Any) -> list[PartRequest]:
    """Convert ``/parts/needed_parts`` rows into server-confirmed requests.

    Rows without a server id get ``<wo>-<part>-<n>``, where ``n`` counts
    earlier rows for the same work order and part in this payload.
    """
    if isinstance(raw, dict):
        raw = raw.get("parts", raw.get("needed_parts", []))

    sequences: dict[tuple[str, str], int] = {}
    requests = []
    for row in raw or []:
        if not isinstance(row, dict):
            continue
        wo_id = _to_str(row.get("work_order") or row.get("work_order_id"))
        part_number = _to_str(row.get("part_number"))
        if not wo_id or not part_number:
            logger.warning(f"Skipping part request row: {row!r}")
            continue

        key = (wo_id, part_number)
        sequences[key] = sequences.get(key, 0) + 1
        request_id = _to_str(row.get("id")) or synthesize_request_id(
            wo_id, part_number, sequences[key]
        )
        supplied = _to_int(row.get("quantity_supplied"))
        requests.append(PartRequest(
            request_id=request_id,
            work_order_id=wo_id,
            part_number=part_number,
            quantity_requested=_to_int(
                row.get("quantity_requested", row.get("quantity_required"))
            ),
            unit_number=_to_str(row.get("unit_number")),
            station_number=_to_str(row.get("station_number")),
            description=_to_str(row.get("description")),
            status=_infer_request_status(row, supplied),
            requested_at=parse_timestamp(
                row.get("requested_at") or row.get("created_at")
            ),
            quantity_supplied=supplied,
        ))
    return requests
