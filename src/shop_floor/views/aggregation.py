"""Cross-cutting views derived from a store snapshot.

Everything here is a pure function of the snapshot passed in; nothing is
cached, so calling again after a change always reflects the store.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from shop_floor.store.models import Comment
from shop_floor.store.work_orders import StoreSnapshot
from shop_floor.utils.constants import (
    PART_REQUEST_STATUS_RANK,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class MissingPartRow:
    request_id: str
    work_order_id: str
    part_number: str
    description: str
    quantity_requested: int
    quantity_supplied: int
    unit_number: str
    station_number: str
    status: str
    pending: bool = False


@dataclass
class ProductionMetrics:
    total_orders: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    parts_missing: int = 0
    average_progress: float = 0.0


@dataclass
class ActivityLine:
    work_order_id: str
    action: str
    user: str = "System"


def missing_parts(snapshot: StoreSnapshot) -> list[MissingPartRow]:
    """Every part request, Requested first, then Dispatched, Acknowledged.

    Ties are ordered by work order id.
    """
    rows = [
        MissingPartRow(
            request_id=r.request_id,
            work_order_id=r.work_order_id,
            part_number=r.part_number,
            description=r.description,
            quantity_requested=r.quantity_requested,
            quantity_supplied=r.quantity_supplied,
            unit_number=r.unit_number,
            station_number=r.station_number,
            status=r.status,
            pending=r.pending,
        )
        for r in snapshot.part_requests
    ]
    rows.sort(key=lambda row: (
        PART_REQUEST_STATUS_RANK.get(row.status, len(PART_REQUEST_STATUS_RANK)),
        row.work_order_id,
    ))
    return rows


def comments_feed(snapshot: StoreSnapshot,
                  work_order_id: Optional[str] = None) -> list[Comment]:
    """All comments, newest first; undated comments sort last.

    A comment id seen twice (detail and direct feed) is listed once.
    """
    seen = set()
    feed = []
    for comment in snapshot.comments:
        if work_order_id is not None and comment.work_order_id != work_order_id:
            continue
        if comment.comment_id in seen:
            continue
        seen.add(comment.comment_id)
        feed.append(comment)
    feed.sort(key=lambda c: c.timestamp or _OLDEST, reverse=True)
    return feed


def production_metrics(snapshot: StoreSnapshot) -> ProductionMetrics:
    orders = snapshot.work_orders
    if not orders:
        return ProductionMetrics()
    return ProductionMetrics(
        total_orders=len(orders),
        completed=sum(1 for wo in orders if wo.status == STATUS_COMPLETED),
        in_progress=sum(1 for wo in orders if wo.status == STATUS_IN_PROGRESS),
        pending=sum(1 for wo in orders if wo.status == STATUS_PENDING),
        parts_missing=sum(wo.parts_missing for wo in orders),
        average_progress=round(
            sum(wo.progress for wo in orders) / len(orders), 1
        ),
    )


def recent_activity(snapshot: StoreSnapshot, limit: int = 5) -> list[ActivityLine]:
    """One line per work order, newest id first."""
    orders = sorted(
        snapshot.work_orders, key=lambda wo: wo.work_order_id, reverse=True
    )
    lines = []
    for wo in orders[:limit]:
        if wo.is_completed:
            action = f"Completed {wo.work_order_id}"
        elif wo.parts_missing > 0:
            action = (
                f"Parts missing for {wo.work_order_id} "
                f"({wo.parts_missing} parts)"
            )
        else:
            action = f"In progress: {wo.work_order_id}"
        lines.append(ActivityLine(work_order_id=wo.work_order_id, action=action))
    return lines
