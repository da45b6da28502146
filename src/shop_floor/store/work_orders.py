"""WorkOrderStore, the single owner of work order, detail, comment and
part request state.

Every other component reads deep-copied snapshots (``snapshot()`` or a
subscription) and changes state only through the store's operations.

Refreshes follow three rules:
1. Full replace: a list refresh swaps the whole collection, so orders the
   server dropped never linger locally.
2. Single flight: concurrent refreshes of the same target share one
   transport call, unless a mutation happened after that call was issued.
3. Newest wins: a response older than one already applied is discarded,
   as is any response arriving after ``close()``. A closed store issues
   no new calls.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from shop_floor.api.errors import (
    RejectedError,
    ShopFloorError,
    StoreClosedError,
    ValidationError,
)
from shop_floor.api.retry import RetryPolicy
from shop_floor.io.validators import (
    validate_comment,
    validate_station_status,
    validate_work_order_input,
)
from shop_floor.store.models import (
    Comment,
    PartRequest,
    WorkOrder,
    WorkOrderDetail,
)
from shop_floor.store.normalizer import (
    build_detail,
    normalize_comments,
    normalize_direct_comments,
    normalize_part_requests,
    normalize_work_orders,
)
from shop_floor.utils.constants import (
    COMPLETE_SUCCESS_MESSAGE,
    EP_COMMENTS,
    EP_COMPLETE_WORK_ORDER,
    EP_CREATE_WORK_ORDER,
    EP_NEEDED_PARTS,
    EP_STATION_STATUS,
    EP_WORK_ORDER_DETAIL,
    EP_WORK_ORDERS,
    PART_REQUEST_STATUS_RANK,
)

logger = logging.getLogger(__name__)

# A confirmed pending request the needed-parts feed has not reported after
# this many refreshes is dropped (the backend may merge repeat requests).
MAX_UNMATCHED_REFRESHES = 3


@dataclass
class StoreSnapshot:
    """Read-only copy of the store's state at one instant."""

    work_orders: list[WorkOrder] = field(default_factory=list)
    details: dict[str, WorkOrderDetail] = field(default_factory=dict)
    stale_details: set[str] = field(default_factory=set)
    part_requests: list[PartRequest] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    selected_id: Optional[str] = None
    detail_error: Optional[str] = None
    last_updated: Optional[datetime] = None

    def work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        for wo in self.work_orders:
            if wo.work_order_id == work_order_id:
                return wo
        return None

    @property
    def selected_detail(self) -> Optional[WorkOrderDetail]:
        if self.selected_id is None:
            return None
        return self.details.get(self.selected_id)


Subscriber = Callable[[StoreSnapshot], Any]


class WorkOrderStore:
    """Canonical client-side view of the backend's work orders."""

    def __init__(self, client, retry: Optional[RetryPolicy] = None,
                 operator: str = "operator",
                 clock: Callable[[], datetime] = None):
        self.client = client
        self.retry = retry or RetryPolicy()
        self.operator = operator
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._work_orders: list[WorkOrder] = []
        self._details: dict[str, WorkOrderDetail] = {}
        self._detail_comments: dict[str, list[Comment]] = {}
        self._stale_details: set[str] = set()
        self._direct_comments: list[Comment] = []
        self._server_requests: list[PartRequest] = []
        self._pending_requests: list[PartRequest] = []
        # request_id -> lowest status a refresh may show for it
        self._status_floors: dict[str, str] = {}
        # pending request_id -> refreshes it has gone unmatched since confirm
        self._unmatched_refreshes: dict[str, int] = {}

        self._selected_id: Optional[str] = None
        self.detail_error: Optional[str] = None
        self.last_updated: Optional[datetime] = None

        self._subscribers: list[Subscriber] = []
        self._inflight: dict[str, tuple[int, asyncio.Future]] = {}
        self._applied: dict[str, int] = {}
        self._issued = 0
        self._epoch = 0
        self._local_seq = 0
        self._closed = False

    # ── Read access ─────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    def snapshot(self) -> StoreSnapshot:
        """Deep copy of the current state; safe to keep and to mutate."""
        return copy.deepcopy(StoreSnapshot(
            work_orders=self._work_orders,
            details=self._details,
            stale_details=self._stale_details,
            part_requests=self._effective_requests(),
            comments=self._all_comments(),
            selected_id=self._selected_id,
            detail_error=self.detail_error,
            last_updated=self.last_updated,
        ))

    def work_orders(self) -> list[WorkOrder]:
        return copy.deepcopy(self._work_orders)

    def detail_for(self, work_order_id: str) -> Optional[WorkOrderDetail]:
        return copy.deepcopy(self._details.get(work_order_id))

    def part_requests(self, work_order_id: Optional[str] = None) -> list[PartRequest]:
        requests = self._effective_requests()
        if work_order_id is not None:
            requests = [r for r in requests if r.work_order_id == work_order_id]
        return requests

    def find_request(self, request_id: str) -> Optional[PartRequest]:
        for req in self._effective_requests():
            if req.request_id == request_id:
                return req
        return None

    def is_detail_stale(self, work_order_id: str) -> bool:
        return work_order_id in self._stale_details

    # ── Subscriptions ───────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback(snapshot)``; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self):
        if not self._subscribers:
            return
        snap = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snap)
            except Exception:
                logger.exception("Store subscriber raised")

    # ── Lifecycle ───────────────────────────────────────────────

    def close(self):
        """Stop all work: no new calls, in-flight responses are ignored."""
        self._closed = True
        self._subscribers.clear()

    def ensure_open(self):
        """Raise ``StoreClosedError`` once ``close()`` has run."""
        if self._closed:
            raise StoreClosedError("Work order store is closed")

    # ── Refresh operations ──────────────────────────────────────

    async def refresh_list(self) -> None:
        """Fetch all work orders and replace the canonical list."""
        await self._single_flight("list", self._fetch_list)

    async def refresh_detail(self, work_order_id: str) -> None:
        """Fetch the unit/station document for one work order."""
        await self._single_flight(
            f"detail:{work_order_id}",
            partial(self._fetch_detail, work_order_id),
        )

    async def refresh_part_requests(self) -> None:
        """Fetch the needed-parts feed and reconcile local requests."""
        await self._single_flight("part_requests", self._fetch_part_requests)

    async def refresh_comments(self) -> None:
        await self._single_flight("comments", self._fetch_comments)

    async def refresh_aggregates(self) -> None:
        """Refresh the slower-changing feeds (part requests, comments)."""
        results = await asyncio.gather(
            self.refresh_part_requests(),
            self.refresh_comments(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def select_work_order(self, work_order_id: str) -> Optional[ShopFloorError]:
        """Make ``work_order_id`` the inspected order and load its detail.

        Selection always sticks. A failed detail fetch leaves the detail
        absent, records ``detail_error`` and returns the error.
        """
        if self._closed:
            return None
        self._selected_id = work_order_id
        self.detail_error = None
        self._notify()
        try:
            await self.refresh_detail(work_order_id)
        except ShopFloorError as e:
            logger.warning(f"Detail fetch for {work_order_id} failed: {e.message}")
            if self._selected_id == work_order_id and not self._closed:
                self.detail_error = e.message
                self._notify()
            return e
        return None

    async def _fetch_list(self, seq: int):
        payload = await self.retry.call(self.client, "GET", EP_WORK_ORDERS)
        orders = normalize_work_orders(payload)
        if not self._accept("list", seq):
            return
        self._work_orders = orders
        self.last_updated = self._clock()
        logger.debug(f"Work order list refreshed ({len(orders)} orders)")
        self._notify()

    async def _fetch_detail(self, work_order_id: str, seq: int):
        path = EP_WORK_ORDER_DETAIL.format(work_order_id=work_order_id)
        payload = await self.retry.call(self.client, "GET", path)
        detail = build_detail(payload, work_order_id)
        comments = normalize_comments(payload, work_order_id)
        if not self._accept(f"detail:{work_order_id}", seq):
            return
        self._details[work_order_id] = detail
        self._detail_comments[work_order_id] = comments
        self._stale_details.discard(work_order_id)
        if self._selected_id == work_order_id:
            self.detail_error = None
        self._notify()

    async def _fetch_part_requests(self, seq: int):
        payload = await self.retry.call(self.client, "GET", EP_NEEDED_PARTS)
        server = normalize_part_requests(payload)
        if not self._accept("part_requests", seq):
            return
        self._apply_server_requests(server)
        self._notify()

    async def _fetch_comments(self, seq: int):
        payload = await self.retry.call(self.client, "GET", EP_COMMENTS)
        comments = normalize_direct_comments(payload)
        if not self._accept("comments", seq):
            return
        self._direct_comments = comments
        self._notify()

    # ── Mutations ───────────────────────────────────────────────

    async def create_work_order(self, product_number: str, quantity: int) -> str:
        """Create a work order and reload the list; returns the new id."""
        self.ensure_open()
        errors = validate_work_order_input(product_number, quantity)
        if errors:
            raise ValidationError(errors)

        response = await self.retry.call(
            self.client, "POST", EP_CREATE_WORK_ORDER,
            {"product_number": product_number.strip(), "quantity": quantity},
        )
        if isinstance(response, dict) and response.get("error"):
            raise RejectedError(str(response["error"]))
        work_order_id = ""
        if isinstance(response, dict):
            work_order_id = str(response.get("work_order_id") or "")
        logger.info(f"Created work order {work_order_id or '(no id returned)'}")

        self.mark_mutated()
        await self._refresh_quietly(self.refresh_list(), "work order list")
        return work_order_id

    async def complete_work_order(self, work_order_id: str) -> bool:
        """Ask the backend to complete an order.

        Returns False when the backend declines (stations unfinished); that
        is an expected outcome, not an error, and local state is untouched.
        """
        self.ensure_open()
        response = await self.retry.call(
            self.client, "POST", EP_COMPLETE_WORK_ORDER,
            {"work_order_id": work_order_id},
        )
        message = response.get("message") if isinstance(response, dict) else None
        if message != COMPLETE_SUCCESS_MESSAGE:
            logger.info(f"{work_order_id} not completable yet: {message!r}")
            return False

        logger.info(f"Work order {work_order_id} marked complete")
        self.mark_mutated()
        await self._refresh_quietly(self.refresh_list(), "work order list")
        return True

    async def update_station_status(self, work_order_id: str, unit_number: str,
                                    station_number: str, status: str,
                                    notes: Optional[str] = None) -> None:
        """Set a station's status and refetch the (now stale) detail."""
        self.ensure_open()
        errors = validate_station_status(status)
        if errors:
            raise ValidationError(errors)

        body = {
            "status": status,
            "workOrderId": work_order_id,
            "unitNumber": unit_number,
        }
        if notes:
            body["notes"] = notes
        path = EP_STATION_STATUS.format(station_number=station_number)
        await self.retry.call(self.client, "PUT", path, body)
        logger.info(
            f"{work_order_id} unit {unit_number} station {station_number} "
            f"-> {status}"
        )

        self.mark_mutated()
        self.invalidate_detail(work_order_id)
        await self._refresh_quietly(
            self.refresh_detail(work_order_id), f"detail for {work_order_id}"
        )

    async def add_comment(self, work_order_id: str, text: str) -> None:
        """Append a direct comment to a work order and reload comments."""
        self.ensure_open()
        errors = validate_comment(text)
        if errors:
            raise ValidationError(errors)

        await self.retry.call(self.client, "POST", EP_COMMENTS, {
            "work_order_id": work_order_id,
            "user": self.operator,
            "text": text.strip(),
        })
        self.mark_mutated()
        await self._refresh_quietly(self.refresh_comments(), "comments")

    # ── Hooks for the parts workflow ────────────────────────────

    def mark_mutated(self):
        """Record that server state changed; later refreshes start fresh."""
        self._epoch += 1

    def invalidate_detail(self, work_order_id: str):
        if work_order_id in self._details:
            self._stale_details.add(work_order_id)
            self._notify()

    def next_request_id(self, work_order_id: str, part_number: str) -> str:
        self._local_seq += 1
        return f"{work_order_id}-{part_number}-local-{self._local_seq}"

    def add_pending_request(self, request: PartRequest):
        pending = copy.deepcopy(request)
        pending.pending = True
        self._pending_requests.append(pending)
        self._notify()

    def confirm_pending_request(self, request_id: str):
        for req in self._pending_requests:
            if req.request_id == request_id:
                req.confirmed = True
                self._notify()
                return

    def discard_pending_request(self, request_id: str):
        before = len(self._pending_requests)
        self._pending_requests = [
            r for r in self._pending_requests if r.request_id != request_id
        ]
        if len(self._pending_requests) != before:
            self._notify()

    def raise_status_floor(self, request_id: str, status: str):
        """Never show ``request_id`` below ``status`` again."""
        current = self._status_floors.get(request_id)
        if current is None or (
            PART_REQUEST_STATUS_RANK[status] > PART_REQUEST_STATUS_RANK[current]
        ):
            self._status_floors[request_id] = status
            self._notify()

    def clear_status_floor(self, request_id: str, status: str):
        """Undo a floor set by a mutation that then failed."""
        if self._status_floors.get(request_id) == status:
            del self._status_floors[request_id]
            self._notify()

    # ── Internals ───────────────────────────────────────────────

    async def _single_flight(self, key: str,
                             fetch: Callable[[int], Awaitable[None]]):
        if self._closed:
            logger.debug(f"Store closed; {key} refresh not issued")
            return
        entry = self._inflight.get(key)
        if entry is not None and entry[0] == self._epoch and not entry[1].done():
            return await asyncio.shield(entry[1])

        self._issued += 1
        task = asyncio.ensure_future(fetch(self._issued))
        self._inflight[key] = (self._epoch, task)
        task.add_done_callback(partial(self._forget, key))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future):
        entry = self._inflight.get(key)
        if entry is not None and entry[1] is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()  # mark retrieved; awaiting callers re-raise it

    def _accept(self, key: str, seq: int) -> bool:
        """True if a response issued as ``seq`` may still be applied."""
        if self._closed:
            logger.debug(f"Ignoring {key} response after close")
            return False
        if seq < self._applied.get(key, 0):
            logger.debug(f"Ignoring out-of-order {key} response")
            return False
        self._applied[key] = seq
        return True

    async def _refresh_quietly(self, refresh: Awaitable[None], what: str):
        """Follow-up refresh after a successful mutation.

        The mutation already happened server-side, so a failure here is
        logged and left for the next poll instead of failing the caller.
        """
        try:
            await refresh
        except ShopFloorError as e:
            logger.warning(f"Refresh of {what} after mutation failed: {e.message}")

    def _apply_server_requests(self, server: list[PartRequest]):
        # Match against floored statuses: a locally acknowledged row is
        # never a candidate even though the server still reports it lower.
        candidates = [self._with_floor(r) for r in server]
        claimed: set[str] = set()
        still_pending = []
        for pending in self._pending_requests:
            if not pending.confirmed:
                still_pending.append(pending)
                continue
            match = _closest_match(pending, candidates, claimed)
            if match is not None:
                claimed.add(match.request_id)
                self._unmatched_refreshes.pop(pending.request_id, None)
                logger.debug(
                    f"Pending {pending.request_id} reconciled as {match.request_id}"
                )
                continue
            misses = self._unmatched_refreshes.get(pending.request_id, 0) + 1
            if misses >= MAX_UNMATCHED_REFRESHES:
                self._unmatched_refreshes.pop(pending.request_id, None)
                logger.warning(
                    f"Pending {pending.request_id} unmatched after {misses} "
                    f"refreshes; dropping it"
                )
                continue
            self._unmatched_refreshes[pending.request_id] = misses
            still_pending.append(pending)
        self._pending_requests = still_pending

        present = {r.request_id: r for r in server}
        for request_id, floor in list(self._status_floors.items()):
            req = present.get(request_id)
            if req is None or req.status_rank >= PART_REQUEST_STATUS_RANK[floor]:
                del self._status_floors[request_id]
        self._server_requests = server

    def _with_floor(self, req: PartRequest) -> PartRequest:
        req = copy.deepcopy(req)
        floor = self._status_floors.get(req.request_id)
        if floor and PART_REQUEST_STATUS_RANK[floor] > req.status_rank:
            req.status = floor
        return req

    def _effective_requests(self) -> list[PartRequest]:
        requests = [self._with_floor(r) for r in self._server_requests]
        requests.extend(copy.deepcopy(r) for r in self._pending_requests)
        return requests

    def _all_comments(self) -> list[Comment]:
        comments = list(self._direct_comments)
        for wo_comments in self._detail_comments.values():
            comments.extend(wo_comments)
        return comments


def _closest_match(pending: PartRequest, server: list[PartRequest],
                   claimed: set[str]) -> Optional[PartRequest]:
    """Server request for the same order and part nearest in time.

    Acknowledged and already-claimed requests are not candidates. Rows
    without a timestamp rank after every timestamped row.
    """
    best = None
    best_distance = None
    for req in server:
        if req.request_id in claimed or req.is_acknowledged:
            continue
        if (req.work_order_id != pending.work_order_id
                or req.part_number != pending.part_number):
            continue
        if req.requested_at is not None and pending.requested_at is not None:
            distance = abs((req.requested_at - pending.requested_at).total_seconds())
        else:
            distance = float("inf")
        if best is None or distance < best_distance:
            best, best_distance = req, distance
    return best
