"""Part request lifecycle: Requested -> Dispatched -> Acknowledged.

Submission is optimistic. The request shows up locally before the create
call returns, is withdrawn again if the call fails, and is superseded by
the server's copy once a refresh reports it.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from shop_floor.api.errors import RejectedError, ShopFloorError, ValidationError
from shop_floor.api.retry import RetryPolicy
from shop_floor.io.validators import validate_part_request
from shop_floor.store.models import PartRequest, PartRequestInput
from shop_floor.store.work_orders import WorkOrderStore
from shop_floor.utils.constants import (
    EP_DISPATCH,
    EP_PART_REQUEST,
    REQUEST_ACKNOWLEDGED,
    REQUEST_DISPATCHED,
    REQUEST_REQUESTED,
)

logger = logging.getLogger(__name__)


class PartsRequestWorkflow:
    """Submits, dispatches and acknowledges part requests."""

    def __init__(self, client, store: WorkOrderStore,
                 requested_by: str = "operator",
                 retry: Optional[RetryPolicy] = None,
                 clock: Callable[[], datetime] = None):
        self.client = client
        self.store = store
        self.requested_by = requested_by
        self.retry = retry or RetryPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def submit(self, request: PartRequestInput) -> None:
        """Validate, insert optimistically, create, then resync.

        Raises ``ValidationError`` (or ``StoreClosedError`` after the store
        is closed) before touching state or the network.
        Transport failures remove the optimistic entry and propagate.
        """
        self.store.ensure_open()
        detail = self.store.detail_for(request.work_order_id)
        errors = validate_part_request(request, detail)
        if errors:
            raise ValidationError(errors)

        part_number = request.part_number.strip()
        optimistic = PartRequest(
            request_id=self.store.next_request_id(
                request.work_order_id, part_number
            ),
            work_order_id=request.work_order_id,
            part_number=part_number,
            quantity_requested=request.quantity_requested,
            unit_number=request.unit_number,
            station_number=request.station_number,
            description=request.description or "",
            status=REQUEST_REQUESTED,
            requested_at=self._clock(),
            pending=True,
        )
        self.store.add_pending_request(optimistic)

        body = {
            "work_order_id": request.work_order_id,
            "part_number": part_number,
            "quantity_requested": request.quantity_requested,
            "station_number": request.station_number,
            "unit_number": request.unit_number,
            "requested_by": self.requested_by,
        }
        if request.description:
            body["description"] = request.description

        try:
            response = await self.retry.call(
                self.client, "POST", EP_PART_REQUEST, body
            )
            if isinstance(response, dict) and response.get("error"):
                raise RejectedError(str(response["error"]))
        except Exception:
            self.store.discard_pending_request(optimistic.request_id)
            raise

        self.store.confirm_pending_request(optimistic.request_id)
        logger.info(
            f"Requested {request.quantity_requested} x {part_number} for "
            f"{request.work_order_id} unit {request.unit_number} "
            f"station {request.station_number}"
        )
        await self._resync(request.work_order_id)

    async def dispatch(self, request_id: str) -> None:
        """Warehouse action: send the requested quantity to the station."""
        self.store.ensure_open()
        request = self._require(request_id)
        if request.pending:
            raise ValidationError(
                [f"Request {request_id} is not confirmed by the server yet"]
            )
        if request.status != REQUEST_REQUESTED:
            raise ValidationError(
                [f"Request {request_id} is already {request.status}"]
            )

        self.store.raise_status_floor(request_id, REQUEST_DISPATCHED)
        try:
            await self.retry.call(self.client, "POST", EP_DISPATCH, {
                "part_number": request.part_number,
                "quantity_supplied": request.quantity_requested,
                "station_number": request.station_number,
                "work_order_id": request.work_order_id,
            })
        except Exception:
            self.store.clear_status_floor(request_id, REQUEST_DISPATCHED)
            raise

        logger.info(f"Dispatched {request.part_number} to {request.work_order_id}")
        await self._resync(request.work_order_id)

    def acknowledge(self, request_id: str) -> None:
        """Production action: confirm a dispatched part arrived.

        The backend exposes no acknowledge endpoint, so this is recorded as
        a local status floor that later refreshes cannot undo.
        """
        request = self._require(request_id)
        if request.status == REQUEST_ACKNOWLEDGED:
            return
        if request.status != REQUEST_DISPATCHED:
            raise ValidationError(
                [f"Request {request_id} must be Dispatched before acknowledging"]
            )
        self.store.raise_status_floor(request_id, REQUEST_ACKNOWLEDGED)
        logger.info(f"Acknowledged {request.part_number} for {request.work_order_id}")

    def _require(self, request_id: str) -> PartRequest:
        request = self.store.find_request(request_id)
        if request is None:
            raise ValidationError([f"Unknown part request {request_id}"])
        return request

    async def _resync(self, work_order_id: str):
        """Reload everything a part mutation touched, one call at a time."""
        self.store.mark_mutated()
        self.store.invalidate_detail(work_order_id)
        refreshes = [
            ("work order list", self.store.refresh_list),
            (f"detail for {work_order_id}",
             lambda: self.store.refresh_detail(work_order_id)),
            ("part requests", self.store.refresh_part_requests),
        ]
        for what, refresh in refreshes:
            try:
                await refresh()
            except ShopFloorError as e:
                logger.warning(f"Refresh of {what} after mutation failed: {e.message}")
