"""Canonical in-memory models for work orders, stations and part requests."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from shop_floor.utils.constants import (
    PART_REQUEST_STATUS_RANK,
    REQUEST_ACKNOWLEDGED,
    REQUEST_REQUESTED,
    STATUS_PENDING,
)


@dataclass
class WorkOrder:
    work_order_id: str = ""
    product_number: str = ""
    quantity_to_produce: int = 0
    total_parts_needed: int = 0
    parts_supplied: int = 0
    parts_missing: int = 0
    is_completed: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    # Derived by the normalizer, never set by hand
    status: str = STATUS_PENDING
    progress: int = 0

    @property
    def has_skew(self) -> bool:
        """Supplied + missing disagrees with the total the backend sent."""
        return self.parts_supplied + self.parts_missing != self.total_parts_needed


@dataclass
class StationDetail:
    station_number: str = ""
    station_status: str = ""
    part_number: str = ""
    part_description: str = ""
    quantity_required: int = 0
    quantity_supplied: int = 0
    station_comments: str = ""

    @property
    def is_finished(self) -> bool:
        return self.station_status == "completed"

    @property
    def quantity_short(self) -> int:
        return max(self.quantity_required - self.quantity_supplied, 0)


@dataclass
class UnitDetail:
    unit_number: str = ""
    stations: list[StationDetail] = field(default_factory=list)

    def station(self, station_number: str) -> Optional[StationDetail]:
        for s in self.stations:
            if s.station_number == station_number:
                return s
        return None


@dataclass
class WorkOrderDetail:
    """The unit/station document fetched for one work order."""

    work_order_id: str = ""
    units: list[UnitDetail] = field(default_factory=list)
    is_completed: bool = False

    def unit(self, unit_number: str) -> Optional[UnitDetail]:
        for u in self.units:
            if u.unit_number == unit_number:
                return u
        return None

    @property
    def all_stations_finished(self) -> bool:
        stations = [s for u in self.units for s in u.stations]
        return bool(stations) and all(s.is_finished for s in stations)


@dataclass
class PartRequest:
    request_id: str = ""
    work_order_id: str = ""
    part_number: str = ""
    quantity_requested: int = 0
    unit_number: str = ""
    station_number: str = ""
    description: str = ""
    status: str = REQUEST_REQUESTED
    requested_at: Optional[datetime] = None
    quantity_supplied: int = 0
    # True while the entry exists only locally (not yet seen in a refresh)
    pending: bool = False
    # Set once the create call succeeded for a pending entry
    confirmed: bool = False

    @property
    def status_rank(self) -> int:
        return PART_REQUEST_STATUS_RANK.get(self.status, 0)

    @property
    def is_acknowledged(self) -> bool:
        return self.status == REQUEST_ACKNOWLEDGED


@dataclass
class PartRequestInput:
    work_order_id: str = ""
    part_number: str = ""
    quantity_requested: int = 0
    unit_number: str = ""
    station_number: str = ""
    description: str = ""


@dataclass
class Comment:
    comment_id: str = ""
    work_order_id: str = ""
    user: str = ""
    text: str = ""
    timestamp: Optional[datetime] = None
    # Built from a station's station_comments field; read-only
    synthesized: bool = False
