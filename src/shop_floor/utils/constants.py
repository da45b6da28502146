"""Application-wide constants."""

APP_NAME = "Shop-Floor"

# ── Work orders ───────────────────────────────────────────────────
STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "InProgress"
STATUS_COMPLETED = "Completed"

WORK_ORDER_STATUS_LABELS = {
    STATUS_PENDING: "Pending",
    STATUS_IN_PROGRESS: "In Progress",
    STATUS_COMPLETED: "Completed",
}

WORK_ORDER_ID_PATTERN = r"^WO\d{7}$"

# Exact backend text that signals a successful completion call
COMPLETE_SUCCESS_MESSAGE = "Work order marked as complete"

# ── Part requests ─────────────────────────────────────────────────
REQUEST_REQUESTED = "Requested"
REQUEST_DISPATCHED = "Dispatched"
REQUEST_ACKNOWLEDGED = "Acknowledged"

PART_REQUEST_STATUSES = [
    REQUEST_REQUESTED,
    REQUEST_DISPATCHED,
    REQUEST_ACKNOWLEDGED,
]

# Rank used both for report ordering and for the no-regression rule
PART_REQUEST_STATUS_RANK = {
    status: rank for rank, status in enumerate(PART_REQUEST_STATUSES)
}

# ── Stations ──────────────────────────────────────────────────────
# Statuses an operator may set (not_started is the server's initial state)
STATION_UPDATE_STATUSES = [
    "in_progress",
    "on_hold",
    "needs_attention",
    "completed",
]

# ── Backend endpoints ─────────────────────────────────────────────
EP_WORK_ORDERS = "/workorders/"
EP_WORK_ORDER_DETAIL = "/workorders/{work_order_id}"
EP_CREATE_WORK_ORDER = "/workorders/create_workorder"
EP_COMPLETE_WORK_ORDER = "/workorders/complete"
EP_PART_REQUEST = "/parts/part_request"
EP_NEEDED_PARTS = "/parts/needed_parts"
EP_DISPATCH = "/warehouse/dispatch"
EP_COMMENTS = "/comments"
EP_STATION_STATUS = "/stations/{station_number}/status"

# ── Polling targets ───────────────────────────────────────────────
POLL_WORK_ORDERS = "work_orders"
POLL_AGGREGATES = "aggregates"
