"""Application entry point: wires the engine together and runs it headless."""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from shop_floor.api.client import ApiClient
from shop_floor.api.errors import ShopFloorError
from shop_floor.api.retry import RetryPolicy
from shop_floor.config import Config
from shop_floor.store.parts_requests import PartsRequestWorkflow
from shop_floor.store.work_orders import StoreSnapshot, WorkOrderStore
from shop_floor.sync.scheduler import PollingScheduler
from shop_floor.utils.constants import APP_NAME, POLL_WORK_ORDERS
from shop_floor.utils.formatters import (
    format_progress,
    format_status,
    format_timestamp,
)
from shop_floor.views.aggregation import (
    comments_feed,
    missing_parts,
    production_metrics,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configures the root logger for the application."""
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    # Remove existing handlers to avoid duplicates on re-configuration
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class DashboardSession:
    """One signed-in dashboard: client, store, workflow and poller.

    Construction builds everything; ``close()`` tears it down in order
    (timers, then store, then the HTTP pool).
    """

    def __init__(self, client: ApiClient, operator: str,
                 retry: Optional[RetryPolicy] = None,
                 work_order_interval: float = 30,
                 aggregate_interval: float = 300):
        self.client = client
        retry = retry or RetryPolicy()
        self.store = WorkOrderStore(client, retry=retry, operator=operator)
        self.parts = PartsRequestWorkflow(
            client, self.store, requested_by=operator, retry=retry,
        )
        self.scheduler = PollingScheduler(
            self.store,
            work_order_interval=work_order_interval,
            aggregate_interval=aggregate_interval,
            on_refreshed=self._on_refreshed,
        )

    @classmethod
    def from_config(cls) -> "DashboardSession":
        client = ApiClient(
            Config.API_BASE_URL,
            token=Config.API_TOKEN,
            timeout=Config.API_TIMEOUT,
        )
        return cls(
            client,
            operator=Config.OPERATOR_NAME,
            retry=RetryPolicy(
                max_attempts=Config.RETRY_MAX_ATTEMPTS,
                backoff_ms=Config.RETRY_BACKOFF_MS,
            ),
            work_order_interval=Config.WORK_ORDER_POLL_SECONDS,
            aggregate_interval=Config.AGGREGATE_POLL_SECONDS,
        )

    async def refresh_all(self):
        """One full, foreground refresh; errors propagate."""
        await self.store.refresh_list()
        await self.store.refresh_aggregates()

    def start_polling(self):
        self.scheduler.start()

    async def close(self):
        self.scheduler.stop()
        self.store.close()
        await self.client.aclose()

    def _on_refreshed(self, target: str):
        if target != POLL_WORK_ORDERS:
            return
        metrics = production_metrics(self.store.snapshot())
        logger.info(
            f"{metrics.total_orders} work orders: "
            f"{metrics.completed} completed, {metrics.in_progress} in progress, "
            f"{metrics.pending} pending, {metrics.parts_missing} parts missing"
        )


def render_report(snapshot: StoreSnapshot, comment_limit: int = 10) -> str:
    """Plain-text dashboard summary."""
    lines = [
        f"{APP_NAME} - last updated {format_timestamp(snapshot.last_updated)}",
        "",
        "Work orders:",
    ]
    for wo in snapshot.work_orders:
        lines.append(
            f"  {wo.work_order_id}  {wo.product_number:<12} "
            f"{format_status(wo.status):<12} {format_progress(wo.progress):>4}"
        )
    if not snapshot.work_orders:
        lines.append("  (none)")

    lines += ["", "Missing parts:"]
    rows = missing_parts(snapshot)
    for row in rows:
        lines.append(
            f"  {row.work_order_id}  {row.part_number:<10} "
            f"x{row.quantity_requested:<4} {row.status}"
        )
    if not rows:
        lines.append("  No missing parts reported")

    lines += ["", "Comments:"]
    feed = comments_feed(snapshot)[:comment_limit]
    for c in feed:
        lines.append(
            f"  [{format_timestamp(c.timestamp)}] {c.work_order_id} "
            f"{c.user}: {c.text}"
        )
    if not feed:
        lines.append("  (none)")
    return "\n".join(lines)


async def _run(once: bool) -> int:
    session = DashboardSession.from_config()
    try:
        if once:
            try:
                await session.refresh_all()
            except ShopFloorError as e:
                logger.error(f"Refresh failed: {e.message}")
                return 1
            print(render_report(session.store.snapshot()))
            return 0

        session.start_polling()
        await asyncio.Event().wait()  # until interrupted
        return 0
    finally:
        await session.close()


def main(argv: Optional[list[str]] = None):
    """Launch the Shop-Floor engine."""
    parser = argparse.ArgumentParser(prog="shop-floor")
    parser.add_argument(
        "--once", action="store_true",
        help="refresh once, print a report and exit",
    )
    parser.add_argument("--log-level", default=Config.LOG_LEVEL)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    try:
        code = asyncio.run(_run(args.once))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
