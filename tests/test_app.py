"""Tests for session wiring, the headless report and logging setup."""

import asyncio
import logging
from datetime import datetime, timezone

import httpx
import pytest

import shop_floor.app as app_mod
from conftest import no_sleep, work_orders_payload
from shop_floor.api.client import ApiClient
from shop_floor.api.retry import RetryPolicy
from shop_floor.app import DashboardSession, configure_logging, main, render_report
from shop_floor.store.models import Comment, PartRequest
from shop_floor.store.normalizer import normalize_work_orders
from shop_floor.store.work_orders import StoreSnapshot


def _backend(request):
    routes = {
        "/api/workorders/": work_orders_payload(),
        "/api/parts/needed_parts": [{
            "work_order": "WO0000002", "part_number": "123",
            "quantity_required": 5, "quantity_supplied": 0,
            "unit_number": "1", "station_number": "2",
        }],
        "/api/comments": [{
            "id": "c-1", "work_order_id": "WO0000001", "user": "Alice",
            "text": "Assembly started.", "timestamp": "2024-05-01T08:00:00Z",
        }],
    }
    if request.url.path in routes:
        return httpx.Response(200, json=routes[request.url.path])
    return httpx.Response(404, json={"message": "not found"})


def _session(handler=_backend):
    client = ApiClient("https://backend.test/api",
                       transport=httpx.MockTransport(handler))
    return DashboardSession(
        client, operator="tester",
        retry=RetryPolicy(max_attempts=2, sleep=no_sleep),
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestDashboardSession:
    def test_refresh_all_fills_store(self):
        async def scenario():
            session = _session()
            await session.refresh_all()
            snap = session.store.snapshot()
            await session.close()
            return snap, session

        snap, session = asyncio.run(scenario())
        assert len(snap.work_orders) == 3
        assert len(snap.part_requests) == 1
        assert [c.comment_id for c in snap.comments] == ["c-1"]
        assert snap.last_updated is not None
        assert session.store.closed
        assert not session.scheduler.enabled

    def test_polling_populates_store(self):
        async def scenario():
            session = _session()
            session.start_polling()
            await asyncio.sleep(0.05)
            snap = session.store.snapshot()
            await session.close()
            return snap

        snap = asyncio.run(scenario())
        assert len(snap.work_orders) == 3

    def test_refresh_failure_propagates(self):
        def down(request):
            return httpx.Response(503)

        async def scenario():
            session = _session(down)
            try:
                await session.refresh_all()
            finally:
                await session.close()

        with pytest.raises(Exception, match="HTTP 503"):
            asyncio.run(scenario())


class TestRenderReport:
    def test_sections(self):
        snap = StoreSnapshot(
            work_orders=normalize_work_orders(work_orders_payload()),
            part_requests=[PartRequest(
                request_id="r1", work_order_id="WO0000002",
                part_number="123", quantity_requested=5,
            )],
            comments=[Comment(
                comment_id="c-1", work_order_id="WO0000001", user="Alice",
                text="Assembly started.",
                timestamp=datetime(2024, 5, 1, 8, tzinfo=timezone.utc),
            )],
        )
        report = render_report(snap)
        assert "Work orders:" in report
        assert "In Progress" in report
        assert "40%" in report
        assert "WO0000002  123" in report
        assert "Requested" in report
        assert "[2024-05-01 08:00:00] WO0000001 Alice: Assembly started." in report

    def test_empty_snapshot(self):
        report = render_report(StoreSnapshot())
        assert "No missing parts reported" in report
        assert "last updated -" in report


class TestConfigureLogging:
    def test_sets_level_and_single_handler(self, restore_root_logger):
        configure_logging("debug")
        configure_logging("DEBUG")
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        configure_logging("chatty")
        assert restore_root_logger.level == logging.INFO


class TestMain:
    def test_once_prints_report(self, monkeypatch, capsys):
        monkeypatch.setattr(app_mod, "configure_logging", lambda level: None)
        monkeypatch.setattr(DashboardSession, "from_config",
                            classmethod(lambda cls: _session()))
        with pytest.raises(SystemExit) as exc:
            main(["--once"])
        assert exc.value.code == 0
        out = capsys.readouterr().out
        assert "WO0000001" in out
        assert "Missing parts:" in out

    def test_once_exits_nonzero_on_failure(self, monkeypatch):
        monkeypatch.setattr(app_mod, "configure_logging", lambda level: None)
        monkeypatch.setattr(
            DashboardSession, "from_config",
            classmethod(lambda cls: _session(lambda r: httpx.Response(500))),
        )
        with pytest.raises(SystemExit) as exc:
            main(["--once"])
        assert exc.value.code == 1
