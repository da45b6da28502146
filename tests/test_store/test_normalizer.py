"""Tests for backend payload normalization."""

from dataclasses import asdict
from datetime import datetime, timezone

from conftest import detail_payload, work_orders_payload
from shop_floor.store.normalizer import (
    build_detail,
    compute_progress,
    normalize_comments,
    normalize_detail,
    normalize_direct_comments,
    normalize_part_requests,
    normalize_work_orders,
    parse_timestamp,
)


def _row(**overrides):
    row = {
        "work_order_id": "WO0000001",
        "product_number": "P-100",
        "quantity_to_produce": 5,
        "total_parts_needed": 10,
        "parts_supplied": 4,
        "parts_missing": 6,
        "is_completed": False,
    }
    row.update(overrides)
    return row


# ── Work orders ───────────────────────────────────────────────────

class TestDerivedFields:
    def test_in_progress_scenario(self):
        wo = normalize_work_orders([_row()])[0]
        assert wo.status == "InProgress"
        assert wo.progress == 40

    def test_pending_when_nothing_supplied(self):
        wo = normalize_work_orders([_row(parts_supplied=0, parts_missing=10)])[0]
        assert wo.status == "Pending"
        assert wo.progress == 0

    def test_completed_is_full_progress(self):
        wo = normalize_work_orders([_row(is_completed=True)])[0]
        assert wo.status == "Completed"
        assert wo.progress == 100

    def test_zero_total_gives_zero_progress(self):
        wo = normalize_work_orders([_row(total_parts_needed=0, parts_supplied=0)])[0]
        assert wo.progress == 0

    def test_skewed_counts_are_clamped(self):
        wo = normalize_work_orders(
            [_row(total_parts_needed=4, parts_supplied=9, parts_missing=1)]
        )[0]
        assert wo.progress == 100
        assert wo.has_skew

    def test_rounds_half_up(self):
        assert compute_progress(False, 1, 8) == 13  # 12.5
        assert compute_progress(False, 1, 3) == 33

    def test_progress_always_in_range(self):
        rows = [
            _row(work_order_id=f"WO{n:07d}", total_parts_needed=t,
                 parts_supplied=s, is_completed=c)
            for n, (t, s, c) in enumerate([
                (0, 0, False), (0, 5, False), (10, 0, False), (10, 10, False),
                (10, 25, False), (3, 1, True), (7, 3, False),
            ])
        ]
        for wo in normalize_work_orders(rows):
            assert 0 <= wo.progress <= 100

    def test_string_numbers_and_booleans(self):
        wo = normalize_work_orders([_row(
            total_parts_needed="10", parts_supplied="5", parts_missing="5",
            is_completed="false",
        )])[0]
        assert wo.parts_supplied == 5
        assert wo.is_completed is False
        assert wo.progress == 50

    def test_negative_counts_become_zero(self):
        wo = normalize_work_orders([_row(parts_missing=-3)])[0]
        assert wo.parts_missing == 0


class TestListShape:
    def test_accepts_response_object(self):
        orders = normalize_work_orders(work_orders_payload())
        assert [wo.work_order_id for wo in orders] == [
            "WO0000001", "WO0000002", "WO0000003",
        ]

    def test_nested_rows_are_flattened(self):
        raw = {"work_orders": [[_row()], [_row(work_order_id="WO0000002")], None]}
        orders = normalize_work_orders(raw)
        assert [wo.work_order_id for wo in orders] == ["WO0000001", "WO0000002"]

    def test_duplicate_ids_merge_completion(self):
        raw = [
            _row(is_completed=True, product_number="first"),
            _row(is_completed=False, product_number="second"),
        ]
        orders = normalize_work_orders(raw)
        assert len(orders) == 1
        assert orders[0].product_number == "first"
        assert orders[0].is_completed is False
        assert orders[0].status == "InProgress"

    def test_row_without_id_is_skipped(self):
        orders = normalize_work_orders([_row(work_order_id=""), _row()])
        assert len(orders) == 1

    def test_odd_id_format_is_kept(self, caplog):
        orders = normalize_work_orders([_row(work_order_id="WO-7")])
        assert orders[0].work_order_id == "WO-7"
        assert "Unexpected work order id format" in caplog.text


class TestIdempotence:
    def test_same_input_same_output(self):
        payload = work_orders_payload()
        assert normalize_work_orders(payload) == normalize_work_orders(payload)

    def test_renormalizing_output_is_stable(self):
        first = normalize_work_orders(work_orders_payload())
        second = normalize_work_orders([asdict(wo) for wo in first])
        assert first == second

    def test_detail_and_comments_are_stable(self):
        payload = detail_payload()
        assert normalize_detail(payload) == normalize_detail(payload)
        assert (normalize_comments(payload, "WO0000002")
                == normalize_comments(payload, "WO0000002"))


# ── Detail ────────────────────────────────────────────────────────

class TestDetail:
    def test_units_and_stations_pass_through(self):
        units = normalize_detail(detail_payload())
        assert len(units) == 1
        assert units[0].unit_number == "1"
        assert [s.station_number for s in units[0].stations] == ["1", "2"]
        station = units[0].station("2")
        assert station.part_number == "123"
        assert station.quantity_required == 5
        assert station.quantity_short == 5

    def test_duplicate_station_keeps_first(self, caplog):
        payload = detail_payload()
        dup = dict(payload["units"][0]["stations"][0], part_number="999")
        payload["units"][0]["stations"].append(dup)
        units = normalize_detail(payload)
        assert len(units[0].stations) == 2
        assert units[0].station("1").part_number == "100"
        assert "duplicate station" in caplog.text

    def test_station_without_number_dropped(self):
        payload = detail_payload()
        payload["units"][0]["stations"].append({"part_number": "555"})
        units = normalize_detail(payload)
        assert len(units[0].stations) == 2

    def test_same_station_number_in_different_units_is_fine(self):
        payload = detail_payload()
        payload["units"].append({
            "unit_number": 2,
            "stations": [{"station_number": 1, "part_number": "100"}],
        })
        units = normalize_detail(payload)
        assert units[1].unit_number == "2"
        assert units[1].station("1") is not None

    def test_build_detail_carries_id_and_completion(self):
        detail = build_detail(detail_payload(), "WO0000002")
        assert detail.work_order_id == "WO0000002"
        assert detail.is_completed is False
        assert not detail.all_stations_finished

    def test_non_dict_detail_is_empty(self):
        assert normalize_detail(None) == []
        assert normalize_detail(["bogus"]) == []


# ── Comments ──────────────────────────────────────────────────────

class TestComments:
    def test_station_comment_synthesized(self):
        comments = normalize_comments(detail_payload(), "WO0000002")
        assert len(comments) == 1
        c = comments[0]
        assert c.comment_id == "WO0000002-unit-1-station-2"
        assert c.text == "Waiting for part 123"
        assert c.synthesized is True

    def test_top_level_comments_pass_through(self):
        payload = detail_payload()
        payload["comments"] = [
            {"id": "c-1", "user": "Alice", "text": "Assembly started.",
             "timestamp": "2024-05-01T08:00:00Z"},
        ]
        comments = normalize_comments(payload, "WO0000002")
        direct = [c for c in comments if not c.synthesized]
        assert len(direct) == 1
        assert direct[0].comment_id == "c-1"
        assert direct[0].work_order_id == "WO0000002"
        assert direct[0].timestamp == datetime(2024, 5, 1, 8, tzinfo=timezone.utc)

    def test_direct_comment_feed_shapes(self):
        rows = [{"work_order_id": "WO0000001", "user": "Bob", "text": "Slow line"}]
        assert len(normalize_direct_comments(rows)) == 1
        assert len(normalize_direct_comments({"comments": rows})) == 1

    def test_direct_comment_without_work_order_skipped(self):
        assert normalize_direct_comments([{"user": "Bob", "text": "?"}]) == []


# ── Part requests ─────────────────────────────────────────────────

class TestPartRequests:
    def test_status_inferred_from_supplied_quantity(self):
        rows = [
            {"work_order": "WO0000001", "part_number": "123",
             "quantity_required": "10", "quantity_supplied": "0"},
            {"work_order": "WO0000001", "part_number": "999",
             "quantity_required": "2", "quantity_supplied": "2"},
        ]
        requests = normalize_part_requests(rows)
        assert [r.status for r in requests] == ["Requested", "Dispatched"]
        assert requests[0].quantity_requested == 10

    def test_explicit_status_wins(self):
        rows = [{"work_order": "WO0000001", "part_number": "123",
                 "quantity_supplied": 2, "status": "Acknowledged"}]
        assert normalize_part_requests(rows)[0].status == "Acknowledged"

    def test_synthesized_ids_count_per_part(self):
        rows = [
            {"work_order": "WO0000001", "part_number": "123"},
            {"work_order": "WO0000001", "part_number": "123"},
            {"work_order": "WO0000002", "part_number": "123"},
        ]
        ids = [r.request_id for r in normalize_part_requests(rows)]
        assert ids == ["WO0000001-123-1", "WO0000001-123-2", "WO0000002-123-1"]

    def test_server_id_preferred(self):
        rows = [{"id": 42, "work_order": "WO0000001", "part_number": "123"}]
        assert normalize_part_requests(rows)[0].request_id == "42"

    def test_incomplete_rows_skipped(self):
        rows = [{"work_order": "WO0000001"}, {"part_number": "123"}]
        assert normalize_part_requests(rows) == []


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2024-05-01T08:00:00Z").tzinfo is not None

    def test_naive_iso_assumed_utc(self):
        ts = parse_timestamp("2024-05-01T08:00:00")
        assert ts.tzinfo == timezone.utc

    def test_epoch_millis(self):
        ts = parse_timestamp(1714550400000)
        assert ts == datetime(2024, 5, 1, 8, tzinfo=timezone.utc)

    def test_out_of_range_epoch_is_none(self, caplog):
        assert parse_timestamp(10 ** 20) is None
        assert "out of range" in caplog.text

    def test_out_of_range_epoch_does_not_sink_payload(self):
        rows = [
            {"work_order": "WO0000001", "part_number": "123",
             "requested_at": 10 ** 20},
            {"work_order": "WO0000001", "part_number": "999",
             "requested_at": 1714550400},
        ]
        requests = normalize_part_requests(rows)
        assert len(requests) == 2
        assert requests[0].requested_at is None
        assert requests[1].requested_at is not None

    def test_garbage_is_none(self):
        assert parse_timestamp("yesterday-ish") is None
        assert parse_timestamp("") is None
