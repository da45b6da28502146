"""Shared test fixtures."""

import asyncio
import copy
import inspect

import pytest

from shop_floor.api.errors import HttpError
from shop_floor.api.retry import RetryPolicy
from shop_floor.store.parts_requests import PartsRequestWorkflow
from shop_floor.store.work_orders import WorkOrderStore


class FakeApiClient:
    """Scripted stand-in for ApiClient.

    ``on(method, path, *responses)`` queues answers for a route. Each call
    takes the next one; the last answer repeats. An answer may be a value,
    an exception instance (raised), or a callable taking the body (its
    result, awaited if needed, is returned).
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.calls: list[tuple[str, str, dict | None]] = []

    def on(self, method: str, path: str, *responses):
        self.routes[(method, path)] = list(responses)
        return self

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def bodies(self, method: str, path: str) -> list:
        return [b for m, p, b in self.calls if m == method and p == path]

    async def call(self, method, path, body=None):
        self.calls.append((method, path, copy.deepcopy(body)))
        queue = self.routes.get((method, path))
        if not queue:
            raise HttpError(404, f"No route for {method} {path}")
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            result = answer(body)
            if inspect.isawaitable(result):
                result = await result
            return copy.deepcopy(result)
        return copy.deepcopy(answer)

    async def aclose(self):
        pass


async def no_sleep(_seconds):
    await asyncio.sleep(0)


# ── Sample backend payloads ───────────────────────────────────────

def work_orders_payload():
    return {
        "work_orders": [
            {
                "work_order_id": "WO0000001",
                "product_number": "P-100",
                "quantity_to_produce": 5,
                "total_parts_needed": 10,
                "parts_supplied": 4,
                "parts_missing": 6,
                "is_completed": False,
            },
            {
                "work_order_id": "WO0000002",
                "product_number": "P-200",
                "quantity_to_produce": 2,
                "total_parts_needed": 8,
                "parts_supplied": 0,
                "parts_missing": 8,
                "is_completed": False,
            },
            {
                "work_order_id": "WO0000003",
                "product_number": "P-300",
                "quantity_to_produce": 1,
                "total_parts_needed": 6,
                "parts_supplied": 3,
                "parts_missing": 3,
                "is_completed": False,
            },
        ]
    }


def detail_payload():
    return {
        "is_completed": False,
        "units": [
            {
                "unit_number": "1",
                "stations": [
                    {
                        "station_number": "1",
                        "station_status": "completed",
                        "part_number": "100",
                        "part_description": "Frame",
                        "quantity_required": 1,
                        "quantity_supplied": 1,
                        "station_comments": "",
                    },
                    {
                        "station_number": "2",
                        "station_status": "in_progress",
                        "part_number": "123",
                        "part_description": "Bracket",
                        "quantity_required": 5,
                        "quantity_supplied": 0,
                        "station_comments": "Waiting for part 123",
                    },
                ],
            },
        ],
    }


@pytest.fixture
def fake_client():
    return FakeApiClient()


@pytest.fixture
def retry():
    """Default attempts, no real waiting."""
    return RetryPolicy(max_attempts=3, backoff_ms=1000, sleep=no_sleep)


@pytest.fixture
def store(fake_client, retry):
    return WorkOrderStore(fake_client, retry=retry, operator="tester")


@pytest.fixture
def workflow(fake_client, store, retry):
    return PartsRequestWorkflow(
        fake_client, store, requested_by="tester", retry=retry,
    )
