"""Wire helpers, since-parsing and keyed locks."""

import asyncio
import json
from datetime import datetime, timezone

from utilities import (
    KeyedLock,
    make_connected,
    make_sse_frame,
    make_too_many_connections,
    now_utc,
    parse_since,
    to_epoch_ms,
    to_iso,
)


def test_now_utc_has_millisecond_resolution() -> None:
    assert now_utc().microsecond % 1000 == 0


def test_iso_and_epoch_ms_agree() -> None:
    ts = datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)
    assert to_iso(ts) == "2024-05-01T12:00:00.123Z"
    assert to_epoch_ms(ts) == 1714564800123


def test_parse_since_epoch_millis() -> None:
    assert parse_since("1714564800123") == datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)


def test_parse_since_iso_strings() -> None:
    expected = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_since("2024-05-01T12:00:00Z") == expected
    assert parse_since("2024-05-01T12:00:00.000Z") == expected
    assert parse_since("2024-05-01T14:00:00+02:00") == expected
    # naive values are taken as UTC
    assert parse_since("2024-05-01T12:00:00") == expected
    assert parse_since("2024-05-01T12:00Z") == expected
    assert parse_since("2024-05-01T12:00:00.5Z") == expected.replace(microsecond=500000)
    assert parse_since("2024-05-01T12:00:00.12Z") == expected.replace(microsecond=120000)


def test_parse_since_garbage_means_no_bound() -> None:
    for value in (None, "", "   ", "yesterday", "12abc", "-5", "9" * 40):
        assert parse_since(value) is None


def test_sse_frame_format() -> None:
    frame = make_sse_frame(make_connected("s1"))
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):]) == {"type": "connected", "studentId": "s1"}


def test_too_many_connections_body() -> None:
    assert make_too_many_connections(3) == {
        "error": "Too many connections",
        "message": "Max 3 connections per student",
    }


async def test_keyed_lock_serializes_same_key_only() -> None:
    locks = KeyedLock()
    order = []

    async def worker(key: str, tag: str, delay: float) -> None:
        async with locks.hold(key):
            order.append(f"{tag}-in")
            await asyncio.sleep(delay)
            order.append(f"{tag}-out")

    await asyncio.gather(worker("a", "a1", 0.05), worker("a", "a2", 0), worker("b", "b1", 0))
    # a2 waits for a1; b1 does not
    assert order.index("a1-out") < order.index("a2-in")
    assert order.index("b1-in") < order.index("a1-out")


async def test_keyed_lock_drops_idle_keys() -> None:
    locks = KeyedLock()
    async with locks.hold("a"):
        assert len(locks) == 1
    assert len(locks) == 0
