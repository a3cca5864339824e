import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from block_gateway.envelopes import TransportKind
from block_gateway.errors import UpstreamError
from block_gateway.head_tracker import TrackerState
from block_gateway.models import TrackerDegraded
from block_gateway.sessions import SessionLifecycle


@pytest.fixture
def tracker(events) -> MagicMock:
    tracker = MagicMock()
    tracker.start = AsyncMock(return_value=True)
    tracker.stop = AsyncMock()
    tracker.events = events
    tracker.state = TrackerState()
    return tracker


@pytest.mark.asyncio
async def test_tracker_follows_total_sessions_across_kinds(tracker) -> None:
    lifecycle = SessionLifecycle(tracker)

    await lifecycle.session_opened(TransportKind.WEBSOCKET)
    await lifecycle.session_opened(TransportKind.MCP_SSE)
    tracker.start.assert_awaited_once()

    await lifecycle.session_closed(TransportKind.WEBSOCKET)
    tracker.stop.assert_not_awaited()

    await lifecycle.session_closed(TransportKind.MCP_SSE)
    tracker.stop.assert_awaited_once()
    assert lifecycle.total == 0


@pytest.mark.asyncio
async def test_concurrent_opens_start_tracker_once(tracker) -> None:
    lifecycle = SessionLifecycle(tracker)

    await asyncio.gather(*(lifecycle.session_opened(TransportKind.SSE) for _ in range(5)))

    tracker.start.assert_awaited_once()
    assert lifecycle.sessions[TransportKind.SSE] == 5


@pytest.mark.asyncio
async def test_closing_unknown_session_is_ignored(tracker) -> None:
    lifecycle = SessionLifecycle(tracker)

    await lifecycle.session_closed(TransportKind.SSE)

    tracker.stop.assert_not_awaited()
    assert lifecycle.total == 0


@pytest.mark.asyncio
async def test_failed_activation_reports_and_retries(tracker, events) -> None:
    tracker.start.side_effect = [UpstreamError("connection refused"), True]
    sleep = AsyncMock()
    lifecycle = SessionLifecycle(tracker, retry_interval=5.0, sleep=sleep)

    await lifecycle.session_opened(TransportKind.SSE)

    notice = events.get_nowait()
    assert isinstance(notice, TrackerDegraded)
    assert notice.message == "Failed to fetch initial data, will retry shortly"

    await asyncio.wait_for(lifecycle._retry_task, timeout=1)
    sleep.assert_awaited_with(5.0)
    assert tracker.start.await_count == 2


@pytest.mark.asyncio
async def test_shutdown_stops_tracker_and_resets_counts(tracker) -> None:
    lifecycle = SessionLifecycle(tracker)
    await lifecycle.session_opened(TransportKind.WEBSOCKET)

    await lifecycle.shutdown()

    assert lifecycle.total == 0
    tracker.stop.assert_awaited_once()
