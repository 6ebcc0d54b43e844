"""
Tests for the sequence tracker.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from payengine.sequence import SequenceTracker


class TestSequenceTracker:
    @pytest.mark.asyncio
    async def test_queries_network(self) -> None:
        source = AsyncMock(return_value=7)
        tracker = SequenceTracker(source)

        assert await tracker.next_sequence("rAddress") == 7
        source.assert_awaited_once_with("rAddress")

    @pytest.mark.asyncio
    async def test_override_passed_through(self) -> None:
        source = AsyncMock(return_value=7)
        tracker = SequenceTracker(source)

        # lower than the network value, still used as given
        assert await tracker.next_sequence("rAddress", override=3) == 3
        source.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_reservation_between_builds(self) -> None:
        tracker = SequenceTracker(AsyncMock(return_value=7))

        first = await tracker.next_sequence("rAddress")
        second = await tracker.next_sequence("rAddress")

        assert first == second == 7
