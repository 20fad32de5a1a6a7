"""
Tests for sync-gap detection against mocked listing pages.
"""

import asyncio

import pytest

from dealsync.common.errors import PageFetchError
from dealsync.harvester.gap_detector import SyncGapDetector, read_stop_marker
from tests.test_helpers import FakeFetcher, deal_row, listing_page


def page(*names):
    return listing_page([deal_row(name) for name in names])


class TestReadStopMarker:
    @pytest.mark.asyncio
    async def test_empty_store(self, session_factory):
        assert await read_stop_marker(session_factory) is None

    @pytest.mark.asyncio
    async def test_latest_by_date_then_creation(self, session_factory, seed_round):
        from datetime import datetime

        await seed_round("Older", date=datetime(2025, 8, 1))
        await seed_round("SameDayFirst", date=datetime(2025, 10, 1))
        await seed_round("SameDaySecond", date=datetime(2025, 10, 1))

        marker = await read_stop_marker(session_factory)

        assert marker.project_name == "SameDaySecond"


class TestSyncGapDetector:
    @pytest.mark.asyncio
    async def test_stops_at_marker_on_page_three(self, session_factory, seed_round):
        await seed_round("X")
        fetcher = FakeFetcher({
            1: page("P1a", "P1b"),
            2: page("P2a", "P2b"),
            3: page("P3a", "X", "P3c"),
            4: page("P4a"),
        })
        detector = SyncGapDetector(fetcher, session_factory, max_pages=10, concurrency=1)

        scan = await detector.find_new_records()

        assert [r.project_name for r in scan.records] == ["P1a", "P1b", "P2a", "P2b", "P3a"]
        assert scan.found_marker
        assert scan.marker_page == 3
        assert scan.scanned_pages == 3
        assert fetcher.requested == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_concurrent_groups_discard_pages_after_marker(self, session_factory, seed_round):
        await seed_round("X")
        fetcher = FakeFetcher({1: page("A"), 2: page("X", "B"), 3: page("C")})
        detector = SyncGapDetector(fetcher, session_factory, max_pages=10, concurrency=3)

        scan = await detector.find_new_records()

        assert [r.project_name for r in scan.records] == ["A"]
        assert fetcher.requested == [1, 2, 3]
        assert scan.scanned_pages == 2

    @pytest.mark.asyncio
    async def test_marker_first_on_page_one_means_synced(self, session_factory, seed_round):
        await seed_round("X")
        detector = SyncGapDetector(FakeFetcher({1: page("X", "Older")}), session_factory, concurrency=1)

        scan = await detector.find_new_records()

        assert scan.is_synced
        assert scan.found_marker

    @pytest.mark.asyncio
    async def test_page_limit_safety_valve(self, session_factory, seed_round, caplog):
        await seed_round("Renamed Upstream")
        fetcher = FakeFetcher({n: page(f"P{n}") for n in range(1, 10)})
        detector = SyncGapDetector(fetcher, session_factory, max_pages=4, concurrency=2)

        scan = await detector.find_new_records()

        assert len(scan.records) == 4
        assert scan.hit_page_limit
        assert not scan.found_marker
        assert fetcher.requested == [1, 2, 3, 4]
        assert "renamed upstream" in caplog.text

    @pytest.mark.asyncio
    async def test_max_pages_override(self, session_factory, seed_round):
        await seed_round("X")
        fetcher = FakeFetcher({n: page(f"P{n}") for n in range(1, 10)})
        detector = SyncGapDetector(fetcher, session_factory, max_pages=8, concurrency=1)

        scan = await detector.find_new_records(max_pages=2)

        assert fetcher.requested == [1, 2]
        assert scan.hit_page_limit

    @pytest.mark.asyncio
    async def test_first_run_uses_small_page_budget(self, session_factory):
        fetcher = FakeFetcher({n: page(f"P{n}") for n in range(1, 10)})
        detector = SyncGapDetector(fetcher, session_factory, max_pages=30, first_run_pages=5, concurrency=3)

        scan = await detector.find_new_records()

        assert fetcher.requested == [1, 2, 3, 4, 5]
        assert len(scan.records) == 5
        assert scan.stop_marker is None
        assert not scan.hit_page_limit

    @pytest.mark.asyncio
    async def test_failed_page_is_skipped(self, session_factory, seed_round):
        await seed_round("X")
        fetcher = FakeFetcher({1: page("A"), 2: PageFetchError(2, "timeout"), 3: page("B", "X")})
        detector = SyncGapDetector(fetcher, session_factory, max_pages=5, concurrency=1)

        scan = await detector.find_new_records()

        assert [r.project_name for r in scan.records] == ["A", "B"]
        assert scan.failed_pages == [2]
        assert scan.scanned_pages == 2

    @pytest.mark.asyncio
    async def test_stop_signal_cancels_scan(self, session_factory, seed_round):
        await seed_round("X")
        stop = asyncio.Event()

        class StoppingFetcher(FakeFetcher):
            async def fetch_pages(self, page_numbers):
                stop.set()
                return await super().fetch_pages(page_numbers)

        fetcher = StoppingFetcher({n: page(f"P{n}") for n in range(1, 10)})
        detector = SyncGapDetector(fetcher, session_factory, max_pages=10, concurrency=1)

        scan = await detector.find_new_records(stop_signal=stop)

        assert scan.cancelled
        assert fetcher.requested == [1]
        assert not scan.hit_page_limit
