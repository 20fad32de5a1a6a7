"""
Tests for the chronological replay upserter.
"""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import DateTime, select

from dealsync.archivist.models import Investment, Investor, Project, Round
from dealsync.harvester.deal_parser import DealRecord, InvestorRef
from dealsync.harvester.upserter import (
    RecordOutcome,
    ReplayUpserter,
    oldest_first,
    per_investor_amount,
    round_amount,
)

FUNDS = "https://crypto-fundraising.info/funds"


def record(name, date="Oct 2025", round_type="Seed", raised=1_000_000, investors=(), logo="", page=1):
    return DealRecord(
        page=page,
        rank="1",
        project_name=name,
        logo_url=logo,
        round_type=round_type,
        date_text=date,
        raised_amount=raised,
        categories=["DeFi"],
        investor_refs=[InvestorRef(n, f"{FUNDS}/{n.lower()}/") for n in investors],
    )


async def rows(session_factory, model, order_by=None):
    async with session_factory() as session:
        stmt = select(model)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        result = await session.execute(stmt)
        return list(result.scalars().all())


class TestAmounts:
    def test_round_amount(self):
        assert round_amount(1_000_000) == "1000000"
        assert round_amount(None) == "0"

    def test_even_split(self):
        assert per_investor_amount(1_000_000, 4) == "250000"

    def test_split_rounds_to_cents(self):
        assert per_investor_amount(1_000_000, 3) == "333333.33"

    def test_unknown_amount(self):
        assert per_investor_amount(None, 3) == "0"
        assert per_investor_amount(0, 3) == "0"


def test_oldest_first_with_limit():
    records = [record("Newest"), record("Middle"), record("Oldest")]
    assert [r.project_name for r in oldest_first(records)] == ["Oldest", "Middle", "Newest"]
    assert [r.project_name for r in oldest_first(records, limit=2)] == ["Oldest", "Middle"]


class TestReplayUpserter:
    @pytest.mark.asyncio
    async def test_creates_project_round_and_investments(self, session_factory, seed_investor):
        alpha = await seed_investor("Alpha", "alpha")
        beta = await seed_investor("Beta", "beta")
        upserter = ReplayUpserter(session_factory, max_retries=1)

        outcome = await upserter.apply_record(
            record("ProjectA", investors=["Alpha", "Beta"], logo="https://cdn.example.com/a.png"),
            {"alpha": alpha, "beta": beta},
        )

        assert outcome is RecordOutcome.CREATED
        projects = await rows(session_factory, Project)
        assert [(p.slug, p.name) for p in projects] == [("projecta", "ProjectA")]
        assert projects[0].meta_title == "ProjectA - Crypto Project"
        assert projects[0].category == ["DeFi"]

        rounds = await rows(session_factory, Round)
        assert [(r.type, r.date, r.amount) for r in rounds] == [("Seed", datetime(2025, 10, 1), "1000000")]

        investments = await rows(session_factory, Investment)
        assert sorted(i.investor_id for i in investments) == sorted([alpha, beta])
        assert {i.amount for i in investments} == {"500000"}
        assert {i.invested_at for i in investments} == {datetime(2025, 10, 1)}
        assert {i.currency for i in investments} == {"USD"}

    @pytest.mark.asyncio
    async def test_reapplying_is_a_no_op(self, session_factory, seed_investor):
        alpha = await seed_investor("Alpha", "alpha")
        upserter = ReplayUpserter(session_factory, max_retries=1)
        rec = record("ProjectA", investors=["Alpha"])

        assert await upserter.apply_record(rec, {"alpha": alpha}) is RecordOutcome.CREATED
        assert await upserter.apply_record(rec, {"alpha": alpha}) is RecordOutcome.SKIPPED

        assert len(await rows(session_factory, Round)) == 1
        assert len(await rows(session_factory, Investment)) == 1

    @pytest.mark.asyncio
    async def test_only_new_investors_are_added(self, session_factory, seed_investor):
        alpha = await seed_investor("Alpha", "alpha")
        beta = await seed_investor("Beta", "beta")
        upserter = ReplayUpserter(session_factory, max_retries=1)
        investor_map = {"alpha": alpha, "beta": beta}

        await upserter.apply_record(record("ProjectA", investors=["Alpha"]), investor_map)
        outcome = await upserter.apply_record(record("ProjectA", investors=["Alpha", "Beta"]), investor_map)

        assert outcome is RecordOutcome.CREATED
        investments = await rows(session_factory, Investment)
        assert sorted(i.investor_id for i in investments) == sorted([alpha, beta])

    @pytest.mark.asyncio
    async def test_duplicate_references_in_one_row(self, session_factory, seed_investor):
        alpha = await seed_investor("Alpha", "alpha")
        upserter = ReplayUpserter(session_factory, max_retries=1)

        await upserter.apply_record(record("ProjectA", investors=["Alpha", "Alpha"]), {"alpha": alpha})

        assert len(await rows(session_factory, Investment)) == 1

    @pytest.mark.asyncio
    async def test_different_round_tuple_creates_new_round(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)

        await upserter.apply_record(record("ProjectA", round_type="Seed"), {})
        await upserter.apply_record(record("ProjectA", round_type="Series A"), {})
        await upserter.apply_record(record("ProjectA", round_type="Seed", raised=2_000_000), {})

        assert len(await rows(session_factory, Project)) == 1
        assert len(await rows(session_factory, Round)) == 3

    @pytest.mark.asyncio
    async def test_missing_amount_defaults_to_zero(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)

        await upserter.apply_record(record("ProjectA", raised=None), {})

        rounds = await rows(session_factory, Round)
        assert (rounds[0].type, rounds[0].amount) == ("Seed", "0")

    @pytest.mark.asyncio
    async def test_record_without_round_type_only_touches_project(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)

        outcome = await upserter.apply_record(record("ProjectA", round_type=""), {})

        assert outcome is RecordOutcome.SKIPPED
        assert len(await rows(session_factory, Project)) == 1
        assert await rows(session_factory, Round) == []

    @pytest.mark.asyncio
    async def test_date_is_not_parsed_without_round_type(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1, strict_dates=True)

        result = await upserter.replay([record("ProjectA", round_type="", date="sometime")], {})

        assert (result.skipped, result.failed) == (1, 0)
        assert await rows(session_factory, Round) == []

    @pytest.mark.asyncio
    async def test_record_without_date_only_touches_project(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)

        outcome = await upserter.apply_record(record("ProjectA", date=""), {})

        assert outcome is RecordOutcome.SKIPPED
        assert len(await rows(session_factory, Project)) == 1
        assert await rows(session_factory, Round) == []

    @pytest.mark.asyncio
    async def test_existing_project_gets_logo_backfill_only(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)
        await upserter.apply_record(record("ProjectA", logo=""), {})

        await upserter.apply_record(record("ProjectA", logo="https://cdn.example.com/a.png", round_type="Series A"), {})

        projects = await rows(session_factory, Project)
        assert len(projects) == 1
        assert projects[0].logo == "https://cdn.example.com/a.png"
        assert projects[0].meta_image == "https://cdn.example.com/a.png"
        assert projects[0].category == ["DeFi"]

    @pytest.mark.asyncio
    async def test_project_slug_collision_gets_suffix(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)

        await upserter.apply_record(record("Project A"), {})
        await upserter.apply_record(record("Project-A"), {})

        projects = await rows(session_factory, Project, order_by=Project.id)
        assert [p.slug for p in projects] == ["project-a", "project-a-1"]

    @pytest.mark.asyncio
    async def test_unmapped_investor_degrades_gracefully(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1)

        outcome = await upserter.apply_record(record("ProjectA", investors=["Ghost"]), {})

        assert outcome is RecordOutcome.CREATED
        assert await rows(session_factory, Investment) == []

    @pytest.mark.asyncio
    async def test_replay_preserves_chronological_order(self, session_factory):
        scraped = [
            record("Newest", date="20 Oct 2025"),
            record("Middle", date="10 Oct 2025"),
            record("Oldest", date="1 Oct 2025"),
        ]
        upserter = ReplayUpserter(session_factory, max_retries=1)

        result = await upserter.replay(oldest_first(scraped), {})

        assert result.created == 3
        rounds = await rows(session_factory, Round, order_by=Round.id)
        assert [r.date for r in rounds] == sorted(r.date for r in rounds)
        assert [r.created_at for r in rounds] == sorted(r.created_at for r in rounds)

    @pytest.mark.asyncio
    async def test_strict_dates_fail_the_record(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1, strict_dates=True)

        result = await upserter.replay([record("Bad", date="sometime"), record("Good")], {})

        assert (result.created, result.failed) == (1, 1)
        assert [p.name for p in await rows(session_factory, Project)] == ["Good"]

    @pytest.mark.asyncio
    async def test_lenient_dates_fall_back_to_now(self, session_factory):
        upserter = ReplayUpserter(session_factory, max_retries=1, strict_dates=False)

        result = await upserter.replay([record("Lossy", date="sometime")], {})

        assert result.created == 1
        rounds = await rows(session_factory, Round)
        assert rounds[0].date.year >= 2026

    @pytest.mark.asyncio
    async def test_storage_failure_counts_as_failed(self, session_factory, monkeypatch):
        upserter = ReplayUpserter(session_factory, max_retries=2)
        calls = []

        async def broken(*args, **kwargs):
            calls.append(1)
            raise TimeoutError("statement timeout")

        monkeypatch.setattr("dealsync.harvester.upserter.storage.get_or_create_project", broken)

        result = await upserter.replay([record("ProjectA"), record("ProjectB")], {})

        assert result.failed == 2
        assert len(calls) == 4  # two attempts per record

    @pytest.mark.asyncio
    async def test_slow_transaction_is_cut_off_and_retried(self, session_factory, monkeypatch):
        upserter = ReplayUpserter(session_factory, transaction_timeout=0.05, max_retries=2)
        calls = []

        async def hanging(*args, **kwargs):
            calls.append(1)
            await asyncio.sleep(5)

        monkeypatch.setattr("dealsync.harvester.upserter.storage.get_or_create_project", hanging)

        result = await upserter.replay([record("ProjectA")], {})

        assert result.failed == 1
        assert len(calls) == 2
        assert await rows(session_factory, Project) == []


class TestTimestampColumns:
    """Timestamps are stored as naive UTC (TIMESTAMP WITHOUT TIME ZONE)."""

    @pytest.mark.parametrize(
        "column",
        [
            Project.__table__.c.created_at,
            Project.__table__.c.updated_at,
            Round.__table__.c.date,
            Round.__table__.c.created_at,
            Investor.__table__.c.created_at,
            Investment.__table__.c.invested_at,
            Investment.__table__.c.updated_at,
        ],
        ids=lambda c: f"{c.table.name}.{c.name}",
    )
    def test_column_is_naive_datetime(self, column):
        assert type(column.type) is DateTime
        assert column.type.timezone is False
        assert column.nullable is False

    def test_round_created_at_is_indexed(self):
        assert Round.__table__.c.created_at.index is True

    @pytest.mark.asyncio
    async def test_naive_values_round_trip(self, session_factory, seed_investor):
        alpha = await seed_investor("Alpha", "alpha")
        upserter = ReplayUpserter(session_factory, max_retries=1)

        outcome = await upserter.apply_record(record("ProjectA", investors=["Alpha"]), {"alpha": alpha})

        assert outcome is RecordOutcome.CREATED
        (round_,) = await rows(session_factory, Round)
        (investment,) = await rows(session_factory, Investment)
        assert round_.date == datetime(2025, 10, 1)
        assert round_.created_at.tzinfo is None
        assert investment.invested_at == datetime(2025, 10, 1)
