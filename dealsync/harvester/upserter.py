"""
Chronological Replay Upserter - applies deal records oldest-first.

Each record becomes exactly one short transaction:
    project (find by name, else create under a unique slug)
    -> round (exact (project, type, date, amount) match, else create)
    -> investments (only the (round, investor) pairs not recorded yet,
       one batched insert)

Investor ids come from the map built by InvestorResolver beforehand; nothing
is scraped or created for investors inside a transaction.

Records are applied strictly one at a time. Round creation timestamps decide
which deal is "latest" for the next gap scan, so insertion order must follow
listing chronology.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..archivist import storage
from ..archivist.database import get_session_factory
from ..archivist.models import Currency
from ..common.dates import parse_deal_date
from ..common.errors import SlugExhaustedError, UnparseableDateError
from ..common.retry import with_retry
from ..config.settings import settings
from .deal_parser import DealRecord
from .investor_resolver import InvestorIdMap, resolve_investor_id

logger = logging.getLogger(__name__)

ZERO_AMOUNT = "0"
CENT = Decimal("0.01")


class RecordOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ReplayResult:
    created: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: List[RecordOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    def add(self, outcome: RecordOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome is RecordOutcome.CREATED:
            self.created += 1
        elif outcome is RecordOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def round_amount(raised: Optional[int]) -> str:
    """Round amount as stored: the raised figure, or "0" when unknown."""
    return str(raised) if raised is not None else ZERO_AMOUNT


def per_investor_amount(raised: Optional[int], investor_count: int) -> str:
    """Even split of the raised amount across the round's investors, to the cent."""
    if not raised or investor_count <= 0:
        return ZERO_AMOUNT
    share = (Decimal(raised) / investor_count).quantize(CENT, rounding=ROUND_HALF_UP)
    return format(share.normalize(), "f")


def oldest_first(records: Sequence[DealRecord], limit: Optional[int] = None) -> List[DealRecord]:
    """Reverse scraped (newest-first) records; a limit keeps the oldest ones."""
    ordered = list(reversed(records))
    if limit is not None and limit >= 0 and len(ordered) > limit:
        logger.warning(f"LIMIT: processing only the first {limit} of {len(ordered)} records")
        ordered = ordered[:limit]
    return ordered


class ReplayUpserter:
    """
    Applies deal records as idempotent per-record transactions.

    Usage:
        upserter = ReplayUpserter()
        result = await upserter.replay(oldest_first(scan.records), investor_map)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        transaction_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        strict_dates: Optional[bool] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.transaction_timeout = transaction_timeout or settings.transaction_timeout
        self.max_retries = max_retries
        self.strict_dates = settings.strict_dates if strict_dates is None else strict_dates

    async def apply_record(self, record: DealRecord, investor_map: InvestorIdMap) -> RecordOutcome:
        """
        Upsert one record.

        Returns:
            CREATED if a round or investment was inserted, SKIPPED for a full
            duplicate, a record without round type or date, or an abandoned
            project slug

        Raises:
            UnparseableDateError: In strict-date mode
            Exception: The last storage error once retries are exhausted
        """
        # Parsed up front: a bad date is not a transient failure
        round_date = None
        if record.round_type and record.date_text:
            round_date = parse_deal_date(record.date_text, strict=self.strict_dates)

        try:
            return await with_retry(
                lambda: self._transaction(record, round_date, investor_map),
                f"Upsert deal record for {record.project_name}",
                max_attempts=self.max_retries,
            )
        except SlugExhaustedError as e:
            logger.warning(f"{e}; skipping record {record.project_name!r}")
            return RecordOutcome.SKIPPED

    async def replay(
        self,
        records: Sequence[DealRecord],
        investor_map: InvestorIdMap,
    ) -> ReplayResult:
        """Apply records sequentially, in the order given (oldest first)."""
        result = ReplayResult()
        for index, record in enumerate(records, start=1):
            try:
                outcome = await self.apply_record(record, investor_map)
            except UnparseableDateError as e:
                logger.error(f"Record {index}/{len(records)} {record.project_name!r} failed: {e}")
                outcome = RecordOutcome.FAILED
            except Exception as e:
                logger.error(
                    f"Failed to insert {record.project_name!r} after retries: {type(e).__name__}: {e}",
                    exc_info=True,
                )
                outcome = RecordOutcome.FAILED
            result.add(outcome)

        if result.failed:
            logger.warning(f"{result.failed} records failed to insert")
        return result

    async def _transaction(
        self,
        record: DealRecord,
        round_date: Optional[datetime],
        investor_map: InvestorIdMap,
    ) -> RecordOutcome:
        async with self.session_factory() as session:
            try:
                outcome = await asyncio.wait_for(
                    self._apply(session, record, round_date, investor_map),
                    timeout=self.transaction_timeout,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            return outcome

    async def _apply(
        self,
        session: AsyncSession,
        record: DealRecord,
        round_date: Optional[datetime],
        investor_map: InvestorIdMap,
    ) -> RecordOutcome:
        project, _ = await storage.get_or_create_project(
            session,
            record.project_name,
            logo=record.logo_url or None,
            categories=record.categories,
        )

        # No round without both a type and a date
        if round_date is None:
            return RecordOutcome.SKIPPED

        amount = round_amount(record.raised_amount)
        round_, round_created = await storage.get_or_create_round(
            session, project.id, record.round_type, round_date, amount
        )
        if round_created:
            logger.info(f"Added round for {record.project_name}: {record.round_type} ({amount})")

        investor_ids = []
        for ref in record.investor_refs:
            investor_id = resolve_investor_id(investor_map, ref)
            if investor_id is None:
                logger.warning(f"No investor id for {ref.name or ref.url!r} in {record.project_name}")
                continue
            investor_ids.append(investor_id)
        investor_ids = list(dict.fromkeys(investor_ids))

        inserted = 0
        if investor_ids:
            existing = await storage.existing_investor_ids_for_round(session, round_.id, investor_ids)
            to_create = [i for i in investor_ids if i not in existing]
            inserted = await storage.create_investments(
                session,
                round_.id,
                to_create,
                amount=per_investor_amount(record.raised_amount, len(investor_ids)),
                invested_at=round_date,
                currency=Currency.USD.value,
            )
            if inserted:
                logger.info(f"Added {inserted} investments for {record.project_name}")

        return RecordOutcome.CREATED if round_created or inserted else RecordOutcome.SKIPPED
