"""Assembles lottery records from independent ledger reads."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from lottery_client.blockchain.client import LedgerClient
from lottery_client.errors import FetchError, InvalidIdError, LotteryClientError
from lottery_client.lottery.models import LotteryRecord
from lottery_client.lottery.store import LotteryStore
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)


class ReadModelBuilder:
    """Fans out ledger reads and writes complete records into the store.

    A load either produces every record it was asked for or raises
    FetchError without touching the store.
    """

    def __init__(self, client: LedgerClient, store: LotteryStore, config: Optional[Dict[str, Any]] = None) -> None:
        self.client = client
        self.store = store
        lottery_cfg = (config or {}).get("lottery", {})
        self._max_concurrent = max(1, int(lottery_cfg.get("max_concurrent_fetches", 8)))

    async def load_all_lotteries(self) -> List[LotteryRecord]:
        """Fetch every lottery, newest id first, and replace the held collection."""
        count = await self._lottery_count()
        ids = range(1, count)
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _bounded(lottery_id: int) -> LotteryRecord:
            async with semaphore:
                return await self._assemble(lottery_id)

        records = await asyncio.gather(*(_bounded(lottery_id) for lottery_id in ids))
        records = sorted(records, key=lambda record: record.id, reverse=True)

        self.store.replace_all(records)
        logger.info("Loaded %d lotteries", len(records))
        return records

    async def load_one(self, lottery_id: int) -> LotteryRecord:
        """Fetch one lottery, recovering winner names for closed lotteries."""
        count = await self._lottery_count()
        if not 0 < lottery_id < count:
            raise InvalidIdError(lottery_id, count)

        record = await self._assemble(lottery_id)
        if record.is_closed and record.has_winners:
            record = await self._attach_winner_names(record)

        self.store.replace_one(record)
        return record

    async def _lottery_count(self) -> int:
        try:
            return await self.client.lottery_count()
        except LotteryClientError as exc:
            logger.error("Failed to read lottery count: %s", exc)
            raise FetchError(f"Failed to read lottery count: {exc}") from exc

    async def _assemble(self, lottery_id: int) -> LotteryRecord:
        try:
            info, tickets = await asyncio.gather(
                self.client.get_lottery(lottery_id),
                self.client.get_ticket_holders(lottery_id),
            )
            return LotteryRecord.from_ledger(info, tickets)
        except (LotteryClientError, ValueError) as exc:
            logger.error("Failed to fetch lottery %d: %s", lottery_id, exc)
            raise FetchError(f"Failed to fetch lottery {lottery_id}: {exc}") from exc

    async def _attach_winner_names(self, record: LotteryRecord) -> LotteryRecord:
        """Winner names live only in the event log; a failed lookup shows them as anonymous."""
        try:
            closures = await self.client.query_closure_events(record.id)
        except LotteryClientError as exc:
            logger.warning("Winner name lookup failed for lottery %d: %s", record.id, exc)
            return record.with_anonymous_winners()

        if not closures:
            logger.warning("No closure event found for closed lottery %d", record.id)
            return record.with_anonymous_winners()
        return record.with_winner_names(closures[0]).with_anonymous_winners()
