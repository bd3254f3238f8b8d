"""In-memory holder of lottery records for the lottery client."""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from lottery_client.errors import MergeError
from lottery_client.lottery.models import LotteryRecord
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[List[LotteryRecord]], None]


class LotteryStore:
    """Process-wide collection of `LotteryRecord`s.

    Only two writers exist: the read-model builder (`replace_all` /
    `replace_one`, both of which start a new generation) and the optimistic
    merge layer (`patch`). A patch computed against an older generation is
    discarded so that a refresh that landed in between always wins.
    """

    def __init__(self) -> None:
        self._records: Dict[int, LotteryRecord] = {}
        self._generation = 0
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        self._listeners[event_type].append(callback)
        logger.debug("[LotteryStore] Adding listener for event_type=%s", event_type)

    def _emit(self, event_type: str) -> None:
        payload = self.get()
        for callback in list(self._listeners.get(event_type, [])):
            try:
                callback(payload)
            except Exception as exc:  # pragma: no cover
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        return self._generation

    def get(self) -> List[LotteryRecord]:
        """Held records, newest id first."""
        return sorted(self._records.values(), key=lambda record: record.id, reverse=True)

    def get_one(self, lottery_id: int) -> Optional[LotteryRecord]:
        return self._records.get(lottery_id)

    def snapshot(self) -> Tuple[int, List[LotteryRecord]]:
        return self._generation, self.get()

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    def replace_all(self, records: Iterable[LotteryRecord]) -> None:
        self._records = {record.id: record for record in records}
        self._generation += 1
        logger.info("[LotteryStore] replaced all records (%d held, generation %d)", len(self._records), self._generation)
        self._emit("lotteries_update")

    def replace_one(self, record: LotteryRecord) -> None:
        self._records[record.id] = record
        self._generation += 1
        logger.info("[LotteryStore] replaced lottery %d (generation %d)", record.id, self._generation)
        self._emit("lotteries_update")

    def patch(
        self,
        lottery_id: int,
        fn: Callable[[LotteryRecord], LotteryRecord],
        *,
        expected_generation: Optional[int] = None,
    ) -> bool:
        """Apply `fn` to one held record.

        Returns False when the patch is discarded because the store was
        replaced after `expected_generation`. Raises MergeError when the
        record is not held or the patched record would move backwards.
        """
        if expected_generation is not None and expected_generation != self._generation:
            logger.info(
                "[LotteryStore] discarding stale patch for lottery %d (generation %d, now %d)",
                lottery_id,
                expected_generation,
                self._generation,
            )
            return False

        current = self._records.get(lottery_id)
        if current is None:
            raise MergeError(f"Lottery {lottery_id} is not held locally")

        updated = fn(current)
        _check_forward(current, updated)
        self._records[lottery_id] = updated
        logger.info(
            "[LotteryStore] patched lottery %d: tickets %d -> %d, pool %d -> %d, closed=%s",
            lottery_id,
            current.tickets_sold,
            updated.tickets_sold,
            current.total_pool,
            updated.total_pool,
            updated.is_closed,
        )
        self._emit("lotteries_update")
        return True

    def clear(self) -> None:
        self._records = {}
        self._generation += 1
        self._emit("lotteries_update")


def _check_forward(before: LotteryRecord, after: LotteryRecord) -> None:
    """Reject patches that would rewrite immutable fields or shrink the lottery."""
    if after.id != before.id or after.ticket_price != before.ticket_price or after.admin != before.admin:
        raise MergeError(f"Patch for lottery {before.id} changed an immutable field")
    if before.is_closed and not after.is_closed:
        raise MergeError(f"Patch would reopen closed lottery {before.id}")
    if after.total_pool < before.total_pool or after.tickets_sold < before.tickets_sold:
        raise MergeError(f"Patch would shrink lottery {before.id}")
    if after.tickets[: before.tickets_sold] != before.tickets:
        raise MergeError(f"Patch would rewrite ticket history of lottery {before.id}")
    if before.is_closed and (after.tickets != before.tickets or after.total_pool != before.total_pool):
        raise MergeError(f"Patch would modify closed lottery {before.id}")
