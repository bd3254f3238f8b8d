"""Folds confirmed receipts into held lottery records."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from lottery_client.errors import MergeError
from lottery_client.lottery.models import ClosureEvent, LedgerEvent, Receipt
from lottery_client.lottery.store import LotteryStore
from lottery_client.utils.common import same_address
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)

CLOSURE_EVENTS = ("WinnersDeclared", "LotteryClosed")


@dataclass(frozen=True)
class MergeResult:
    """What the merge layer did with a receipt.

    `needs_refresh` asks the caller to re-fetch from the ledger, either
    because nothing could be patched or because the patch is known to be
    incomplete.
    """

    applied: bool
    needs_refresh: bool
    reason: str = ""

    @classmethod
    def fallback(cls, reason: str) -> "MergeResult":
        logger.info("Optimistic merge skipped: %s", reason)
        return cls(applied=False, needs_refresh=True, reason=reason)


class OptimisticMerger:
    """Applies the minimal patch implied by a confirmed transaction."""

    def __init__(self, store: LotteryStore) -> None:
        self.store = store

    def apply_purchase(
        self,
        receipt: Receipt,
        *,
        lottery_id: int,
        viewer: Optional[str],
        generation: Optional[int] = None,
    ) -> MergeResult:
        if receipt.decode_errors:
            return MergeResult.fallback(f"{receipt.decode_errors} undecodable log(s) in {receipt.transaction_hash}")
        event = _event_for(receipt, ("TicketBought",), lottery_id)
        if event is None:
            return MergeResult.fallback(f"no TicketBought event for lottery {lottery_id} in {receipt.transaction_hash}")

        try:
            buyer = str(event.args["buyer"])
            count = int(event.args["count"])
        except (KeyError, TypeError, ValueError) as exc:
            return MergeResult.fallback(f"unreadable TicketBought event: {exc}")

        if not same_address(buyer, viewer):
            return MergeResult.fallback(f"purchase by {buyer} cannot be attributed to the current user")

        try:
            patched = self.store.patch(
                lottery_id,
                lambda record: record.with_purchase(buyer, count),
                expected_generation=generation,
            )
        except (MergeError, ValueError) as exc:
            return MergeResult.fallback(str(exc))
        if not patched:
            return MergeResult.fallback(f"lottery {lottery_id} was refreshed while the purchase was in flight")

        logger.info("Merged purchase of %d tickets in lottery %d", count, lottery_id)
        return MergeResult(applied=True, needs_refresh=False)

    def apply_closure(
        self,
        receipt: Receipt,
        *,
        lottery_id: int,
        viewer_is_operator: bool,
        generation: Optional[int] = None,
    ) -> MergeResult:
        if receipt.decode_errors:
            return MergeResult.fallback(f"{receipt.decode_errors} undecodable log(s) in {receipt.transaction_hash}")
        event = _event_for(receipt, CLOSURE_EVENTS, lottery_id)
        if event is None:
            return MergeResult.fallback(f"no closure event for lottery {lottery_id} in {receipt.transaction_hash}")

        try:
            patched = self.store.patch(
                lottery_id,
                lambda record: replace(record, is_closed=True),
                expected_generation=generation,
            )
        except MergeError as exc:
            return MergeResult.fallback(str(exc))
        if not patched:
            return MergeResult.fallback(f"lottery {lottery_id} was refreshed while the closure was in flight")

        # Winner selection happens on the ledger; only a re-fetch can show it.
        logger.info("Marked lottery %d closed", lottery_id)
        return MergeResult(applied=True, needs_refresh=viewer_is_operator, reason="winners are selected by the ledger")

    def apply_winner_names(self, receipt: Receipt, *, lottery_id: int) -> MergeResult:
        """Name the held winners from the receipt's `WinnersDeclared` event.

        Only applies once the held record carries the ledger's winner
        addresses, i.e. after the post-closure refresh.
        """
        if receipt.decode_errors:
            return MergeResult.fallback(f"{receipt.decode_errors} undecodable log(s) in {receipt.transaction_hash}")
        event = _event_for(receipt, ("WinnersDeclared",), lottery_id)
        if event is None:
            return MergeResult.fallback(f"no WinnersDeclared event for lottery {lottery_id} in {receipt.transaction_hash}")
        try:
            closure = ClosureEvent.from_event(event)
        except (KeyError, TypeError, ValueError) as exc:
            return MergeResult.fallback(f"unreadable WinnersDeclared event: {exc}")

        record = self.store.get_one(lottery_id)
        if record is None or not record.is_closed:
            return MergeResult.fallback(f"lottery {lottery_id} is not held as closed")
        if not closure.winners[0].is_set:
            # the ledger recorded no winners; nothing to name
            return MergeResult(applied=True, needs_refresh=False)
        if not record.has_winners:
            return MergeResult.fallback(f"winners of lottery {lottery_id} are not held yet")

        try:
            self.store.patch(lottery_id, lambda held: held.with_winner_names(closure))
        except MergeError as exc:
            return MergeResult.fallback(str(exc))
        return MergeResult(applied=True, needs_refresh=False)


def _event_for(receipt: Receipt, names, lottery_id: int) -> Optional[LedgerEvent]:
    """First event named in `names` that belongs to `lottery_id`, or None."""
    for event in receipt.events:
        if event.name not in names:
            continue
        try:
            if int(event.args["lotteryId"]) == lottery_id:
                return event
        except (KeyError, TypeError, ValueError):
            logger.warning("Event %s in %s has no usable lotteryId", event.name, receipt.transaction_hash)
            return None
    return None
