"""Error taxonomy shared by the ledger client, read model and coordinator."""

from __future__ import annotations

from typing import Optional


class LotteryClientError(Exception):
    """Base class for every error the lottery client reports."""


class LedgerConnectionError(LotteryClientError, ConnectionError):
    """No provider or signer is available; the user must connect first."""


class RejectedError(LotteryClientError):
    """The user declined to sign the transaction."""


class RemoteError(LotteryClientError):
    """The ledger reverted or rejected the call."""

    def __init__(self, reason: str, *, tx_hash: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash


class ValidationError(LotteryClientError):
    """A local precondition failed before any network activity."""


class InvalidIdError(LotteryClientError):
    """The requested lottery id is outside ``0 < id < lotteryCount``."""

    def __init__(self, lottery_id: int, lottery_count: int) -> None:
        super().__init__(f"Invalid lottery id {lottery_id} (valid ids: 1..{lottery_count - 1})")
        self.lottery_id = lottery_id
        self.lottery_count = lottery_count


class FetchError(LotteryClientError):
    """A read-model assembly step failed; the whole load was aborted."""


class MergeError(LotteryClientError):
    """An optimistic patch could not be applied to held state."""


class InvalidTransitionError(LotteryClientError):
    """The action state machine received an event its current state cannot accept."""
