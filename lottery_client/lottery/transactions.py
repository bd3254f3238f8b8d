"""
Transaction coordinator for state-changing lottery actions.

Every action (create, buy, close) runs through the same state machine:

    IDLE -> VALIDATING -> SUBMITTING -> AWAITING_CONFIRMATION -> RECONCILING -> SUCCEEDED
                 \\              \\                 \\                  \\
                  +--------------+-----------------+------------------+--> FAILED

Transitions are computed by the pure `reduce` function; the coordinator only
performs the side effects between them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from lottery_client.blockchain.client import LedgerClient, PendingTransaction
from lottery_client.blockchain.signer import LocalSigner
from lottery_client.errors import (
    InvalidTransitionError,
    LedgerConnectionError,
    LotteryClientError,
    ValidationError,
)
from lottery_client.lottery.merge import OptimisticMerger
from lottery_client.lottery.models import MIN_TICKETS_TO_CLOSE, LotteryRecord, Receipt
from lottery_client.lottery.read_model import ReadModelBuilder
from lottery_client.lottery.store import LotteryStore
from lottery_client.utils.common import parse_eth_amount
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)


class ActionKind(str, Enum):
    CREATE = "create"
    BUY = "buy"
    CLOSE = "close"


class ActionState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RECONCILING = "reconciling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ActionOutcome(str, Enum):
    """What the presentation layer sees of an action or load."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EventType(Enum):
    START = "start"
    VALIDATED = "validated"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    RECONCILED = "reconciled"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionEvent:
    type: EventType
    tx_hash: Optional[str] = None
    receipt: Optional[Receipt] = None
    data: Any = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class ActionResult:
    outcome: ActionOutcome
    data: Any = None
    error: Optional[Exception] = None
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class ActionStatus:
    """Immutable state of one action invocation."""

    kind: ActionKind
    lottery_id: Optional[int] = None
    state: ActionState = ActionState.IDLE
    tx_hash: Optional[str] = None
    receipt: Optional[Receipt] = None
    data: Any = None
    error: Optional[Exception] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (ActionState.SUCCEEDED, ActionState.FAILED)

    @property
    def outcome(self) -> ActionOutcome:
        if self.state is ActionState.SUCCEEDED:
            return ActionOutcome.SUCCEEDED
        if self.state is ActionState.FAILED:
            return ActionOutcome.FAILED
        return ActionOutcome.PENDING

    def result(self) -> ActionResult:
        return ActionResult(outcome=self.outcome, data=self.data, error=self.error, tx_hash=self.tx_hash)


_TRANSITIONS: Dict[Tuple[ActionState, EventType], ActionState] = {
    (ActionState.IDLE, EventType.START): ActionState.VALIDATING,
    (ActionState.VALIDATING, EventType.VALIDATED): ActionState.SUBMITTING,
    (ActionState.SUBMITTING, EventType.SUBMITTED): ActionState.AWAITING_CONFIRMATION,
    (ActionState.AWAITING_CONFIRMATION, EventType.CONFIRMED): ActionState.RECONCILING,
    (ActionState.RECONCILING, EventType.RECONCILED): ActionState.SUCCEEDED,
}

_FAILABLE = frozenset(
    {
        ActionState.VALIDATING,
        ActionState.SUBMITTING,
        ActionState.AWAITING_CONFIRMATION,
        ActionState.RECONCILING,
    }
)


def reduce(status: ActionStatus, event: ActionEvent) -> ActionStatus:
    """Return the status that follows `event`; never mutates `status`."""
    if event.type is EventType.FAILED:
        if status.state not in _FAILABLE:
            raise InvalidTransitionError(f"Cannot fail an action in state {status.state.value}")
        return replace(status, state=ActionState.FAILED, error=event.error)

    target = _TRANSITIONS.get((status.state, event.type))
    if target is None:
        raise InvalidTransitionError(f"No transition from {status.state.value} on {event.type.value}")

    changes: Dict[str, Any] = {"state": target}
    if event.tx_hash is not None:
        changes["tx_hash"] = event.tx_hash
    if event.receipt is not None:
        changes["receipt"] = event.receipt
    if event.type is EventType.RECONCILED:
        changes["data"] = event.data
    return replace(status, **changes)


@dataclass(frozen=True)
class _Prepared:
    """Output of validation handed to the submit and reconcile phases."""

    generation: int
    record: Optional[LotteryRecord] = None
    price_wei: int = 0
    count: int = 0
    display_name: str = ""
    payment_wei: int = 0
    viewer: Optional[str] = None
    viewer_is_operator: bool = False


StatusCallback = Callable[[ActionStatus], None]


class TransactionCoordinator:
    """Drives validate -> submit -> confirm -> reconcile for each action.

    Identical concurrent actions are not deduplicated; callers can consult
    `is_in_flight` to disable the trigger while one is running.
    """

    def __init__(
        self,
        client: LedgerClient,
        signer: LocalSigner,
        store: LotteryStore,
        builder: ReadModelBuilder,
        merger: OptimisticMerger,
    ) -> None:
        self.client = client
        self.signer = signer
        self.store = store
        self.builder = builder
        self.merger = merger
        self._in_flight: Counter = Counter()

    def is_in_flight(self, kind: ActionKind, lottery_id: Optional[int] = None) -> bool:
        return self._in_flight[(kind, lottery_id)] > 0

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def create_lottery(self, ticket_price: Any, on_update: Optional[StatusCallback] = None) -> ActionStatus:
        """Create a lottery priced in ether (e.g. "0.05")."""

        async def validate() -> _Prepared:
            try:
                price_wei = parse_eth_amount(ticket_price)
            except ValueError as exc:
                raise ValidationError("Invalid ETH amount") from exc
            if price_wei <= 0:
                raise ValidationError("Please enter a valid ticket price")
            self._require_signer()
            return _Prepared(generation=self.store.generation, price_wei=price_wei)

        async def submit(prepared: _Prepared) -> PendingTransaction:
            return await self.client.create_lottery(prepared.price_wei)

        async def reconcile(receipt: Receipt, prepared: _Prepared) -> Optional[LotteryRecord]:
            # A new lottery is not a patch of anything held; reload everything.
            await self.builder.load_all_lotteries()
            for event in receipt.find("LotteryCreated"):
                created = self.store.get_one(int(event.args.get("lotteryId", 0)))
                if created is not None:
                    return created
            return None

        return await self._run(ActionKind.CREATE, None, validate, submit, reconcile, on_update)

    async def buy_tickets(
        self,
        lottery_id: int,
        count: int,
        display_name: str,
        on_update: Optional[StatusCallback] = None,
    ) -> ActionStatus:

        async def validate() -> _Prepared:
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                raise ValidationError("Please select at least 1 ticket")
            name = (display_name or "").strip()
            if not name:
                raise ValidationError("Please enter your name")
            viewer = self._require_signer()
            record = self._require_open(lottery_id)
            return _Prepared(
                generation=self.store.generation,
                record=record,
                count=count,
                display_name=name,
                payment_wei=ticket_payment(record.ticket_price, count),
                viewer=viewer,
            )

        async def submit(prepared: _Prepared) -> PendingTransaction:
            return await self.client.buy_tickets(lottery_id, prepared.count, prepared.display_name, prepared.payment_wei)

        async def reconcile(receipt: Receipt, prepared: _Prepared) -> Optional[LotteryRecord]:
            merged = self.merger.apply_purchase(
                receipt,
                lottery_id=lottery_id,
                viewer=prepared.viewer,
                generation=prepared.generation,
            )
            if merged.needs_refresh:
                return await self.builder.load_one(lottery_id)
            return self.store.get_one(lottery_id)

        return await self._run(ActionKind.BUY, lottery_id, validate, submit, reconcile, on_update)

    async def close_lottery(self, lottery_id: int, on_update: Optional[StatusCallback] = None) -> ActionStatus:

        async def validate() -> _Prepared:
            record = self._require_open(lottery_id)
            if record.tickets_sold < MIN_TICKETS_TO_CLOSE:
                raise ValidationError("Not enough tickets sold to close the lottery")
            viewer = self._require_signer()
            if not await self.client.is_operator(viewer):
                raise ValidationError("Only the lottery operator can close a lottery")
            return _Prepared(
                generation=self.store.generation,
                record=record,
                viewer=viewer,
                viewer_is_operator=True,
            )

        async def submit(prepared: _Prepared) -> PendingTransaction:
            return await self.client.close_lottery(lottery_id)

        async def reconcile(receipt: Receipt, prepared: _Prepared) -> Optional[LotteryRecord]:
            merged = self.merger.apply_closure(
                receipt,
                lottery_id=lottery_id,
                viewer_is_operator=prepared.viewer_is_operator,
                generation=prepared.generation,
            )
            if merged.needs_refresh:
                await self.builder.load_all_lotteries()
            named = self.merger.apply_winner_names(receipt, lottery_id=lottery_id)
            if named.needs_refresh:
                # load_one recovers names from the event log
                return await self.builder.load_one(lottery_id)
            return self.store.get_one(lottery_id)

        return await self._run(ActionKind.CLOSE, lottery_id, validate, submit, reconcile, on_update)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_signer(self) -> str:
        if not self.signer.is_connected or not self.signer.address:
            raise LedgerConnectionError("Please connect your wallet first")
        return self.signer.address

    def _require_open(self, lottery_id: int) -> LotteryRecord:
        record = self.store.get_one(lottery_id)
        if record is None:
            raise ValidationError(f"Lottery {lottery_id} not found")
        if record.is_closed:
            raise ValidationError(f"Lottery {lottery_id} is already closed")
        return record

    async def _run(
        self,
        kind: ActionKind,
        lottery_id: Optional[int],
        validate: Callable[[], Awaitable[_Prepared]],
        submit: Callable[[_Prepared], Awaitable[PendingTransaction]],
        reconcile: Callable[[Receipt, _Prepared], Awaitable[Any]],
        on_update: Optional[StatusCallback],
    ) -> ActionStatus:
        status = ActionStatus(kind=kind, lottery_id=lottery_id)

        def advance(event: ActionEvent) -> ActionStatus:
            nonlocal status
            status = reduce(status, event)
            if on_update is not None:
                try:
                    on_update(status)
                except Exception as exc:
                    logger.error("Status callback for %s failed: %s", kind.value, exc)
            return status

        def fail(exc: LotteryClientError) -> ActionStatus:
            logger.warning("%s action for lottery %s failed in %s: %s", kind.value, lottery_id, status.state.value, exc)
            return advance(ActionEvent(EventType.FAILED, error=exc))

        key = (kind, lottery_id)
        self._in_flight[key] += 1
        try:
            advance(ActionEvent(EventType.START))
            try:
                prepared = await validate()
            except LotteryClientError as exc:
                return fail(exc)
            advance(ActionEvent(EventType.VALIDATED))

            try:
                pending = await submit(prepared)
            except LotteryClientError as exc:
                return fail(exc)
            logger.info("Transaction sent. Waiting for confirmation of %s (%s)", pending.tx_hash, kind.value)
            advance(ActionEvent(EventType.SUBMITTED, tx_hash=pending.tx_hash))

            try:
                receipt = await pending.wait()
            except LotteryClientError as exc:
                return fail(exc)
            advance(ActionEvent(EventType.CONFIRMED, receipt=receipt))

            try:
                data = await reconcile(receipt, prepared)
            except LotteryClientError as exc:
                return fail(exc)
            logger.info("%s action for lottery %s succeeded (%s)", kind.value, lottery_id, receipt.transaction_hash)
            return advance(ActionEvent(EventType.RECONCILED, data=data))
        finally:
            self._in_flight[key] -= 1
            if self._in_flight[key] <= 0:
                del self._in_flight[key]


def ticket_payment(ticket_price_wei: int, count: int) -> int:
    """Exact payment in wei; integer arithmetic only."""
    return int(ticket_price_wei) * int(count)
