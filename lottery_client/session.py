"""Presentation boundary of the lottery client.

Every operation reports one of pending / succeeded(data) / failed(error) as
an `ActionResult`; no exception from the core escapes these methods.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from lottery_client.blockchain.client import LedgerClient
from lottery_client.blockchain.signer import ApprovalHook, LocalSigner
from lottery_client.errors import LotteryClientError, ValidationError
from lottery_client.lottery.merge import OptimisticMerger
from lottery_client.lottery.read_model import ReadModelBuilder
from lottery_client.lottery.store import LotteryStore
from lottery_client.lottery.transactions import (
    ActionKind,
    ActionOutcome,
    ActionResult,
    ActionStatus,
    StatusCallback,
    TransactionCoordinator,
)
from lottery_client.lottery.views import AdminRow, AdminView, LotteryView
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)


class LotterySession:
    """Wires the ledger client, store, read model, merge layer and coordinator together."""

    def __init__(
        self,
        client: LedgerClient,
        signer: LocalSigner,
        store: Optional[LotteryStore] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client = client
        self.signer = signer
        self.store = store or LotteryStore()
        self.builder = ReadModelBuilder(client, self.store, config)
        self.merger = OptimisticMerger(self.store)
        self.coordinator = TransactionCoordinator(client, signer, self.store, self.builder, self.merger)

    @classmethod
    def from_config(cls, config: Dict[str, Any], approve: Optional[ApprovalHook] = None) -> "LotterySession":
        signer = LocalSigner.from_config(config, approve=approve)
        return cls(LedgerClient(config, signer=signer), signer, config=config)

    async def initialize(self) -> None:
        await self.client.initialize()

    async def close(self) -> None:
        await self.client.close()

    @property
    def viewer(self) -> Optional[str]:
        return self.signer.address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def lottery_views(self) -> List[LotteryView]:
        """Views of the currently held records without touching the ledger."""
        return [LotteryView.build(record, self.viewer) for record in self.store.get()]

    async def load_all_lotteries(self) -> ActionResult:
        try:
            await self.builder.load_all_lotteries()
        except LotteryClientError as exc:
            logger.error("Failed to fetch lotteries: %s", exc)
            return ActionResult(ActionOutcome.FAILED, error=exc)
        return ActionResult(ActionOutcome.SUCCEEDED, data=self.lottery_views())

    async def load_one(self, lottery_id: int) -> ActionResult:
        try:
            record = await self.builder.load_one(lottery_id)
        except LotteryClientError as exc:
            logger.error("Failed to fetch lottery %s: %s", lottery_id, exc)
            return ActionResult(ActionOutcome.FAILED, error=exc)
        return ActionResult(ActionOutcome.SUCCEEDED, data=LotteryView.build(record, self.viewer))

    async def is_operator(self) -> bool:
        """Ledger-verified check that the connected signer owns the contract.

        Raises LotteryClientError when the ledger cannot be queried.
        """
        if not self.viewer:
            return False
        return await self.client.is_operator(self.viewer)

    async def admin_view(self) -> ActionResult:
        """Operator dashboard built from a fresh load of every lottery."""
        try:
            operator = await self.is_operator()
        except LotteryClientError as exc:
            logger.error("Error checking owner: %s", exc)
            return ActionResult(ActionOutcome.FAILED, error=exc)
        if not operator:
            return ActionResult(ActionOutcome.FAILED, error=ValidationError("Only the lottery operator can access the admin panel"))
        loaded = await self.load_all_lotteries()
        if loaded.outcome is ActionOutcome.FAILED:
            return loaded
        rows = [
            AdminRow(record=record, closing=self.coordinator.is_in_flight(ActionKind.CLOSE, record.id))
            for record in self.store.get()
        ]
        return ActionResult(ActionOutcome.SUCCEEDED, data=AdminView(operator=self.viewer or "", rows=rows))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def create_lottery(self, ticket_price: Any, on_update: Optional[StatusCallback] = None) -> ActionResult:
        status = await self.coordinator.create_lottery(ticket_price, on_update=on_update)
        return self._to_result(status)

    async def buy_tickets(
        self,
        lottery_id: int,
        count: int,
        name: str,
        on_update: Optional[StatusCallback] = None,
    ) -> ActionResult:
        status = await self.coordinator.buy_tickets(lottery_id, count, name, on_update=on_update)
        return self._to_result(status)

    async def close_lottery(self, lottery_id: int, on_update: Optional[StatusCallback] = None) -> ActionResult:
        status = await self.coordinator.close_lottery(lottery_id, on_update=on_update)
        return self._to_result(status)

    def _to_result(self, status: ActionStatus) -> ActionResult:
        result = status.result()
        if status.data is not None:
            return ActionResult(result.outcome, data=LotteryView.build(status.data, self.viewer), error=result.error, tx_hash=result.tx_hash)
        return result
