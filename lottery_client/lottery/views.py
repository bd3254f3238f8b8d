"""Render-ready views derived from held lottery records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lottery_client.lottery.models import LotteryRecord, UserParticipation, prize_breakdown
from lottery_client.utils.common import format_eth_amount


@dataclass(frozen=True)
class LotteryView:
    """A lottery as seen by one viewer."""

    record: LotteryRecord
    participation: UserParticipation

    @classmethod
    def build(cls, record: LotteryRecord, viewer: Optional[str]) -> "LotteryView":
        return cls(record=record, participation=UserParticipation.for_viewer(record, viewer))

    def to_dict(self) -> Dict[str, Any]:
        record = self.record
        return {
            "id": record.id,
            "ticketPriceWei": str(record.ticket_price),
            "ticketPriceEth": format_eth_amount(record.ticket_price),
            "isClosed": record.is_closed,
            "totalPoolWei": str(record.total_pool),
            "totalPoolEth": format_eth_amount(record.total_pool),
            "admin": record.admin,
            "totalTickets": record.tickets_sold,
            "userTickets": self.participation.ticket_count,
            "winProbability": self.participation.win_probability,
            "winners": _serialize_winners(record),
            "prizes": {key: str(value) for key, value in prize_breakdown(record.total_pool).items()},
        }


@dataclass(frozen=True)
class AdminRow:
    record: LotteryRecord
    closing: bool

    def to_dict(self) -> Dict[str, Any]:
        record = self.record
        return {
            "id": record.id,
            "ticketPriceWei": str(record.ticket_price),
            "isClosed": record.is_closed,
            "totalPoolWei": str(record.total_pool),
            "totalTickets": record.tickets_sold,
            "canClose": record.can_close and not self.closing,
            "closing": self.closing,
            "winners": _serialize_winners(record),
        }


@dataclass(frozen=True)
class AdminView:
    """Operator dashboard: every lottery, newest first, with close eligibility."""

    operator: str
    rows: List[AdminRow]

    def to_dict(self) -> Dict[str, Any]:
        return {"operator": self.operator, "lotteries": [row.to_dict() for row in self.rows]}


def _serialize_winners(record: LotteryRecord) -> List[Dict[str, Any]]:
    return [
        {
            "address": slot.address if slot.is_set else None,
            "name": slot.display_name if slot.is_set else None,
        }
        for slot in record.winners
    ]
