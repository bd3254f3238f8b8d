"""FastAPI gateway exposing the lottery session over HTTP."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from lottery_client import __version__
from lottery_client.errors import (
    FetchError,
    InvalidIdError,
    LedgerConnectionError,
    RejectedError,
    RemoteError,
    ValidationError,
)
from lottery_client.lottery.transactions import ActionOutcome, ActionResult
from lottery_client.session import LotterySession
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)

# Error type -> HTTP status; anything unlisted is a 500
_ERROR_STATUS = (
    (ValidationError, 400),
    (InvalidIdError, 404),
    (RejectedError, 409),
    (LedgerConnectionError, 503),
    (RemoteError, 502),
    (FetchError, 502),
)


class CreateLotteryRequest(BaseModel):
    ticket_price: str


class BuyTicketsRequest(BaseModel):
    count: int = 1
    name: str


class LotteryWebServer:
    """HTTP gateway for the lottery client."""

    def __init__(self, config: Dict[str, Any], session: LotterySession) -> None:
        self.config = config
        self.session = session
        self.cors_origins = _parse_origins(config.get("server", {}).get("cors_origins", ["*"]))

        self.app = FastAPI(
            title="Lottery Client API",
            description="Read models and transactions for the pooled-prize lottery contract",
            version=__version__,
        )
        self._setup_middleware()
        self._setup_routes()

    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:
        session = self.session

        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "ledger": await session.client.health_check(),
                "client": session.client.get_client_status(),
            }

        @self.app.get("/api/lotteries")
        async def list_lotteries() -> Dict[str, List[Dict[str, Any]]]:
            result = self._unwrap(await session.load_all_lotteries())
            return {"lotteries": [view.to_dict() for view in result.data]}

        @self.app.get("/api/lotteries/{lottery_id}")
        async def get_lottery(lottery_id: int) -> Dict[str, Any]:
            return self._unwrap(await session.load_one(lottery_id)).data.to_dict()

        @self.app.get("/api/admin")
        async def admin_panel() -> Dict[str, Any]:
            result = await session.admin_view()
            if result.outcome is ActionOutcome.FAILED and isinstance(result.error, ValidationError):
                raise HTTPException(status_code=403, detail=str(result.error))
            return self._unwrap(result).data.to_dict()

        @self.app.post("/api/lotteries")
        async def create_lottery(request: CreateLotteryRequest) -> Dict[str, Any]:
            result = self._unwrap(await session.create_lottery(request.ticket_price))
            return self._action_payload(result)

        @self.app.post("/api/lotteries/{lottery_id}/tickets")
        async def buy_tickets(lottery_id: int, request: BuyTicketsRequest) -> Dict[str, Any]:
            result = self._unwrap(await session.buy_tickets(lottery_id, request.count, request.name))
            return self._action_payload(result)

        @self.app.post("/api/lotteries/{lottery_id}/close")
        async def close_lottery(lottery_id: int) -> Dict[str, Any]:
            result = self._unwrap(await session.close_lottery(lottery_id))
            return self._action_payload(result)

    @staticmethod
    def _unwrap(result: ActionResult) -> ActionResult:
        if result.outcome is not ActionOutcome.FAILED:
            return result
        for error_type, status_code in _ERROR_STATUS:
            if isinstance(result.error, error_type):
                raise HTTPException(status_code=status_code, detail=str(result.error))
        logger.error("Unmapped failure: %r", result.error)
        raise HTTPException(status_code=500, detail="Internal error")

    @staticmethod
    def _action_payload(result: ActionResult) -> Dict[str, Any]:
        return {
            "outcome": result.outcome.value,
            "txHash": result.tx_hash,
            "lottery": result.data.to_dict() if result.data is not None else None,
        }

    async def start(self, host: str = "127.0.0.1", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Lottery web server stopped")


def _parse_origins(value: Any) -> List[str]:
    """Accept a list or a comma-separated string (as set through SERVER_CORS_ORIGINS)."""
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value or [])
    return [str(item).strip() for item in items if str(item).strip()]
