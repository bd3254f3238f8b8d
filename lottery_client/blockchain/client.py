"""Ledger client for the pooled-prize lottery contract."""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, NoReturn, Optional, Tuple

import requests
from eth_utils import event_abi_to_log_topic
from web3 import Web3
from web3._utils.events import get_event_data  # type: ignore
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from lottery_client.blockchain.signer import LocalSigner
from lottery_client.errors import (
    LedgerConnectionError,
    LotteryClientError,
    RejectedError,
    RemoteError,
)
from lottery_client.lottery.models import ClosureEvent, LedgerEvent, LotteryInfo, Receipt
from lottery_client.utils.common import same_address
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)

# EIP-1193 "user rejected request"
USER_REJECTED_CODE = 4001


class PendingTransaction:
    """Handle for a submitted write; confirmation must be awaited explicitly."""

    def __init__(self, client: "LedgerClient", tx_hash: str, function_name: str) -> None:
        self._client = client
        self.tx_hash = tx_hash
        self.function_name = function_name

    async def wait(self) -> Receipt:
        return await self._client.wait_for_transaction(self.tx_hash)

    def __repr__(self) -> str:
        return f"PendingTransaction({self.function_name}, {self.tx_hash})"


class LedgerClient:
    """Async-friendly wrapper around web3.py for the lottery contract."""

    def __init__(self, config: Dict[str, Any], signer: Optional[LocalSigner] = None):
        self._config = config
        self.signer = signer

        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://localhost:8545")
        # per-RPC timeout (seconds) passed to HTTPProvider so requests never hang
        self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        self.chain_id: int = int(blockchain_cfg.get("chain_id", 31337))
        self.contract_address: Optional[str] = blockchain_cfg.get("contract_address")
        self.from_block: int = int(blockchain_cfg.get("from_block", 0))
        # receipts are polled in windows of this size; there is no overall deadline
        self.receipt_poll_interval: float = float(blockchain_cfg.get("receipt_poll_interval", 30.0))

        self._w3: Optional[Web3] = None
        self._contract: Optional[Contract] = None
        self.contract_abi: Optional[List[Dict[str, Any]]] = None
        self._event_abi_by_topic: Dict[str, Dict[str, Any]] = {}

        gas_price_setting = blockchain_cfg.get("gas_price")
        self._gas_price_override: Optional[int] = None
        if gas_price_setting:
            try:
                self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")
            except (ArithmeticError, ValueError) as exc:
                logger.warning("Unable to parse gas price '%s': %s", gas_price_setting, exc)

        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))

    async def initialize(self) -> None:
        """Establish the RPC connection and load the contract."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        connected = await asyncio.to_thread(self._w3.is_connected)
        if not connected:
            self._w3 = None
            raise LedgerConnectionError(f"Failed to connect to RPC at {self.rpc_url}")

        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        try:
            actual_chain_id = await asyncio.to_thread(lambda: self._w3.eth.chain_id)
            if actual_chain_id != self.chain_id:
                logger.warning(f"Chain ID mismatch: expected {self.chain_id}, got {actual_chain_id}")
        except (Web3Exception, ValueError, requests.RequestException) as exc:
            logger.warning(f"Could not verify chain ID: {exc}")

        await self._load_contract()

    async def close(self) -> None:
        """Tear down references; HTTP provider closes automatically."""
        self._contract = None
        self._w3 = None

    async def _load_contract(self) -> None:
        if not self.contract_address:
            logger.warning("No contract address configured; ledger operations disabled")
            return

        abi_path = self._resolve_abi_path()
        logger.info("Loading Lottery ABI from %s", abi_path)
        with abi_path.open("r", encoding="utf-8") as handle:
            self.contract_abi = json.load(handle)

        address = Web3.to_checksum_address(self.contract_address)
        w3 = self._ensure_web3()

        code = await asyncio.to_thread(w3.eth.get_code, address)
        if len(code) == 0:
            raise LedgerConnectionError(f"No contract deployed at {address}")
        logger.info(f"Contract verified at {address} with {len(code)} bytes of code")

        self._contract = w3.eth.contract(address=address, abi=self.contract_abi)
        self.contract_address = address
        self._prepare_event_topics(self.contract_abi)

    def _prepare_event_topics(self, abi: Iterable[Dict[str, Any]]) -> None:
        """Build the event topic -> ABI map used to decode receipt logs."""
        self._event_abi_by_topic = {}
        for item in abi:
            if item.get("type") == "event":
                self._event_abi_by_topic[_topic_key(event_abi_to_log_topic(item))] = item
        logger.info("Prepared %d event ABI topics", len(self._event_abi_by_topic))

    def _resolve_abi_path(self) -> Path:
        candidate = Path(__file__).parent / "abi" / "Lottery.abi"
        if not candidate.is_file():
            raise FileNotFoundError(f"Lottery ABI file not found at {candidate}")
        return candidate

    def _ensure_contract(self) -> Contract:
        if not self._contract:
            raise LedgerConnectionError("Ledger provider not connected")
        return self._contract

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise LedgerConnectionError("Web3 provider not initialised")
        return self._w3

    def _ensure_signer(self) -> LocalSigner:
        if not self.signer or not self.signer.is_connected:
            raise LedgerConnectionError("No wallet connected")
        return self.signer

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------
    async def _call_view(self, function_name: str, *args) -> Any:
        contract = self._ensure_contract()

        def _call():
            return getattr(contract.functions, function_name)(*args).call()

        try:
            return await asyncio.to_thread(_call)
        except Exception as exc:
            _raise_translated(exc, function_name)

    async def _send_transaction(self, function_name: str, *args, value: int = 0) -> PendingTransaction:
        contract = self._ensure_contract()
        w3 = self._ensure_web3()
        signer = self._ensure_signer()
        sender = signer.address

        def _send() -> str:
            tx_function = getattr(contract.functions, function_name)(*args)
            # a revert surfaces here, before the user is asked to sign
            gas_estimate = tx_function.estimate_gas({"from": sender, "value": value})
            gas_price = self._gas_price_override or w3.eth.gas_price
            txn = tx_function.build_transaction(
                {
                    "from": sender,
                    "value": value,
                    "gas": int(gas_estimate * self._gas_multiplier),
                    "gasPrice": gas_price,
                    "nonce": w3.eth.get_transaction_count(sender, "pending"),
                    "chainId": self.chain_id,
                }
            )
            raw = signer.sign_transaction(txn)
            return _topic_key(w3.eth.send_raw_transaction(raw), prefixed=True)

        try:
            tx_hash = await asyncio.to_thread(_send)
        except Exception as exc:
            _raise_translated(exc, function_name)
        logger.info("Sent transaction %s for %s", tx_hash, function_name)
        return PendingTransaction(self, tx_hash, function_name)

    async def wait_for_transaction(self, tx_hash: str) -> Receipt:
        """Block until the transaction is mined and return its decoded receipt."""
        w3 = self._ensure_web3()

        def _wait():
            while True:
                try:
                    return w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_poll_interval)
                except TimeExhausted:
                    logger.debug("Transaction %s still pending after %ss", tx_hash, self.receipt_poll_interval)

        try:
            raw = await asyncio.to_thread(_wait)
        except Exception as exc:
            _raise_translated(exc, "wait_for_transaction")

        events, decode_errors = self._decode_logs(raw.get("logs", []))
        receipt = Receipt(
            transaction_hash=_topic_key(raw["transactionHash"], prefixed=True),
            block_number=int(raw["blockNumber"]),
            status=int(raw["status"]),
            gas_used=int(raw.get("gasUsed", 0)),
            events=tuple(events),
            decode_errors=decode_errors,
        )
        if not receipt.succeeded:
            raise RemoteError("Transaction reverted", tx_hash=receipt.transaction_hash)
        logger.info("Transaction %s confirmed in block %d (%d events)", tx_hash, receipt.block_number, len(receipt.events))
        return receipt

    def decode_logs(self, raw_logs: Iterable[Any]) -> List[LedgerEvent]:
        """Decode the contract's own log entries; foreign or unknown logs are skipped."""
        return self._decode_logs(raw_logs)[0]

    def _decode_logs(self, raw_logs: Iterable[Any]) -> Tuple[List[LedgerEvent], int]:
        """Decoded events ordered by (block, log index), plus the number of logs that failed to decode."""
        w3 = self._ensure_web3()
        collected: List[LedgerEvent] = []
        failed = 0
        for raw in raw_logs:
            if self.contract_address and not same_address(raw.get("address"), self.contract_address):
                continue
            topics = raw.get("topics") or []
            if not topics:
                continue
            abi = self._event_abi_by_topic.get(_topic_key(topics[0]))
            if not abi:
                logger.info("Unknown event topic %s", _topic_key(topics[0]))
                continue
            try:
                decoded = get_event_data(w3.codec, abi, raw)
            except Exception as exc:
                logger.warning("Failed to decode %s log: %s", abi.get("name"), exc)
                failed += 1
                continue
            collected.append(
                LedgerEvent(
                    name=abi["name"],
                    args=dict(decoded["args"]),
                    block_number=int(decoded["blockNumber"]),
                    transaction_hash=_topic_key(decoded["transactionHash"], prefixed=True),
                    log_index=int(decoded["logIndex"]),
                )
            )
        collected.sort(key=lambda evt: (evt.block_number, evt.log_index))
        return collected, failed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def lottery_count(self) -> int:
        """Next lottery id to be assigned; existing ids are 1..count-1."""
        return int(await self._call_view("eventCounter"))

    async def get_lottery(self, lottery_id: int) -> LotteryInfo:
        raw = await self._call_view("getLotteryInfo", lottery_id)
        return LotteryInfo(
            id=int(self._select(raw, "id", 0)),
            ticket_price=int(self._select(raw, "ticketPrice", 1)),
            is_closed=bool(self._select(raw, "isClosed", 2)),
            total_pool=int(self._select(raw, "totalPool", 3)),
            admin=str(self._select(raw, "admin", 4)),
            winners=(
                str(self._select(raw, "winner1", 5)),
                str(self._select(raw, "winner2", 6)),
                str(self._select(raw, "winner3", 7)),
            ),
        )

    async def get_ticket_holders(self, lottery_id: int) -> List[str]:
        holders = await self._call_view("getTickets", lottery_id)
        return [str(address) for address in holders]

    async def get_operator(self) -> str:
        return str(await self._call_view("owner"))

    async def is_operator(self, address: Optional[str]) -> bool:
        if not address:
            return False
        return same_address(await self.get_operator(), address)

    async def query_closure_events(self, lottery_id: int) -> List[ClosureEvent]:
        """Fetch `WinnersDeclared` logs for one lottery from the event log."""
        w3 = self._ensure_web3()
        self._ensure_contract()
        topic = next(
            (key for key, abi in self._event_abi_by_topic.items() if abi.get("name") == "WinnersDeclared"),
            None,
        )
        if topic is None:
            raise RemoteError("WinnersDeclared event missing from contract ABI")

        filter_params = {
            "fromBlock": self.from_block,
            "toBlock": "latest",
            "address": self.contract_address,
            "topics": ["0x" + topic, "0x" + int(lottery_id).to_bytes(32, "big").hex()],
        }
        try:
            raw_logs = await asyncio.to_thread(w3.eth.get_logs, filter_params)
        except Exception as exc:
            _raise_translated(exc, "get_logs")

        closures: List[ClosureEvent] = []
        for event in self.decode_logs(raw_logs):
            if event.name != "WinnersDeclared":
                continue
            try:
                closure = ClosureEvent.from_event(event)
            except (KeyError, TypeError, ValueError) as exc:
                raise RemoteError(f"Malformed WinnersDeclared event for lottery {lottery_id}: {exc}") from exc
            if closure.lottery_id == lottery_id:
                closures.append(closure)
        logger.info("Found %d closure events for lottery %d", len(closures), lottery_id)
        return closures

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create_lottery(self, price_wei: int) -> PendingTransaction:
        return await self._send_transaction("createLottery", price_wei)

    async def buy_tickets(self, lottery_id: int, count: int, display_name: str, payment_wei: int) -> PendingTransaction:
        return await self._send_transaction("buyTickets", lottery_id, count, display_name, value=payment_wei)

    async def close_lottery(self, lottery_id: int) -> PendingTransaction:
        return await self._send_transaction("closeAndDeclareWinners", lottery_id)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    async def health_check(self) -> Dict[str, Any]:
        try:
            w3 = self._ensure_web3()
            latest_block = await asyncio.to_thread(lambda: int(w3.eth.block_number))
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:
            logger.warning("Ledger health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "contract": self.contract_address,
            "connected": self._contract is not None,
            "signer": self.signer.address if self.signer else None,
        }

    @staticmethod
    def _select(mapping_or_tuple: Any, key: str, index: int) -> Any:
        if isinstance(mapping_or_tuple, dict):
            if key in mapping_or_tuple:
                return mapping_or_tuple[key]
        return mapping_or_tuple[index]


def _topic_key(value: Any, prefixed: bool = False) -> str:
    """Normalize bytes / HexBytes / hex strings to lowercase hex."""
    text = value.hex() if isinstance(value, (bytes, bytearray)) else str(value)
    text = text.lower()
    if text.startswith("0x"):
        text = text[2:]
    return "0x" + text if prefixed else text


def _rpc_error(exc: BaseException) -> Optional[Dict[str, Any]]:
    """Extract the JSON-RPC error object carried by a web3 exception, if any."""
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        return response["error"]
    if exc.args and isinstance(exc.args[0], dict):
        return exc.args[0]
    return None


def _translate_error(exc: Exception, action: str) -> Exception:
    """Map web3 / transport failures onto the client's error taxonomy."""
    if isinstance(exc, LotteryClientError):
        return exc
    if isinstance(exc, ContractLogicError):
        reason = getattr(exc, "message", None) or str(exc)
        logger.error("%s reverted: %s", action, reason)
        return RemoteError(reason)
    if isinstance(exc, (requests.ConnectionError, requests.Timeout, ConnectionError)):
        logger.error("%s failed, ledger unreachable: %s", action, exc)
        return LedgerConnectionError(str(exc))

    rpc_error = _rpc_error(exc)
    if rpc_error and rpc_error.get("code") == USER_REJECTED_CODE:
        return RejectedError(rpc_error.get("message") or "Transaction declined by the user")
    if isinstance(exc, (Web3Exception, ValueError, requests.RequestException)):
        reason = (rpc_error or {}).get("message") or str(exc)
        logger.error("%s failed: %s", action, reason)
        return RemoteError(reason)
    return exc


def _raise_translated(exc: Exception, action: str) -> NoReturn:
    translated = _translate_error(exc, action)
    if translated is exc:
        raise exc
    raise translated from exc
