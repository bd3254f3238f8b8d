"""Signing capability used by the ledger client for state-changing calls."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from lottery_client.errors import LedgerConnectionError, RejectedError
from lottery_client.utils.common import shorten_eth_address
from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)

# Called with the unsigned transaction; returning False declines the signature.
ApprovalHook = Callable[[Dict[str, Any]], bool]


class LocalSigner:
    """Wallet backed by a local private key.

    `approve` stands in for the interactive confirmation a browser wallet
    shows; when it returns False the transaction is never signed and
    RejectedError is raised.
    """

    def __init__(self, private_key: Optional[str] = None, approve: Optional[ApprovalHook] = None) -> None:
        self._account: Optional[LocalAccount] = None
        self._approve = approve
        if private_key:
            self.connect(private_key)

    @classmethod
    def from_config(cls, config: Dict[str, Any], approve: Optional[ApprovalHook] = None) -> "LocalSigner":
        return cls(config.get("signer", {}).get("private_key") or None, approve=approve)

    def connect(self, private_key: str) -> str:
        self._account = Account.from_key(private_key)
        logger.info("Signer connected: %s", shorten_eth_address(self._account.address))
        return self._account.address

    def disconnect(self) -> None:
        if self._account:
            logger.info("Signer disconnected: %s", shorten_eth_address(self._account.address))
        self._account = None

    @property
    def is_connected(self) -> bool:
        return self._account is not None

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def sign_transaction(self, txn: Dict[str, Any]) -> bytes:
        """Sign a built transaction and return the raw bytes to broadcast."""
        if not self._account:
            raise LedgerConnectionError("No wallet connected")
        if self._approve is not None and not self._approve(txn):
            logger.info("Signature declined for transaction to %s", txn.get("to"))
            raise RejectedError("Transaction declined by the user")

        signed = self._account.sign_transaction(txn)
        # eth-account renamed rawTransaction to raw_transaction
        raw = getattr(signed, "raw_transaction", None)
        if raw is None:
            raw = getattr(signed, "rawTransaction")
        return bytes(raw)
