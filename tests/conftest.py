"""
conftest.py - Shared pytest fixtures for lottery client tests

Provides:
- Well-known development keys for an operator and two players
- A single LocalSigner that tests reconnect to switch the active account
- A FakeLedger owned by the operator
- A LotterySession wired to the fake ledger
"""

import pytest

from lottery_client.blockchain.signer import LocalSigner
from lottery_client.lottery.store import LotteryStore
from lottery_client.session import LotterySession

from tests.fake_ledger import FakeLedger

# Hardhat / Anvil default development accounts
OPERATOR_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
PLAYER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OTHER_PLAYER_KEY = "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a"

ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"
CAROL = "0x00000000000000000000000000000000000ca201"


@pytest.fixture
def signer():
    """Signer connected as the operator."""
    return LocalSigner(OPERATOR_KEY)


@pytest.fixture
def operator_address(signer):
    return signer.address


@pytest.fixture
def player_address():
    return LocalSigner(PLAYER_KEY).address


@pytest.fixture
def ledger(signer):
    return FakeLedger(owner=signer.address, signer=signer)


@pytest.fixture
def store():
    return LotteryStore()


@pytest.fixture
def session(ledger, signer, store):
    return LotterySession(ledger, signer, store=store, config={"lottery": {"max_concurrent_fetches": 4}})


def act_as(signer: LocalSigner, key: str) -> str:
    """Reconnect the shared signer to another account and return its address."""
    return signer.connect(key)
