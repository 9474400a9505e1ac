import pytest
from helpers import create_monitor

from wallet_monitor.core.balance_store import BalanceStore


@pytest.fixture
def store():
    return BalanceStore()


@pytest.fixture
def monitor():
    return create_monitor()
