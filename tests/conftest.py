"""
Shared fixtures: sandbox exchange config, scripted exchange, signed client
with a deterministic clock and no retry waits.
"""

from __future__ import annotations

import itertools
from unittest.mock import MagicMock

import pytest
import requests
from tenacity import wait_none

from breakout_core.config import ExchangeConfig
from breakout_core.execution import ExchangeClient, OrderRouter
from helpers import SECRET, FakeExchange, ImmediateExecutor


@pytest.fixture
def exchange_config() -> ExchangeConfig:
    return ExchangeConfig(
        access_key="test-key",
        access_secret=SECRET,
        access_passphrase="test-passphrase",
        url="https://api-public.sandbox.exchange.coinbase.com",
        sandbox=True,
        request_timeout=2.0,
        retry_attempts=3,
    )


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def session(fake_exchange: FakeExchange) -> MagicMock:
    s = MagicMock(spec=requests.Session)
    s.request.side_effect = fake_exchange.request
    return s


@pytest.fixture
def clock():
    counter = itertools.count(1_700_000_000)
    return lambda: float(next(counter))


@pytest.fixture
def client(exchange_config, session, clock) -> ExchangeClient:
    return ExchangeClient(exchange_config, session, clock=clock, wait=wait_none())


@pytest.fixture
def router(client) -> OrderRouter:
    return OrderRouter(client, ImmediateExecutor(), timeout=5.0)
