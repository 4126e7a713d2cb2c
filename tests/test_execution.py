"""
Tests for execution layer: signing, ExchangeClient, OrderRouter.
"""

import base64
import dataclasses
import hashlib
import hmac
import json
import time

import pytest
import requests
from tenacity import wait_none

from breakout_core import Action, Order, OrderStatus, Side
from breakout_core.config import LIVE_TRADING_ENV, ExchangeConfig
from breakout_core.errors import OrderNotFound, OrderRejected, ProtocolError, SigningError, TransportError
from breakout_core.execution import ExchangeClient, OrderRouter, RequestKind, auth_headers, sign
from helpers import SECRET, ImmediateExecutor, make_response

OK_PLACE = {"order_id": "ex-1", "success": True}


def _order(cid: str = "cid-1", exchange_order_id: str | None = None) -> Order:
    return Order(
        client_order_id=cid,
        product_id="BTC-USD",
        side=Side.BUY,
        size=0.01,
        price=100.5,
        action=Action.ENTER_LONG,
        exchange_order_id=exchange_order_id,
    )


def _expected_signature(timestamp: str, method: str, path: str, body: str) -> str:
    key = base64.b64decode(SECRET)
    mac = hmac.new(key, (timestamp + method + path + body).encode(), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode()


# --- Signing ---


def test_sign_is_base64_hmac_sha256_of_canonical_message():
    body = '{"product_id": "BTC-USD"}'
    sig = sign(SECRET, "1700000000.000", "POST", "/orders", body)
    assert sig == _expected_signature("1700000000.000", "POST", "/orders", body)
    assert len(base64.b64decode(sig)) == 32


def test_sign_rejects_undecodable_secret():
    with pytest.raises(SigningError):
        sign("not base64 !!", "1", "GET", "/orders")


def test_sign_rejects_empty_secret():
    with pytest.raises(SigningError):
        sign("", "1", "GET", "/orders")


def test_auth_headers():
    headers = auth_headers(
        key="k", secret=SECRET, passphrase="p", timestamp="1700000000.000", method="get", path="/orders"
    )
    assert headers["Content-Type"] == "application/json"
    assert headers["CB-ACCESS-KEY"] == "k"
    assert headers["CB-ACCESS-PASSPHRASE"] == "p"
    assert headers["CB-ACCESS-TIMESTAMP"] == "1700000000.000"
    assert headers["CB-ACCESS-SIGN"] == _expected_signature("1700000000.000", "GET", "/orders", "")


# --- place_order ---


def test_place_order_accepted(client, fake_exchange):
    fake_exchange.on_place(make_response(200, OK_PLACE))
    result = client.place_order("BTC-USD", Side.BUY, 0.01, 100.5, client_order_id="cid-1")
    assert result.accepted
    assert result.order_id == "ex-1"
    assert result.client_order_id == "cid-1"
    assert result.attempts == 1

    (call,) = fake_exchange.calls
    assert call.method == "POST"
    assert call.path == "/orders"
    assert json.loads(call.body) == {
        "client_order_id": "cid-1",
        "product_id": "BTC-USD",
        "side": "BUY",
        "size": "0.01",
        "price": "100.5",
    }
    ts = call.headers["CB-ACCESS-TIMESTAMP"]
    assert call.headers["CB-ACCESS-SIGN"] == _expected_signature(ts, "POST", "/orders", call.body)
    assert call.headers["CB-ACCESS-KEY"] == "test-key"
    assert call.headers["CB-ACCESS-PASSPHRASE"] == "test-passphrase"
    assert call.timeout <= 2.0


def test_place_order_generates_client_order_id(client, fake_exchange):
    fake_exchange.on_place(make_response(200, OK_PLACE))
    result = client.place_order("BTC-USD", "buy", 1, 100)
    body = json.loads(fake_exchange.calls[0].body)
    assert body["client_order_id"] == result.client_order_id
    assert body["side"] == "BUY"


def test_place_order_declined(client, fake_exchange):
    fake_exchange.on_place(make_response(200, {"order_id": "", "success": False}))
    result = client.place_order("BTC-USD", Side.SELL, 0.01, 100.0)
    assert not result.accepted


def test_retry_after_transport_error_resigns_with_same_client_id(client, fake_exchange):
    fake_exchange.on_place(
        requests.ConnectionError("reset"),
        requests.Timeout("slow"),
        make_response(200, OK_PLACE),
    )
    result = client.place_order("BTC-USD", Side.BUY, 0.01, 100.5, client_order_id="cid-1")
    assert result.accepted
    assert result.attempts == 3

    calls = fake_exchange.calls_to("place")
    assert len(calls) == 3
    timestamps = [c.headers["CB-ACCESS-TIMESTAMP"] for c in calls]
    signatures = [c.headers["CB-ACCESS-SIGN"] for c in calls]
    assert len(set(timestamps)) == 3
    assert len(set(signatures)) == 3
    assert {json.loads(c.body)["client_order_id"] for c in calls} == {"cid-1"}
    for c in calls:
        assert c.headers["CB-ACCESS-SIGN"] == _expected_signature(
            c.headers["CB-ACCESS-TIMESTAMP"], "POST", "/orders", c.body
        )


def test_server_errors_are_retried(client, fake_exchange):
    fake_exchange.on_place(make_response(503, {"message": "busy"}), make_response(200, OK_PLACE))
    assert client.place_order("BTC-USD", Side.BUY, 0.01, 100.5).attempts == 2


def test_transport_error_after_retry_budget(client, fake_exchange):
    fake_exchange.on_place(requests.ConnectionError("down"))
    with pytest.raises(TransportError):
        client.place_order("BTC-USD", Side.BUY, 0.01, 100.5)
    assert len(fake_exchange.calls) == 3


def test_expired_deadline_is_transport_error(client, fake_exchange):
    fake_exchange.on_place(make_response(200, OK_PLACE))
    with pytest.raises(TransportError):
        client.place_order("BTC-USD", Side.BUY, 0.01, 100.5, timeout=0)
    assert fake_exchange.calls == []


def test_backoff_never_sleeps_past_deadline(exchange_config, session, fake_exchange, clock):
    c = ExchangeClient(dataclasses.replace(exchange_config, retry_attempts=5), session, clock=clock)
    fake_exchange.on_place(requests.ConnectionError("down"))
    started = time.monotonic()
    with pytest.raises(TransportError):
        c.place_order("BTC-USD", Side.BUY, 0.01, 100.5, timeout=0.6)
    assert time.monotonic() - started <= 0.8
    assert len(fake_exchange.calls) >= 2


def test_non_json_response_is_protocol_error_and_not_retried(client, fake_exchange):
    fake_exchange.on_place(make_response(200, text="<html>oops</html>"))
    with pytest.raises(ProtocolError):
        client.place_order("BTC-USD", Side.BUY, 0.01, 100.5)
    assert len(fake_exchange.calls) == 1


@pytest.mark.parametrize("body", [{"order_id": "ex-1"}, ["ex-1"], {"success": True}])
def test_unexpected_schema_is_protocol_error(client, fake_exchange, body):
    fake_exchange.on_place(make_response(200, body))
    with pytest.raises(ProtocolError):
        client.place_order("BTC-USD", Side.BUY, 0.01, 100.5)


def test_client_error_is_rejection(client, fake_exchange):
    fake_exchange.on_place(make_response(400, {"message": "Insufficient funds"}))
    with pytest.raises(OrderRejected, match="Insufficient funds"):
        client.place_order("BTC-USD", Side.BUY, 0.01, 100.5)
    assert len(fake_exchange.calls) == 1


def test_bad_secret_is_signing_error_and_nothing_sent(exchange_config, session, fake_exchange, clock):
    bad = ExchangeConfig(
        access_key="k", access_secret="%%%not-base64%%%", access_passphrase="p", url=exchange_config.url
    )
    c = ExchangeClient(bad, session, clock=clock, wait=wait_none())
    with pytest.raises(SigningError):
        c.place_order("BTC-USD", Side.BUY, 0.01, 100.5)
    assert fake_exchange.calls == []


def test_live_endpoint_requires_opt_in(session, fake_exchange, clock, monkeypatch):
    monkeypatch.delenv(LIVE_TRADING_ENV, raising=False)
    live = ExchangeConfig(
        access_key="k", access_secret=SECRET, access_passphrase="p", url="https://api.exchange.coinbase.com", sandbox=False
    )
    c = ExchangeClient(live, session, clock=clock, wait=wait_none())
    with pytest.raises(OrderRejected):
        c.place_order("BTC-USD", Side.BUY, 0.01, 100.5)
    assert fake_exchange.calls == []

    monkeypatch.setenv(LIVE_TRADING_ENV, "true")
    fake_exchange.on_place(make_response(200, OK_PLACE))
    assert c.place_order("BTC-USD", Side.BUY, 0.01, 100.5).accepted


# --- check_order_status ---


@pytest.mark.parametrize(
    "exchange_status, expected",
    [
        ("FILLED", OrderStatus.FILLED),
        ("OPEN", OrderStatus.OPEN),
        ("CANCELLED", OrderStatus.CANCELLED),
        ("EXPIRED", OrderStatus.CANCELLED),
        ("FAILED", OrderStatus.REJECTED),
        ("QUEUED", OrderStatus.PENDING),
        ("UNKNOWN_ORDER_STATUS", OrderStatus.UNKNOWN),
    ],
)
def test_status_mapping(client, fake_exchange, exchange_status, expected):
    fake_exchange.on_status(make_response(200, {"order_id": "ex-1", "status": exchange_status}))
    assert client.check_order_status("ex-1") == expected


def test_status_request_is_signed_get(client, fake_exchange):
    fake_exchange.on_status(make_response(200, {"order_id": "ex-1", "status": "FILLED"}))
    client.check_order_status("ex-1")
    (call,) = fake_exchange.calls
    assert call.method == "GET"
    assert call.path == "/orders/historical/ex-1"
    assert call.body is None
    ts = call.headers["CB-ACCESS-TIMESTAMP"]
    assert call.headers["CB-ACCESS-SIGN"] == _expected_signature(ts, "GET", "/orders/historical/ex-1", "")


@pytest.mark.parametrize(
    "script",
    [
        make_response(200, text="not json"),
        make_response(200, {"order_id": "ex-1"}),
        make_response(401, {"message": "invalid signature"}),
        requests.ConnectionError("down"),
    ],
)
def test_status_never_raises(client, fake_exchange, script):
    fake_exchange.on_status(script)
    assert client.check_order_status("ex-1") == OrderStatus.UNKNOWN


def test_status_not_found_is_raised(client, fake_exchange):
    fake_exchange.on_status(make_response(404, {"message": "NotFound"}))
    with pytest.raises(OrderNotFound):
        client.check_order_status("client:cid-1")
    assert len(fake_exchange.calls) == 1


def test_status_with_bad_secret_is_unknown(exchange_config, session, clock):
    bad = ExchangeConfig(access_key="k", access_secret="***", access_passphrase="p", url=exchange_config.url)
    c = ExchangeClient(bad, session, clock=clock, wait=wait_none())
    assert c.check_order_status("ex-1") == OrderStatus.UNKNOWN


# --- cancel_order ---


def test_cancel_order(client, fake_exchange):
    fake_exchange.on_cancel(make_response(200, {"order_id": "ex-1", "success": True}))
    result = client.cancel_order(["ex-1"])
    assert result.accepted
    assert result.order_id == "ex-1"
    (call,) = fake_exchange.calls
    assert call.path == "/orders/batch_cancel"
    assert json.loads(call.body) == {"order_ids": ["ex-1"]}


def test_cancel_accepts_single_id(client, fake_exchange):
    fake_exchange.on_cancel(make_response(200, {"order_id": "ex-1", "success": False}))
    assert not client.cancel_order("ex-1").accepted
    assert json.loads(fake_exchange.calls[0].body) == {"order_ids": ["ex-1"]}


def test_cancel_failure_taxonomy(client, fake_exchange):
    fake_exchange.on_cancel(requests.Timeout("slow"))
    with pytest.raises(TransportError):
        client.cancel_order(["ex-1"])
    fake_exchange.on_cancel(make_response(200, text="]"))
    with pytest.raises(ProtocolError):
        client.cancel_order(["ex-1"])


# --- OrderRouter ---


def test_router_place_accepted_is_open(router, fake_exchange):
    fake_exchange.on_place(make_response(200, OK_PLACE))
    report = router.place(_order()).result()
    assert report.kind == RequestKind.PLACE
    assert report.status == OrderStatus.OPEN
    assert report.exchange_order_id == "ex-1"
    assert router.get_rejected_log() == []


def test_router_place_declined_is_rejected(router, fake_exchange):
    fake_exchange.on_place(make_response(200, {"order_id": "", "success": False}))
    report = router.place(_order()).result()
    assert report.status == OrderStatus.REJECTED
    assert not report.signing_failure
    (entry,) = router.get_rejected_log()
    assert entry.order.client_order_id == "cid-1"


@pytest.mark.parametrize(
    "script",
    [requests.ConnectionError("down"), make_response(200, text="garbage"), make_response(502, {})],
)
def test_router_ambiguous_placement_is_unknown(router, fake_exchange, script):
    fake_exchange.on_place(script)
    report = router.place(_order()).result()
    assert report.status == OrderStatus.UNKNOWN
    assert report.status_known


def test_router_signing_failure_is_flagged(session, exchange_config, clock):
    bad = ExchangeConfig(access_key="k", access_secret="***", access_passphrase="p", url=exchange_config.url)
    r = OrderRouter(ExchangeClient(bad, session, clock=clock, wait=wait_none()), ImmediateExecutor())
    report = r.place(_order()).result()
    assert report.status == OrderStatus.REJECTED
    assert report.signing_failure


def test_router_poll_uses_client_lookup_when_unacknowledged(router, fake_exchange):
    fake_exchange.on_status(make_response(200, {"order_id": "ex-9", "status": "OPEN"}))
    report = router.poll(_order()).result()
    assert report.status == OrderStatus.OPEN
    assert fake_exchange.calls[0].path == "/orders/historical/client:cid-1"


def test_router_poll_unknown_is_not_a_known_status(router, fake_exchange):
    fake_exchange.on_status(requests.ConnectionError("down"))
    report = router.poll(_order(exchange_order_id="ex-1")).result()
    assert report.status == OrderStatus.UNKNOWN
    assert not report.status_known


def test_router_poll_not_found_is_flagged(router, fake_exchange):
    fake_exchange.on_status(make_response(404, text="Not Found"))
    report = router.poll(_order()).result()
    assert report.status == OrderStatus.UNKNOWN
    assert report.not_found
    assert not report.status_known


def test_router_cancel_then_polls(router, fake_exchange):
    fake_exchange.on_cancel(make_response(200, {"order_id": "ex-1", "success": True}))
    fake_exchange.on_status(make_response(200, {"order_id": "ex-1", "status": "CANCELLED"}))
    report = router.cancel(_order(exchange_order_id="ex-1")).result()
    assert report.kind == RequestKind.CANCEL
    assert report.status == OrderStatus.CANCELLED
    assert [c.path for c in fake_exchange.calls] == ["/orders/batch_cancel", "/orders/historical/ex-1"]
