"""
Test doubles: a scripted exchange behind requests.Session.request, executors
that run exchange jobs inline or on demand, and an in-memory state store.
"""

from __future__ import annotations

import base64
import json
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import requests


SECRET = base64.b64encode(b"unit-test-secret-key").decode("ascii")


def make_response(status_code: int = 200, body: Any = None, *, text: str | None = None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status_code
    raw = text if text is not None else json.dumps(body)
    resp._content = raw.encode("utf-8")
    resp.headers["Content-Type"] = "application/json"
    return resp


@dataclass
class RecordedCall:
    method: str
    path: str
    body: str | None
    headers: dict[str, str]
    timeout: float | None


class FakeExchange:
    """
    Scripted responses per endpoint. Each script is consumed in order; the last
    entry repeats. Entries are Responses or exceptions to raise.
    """

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self.scripts: dict[str, list[Any]] = {"place": [], "status": [], "cancel": []}

    def on_place(self, *items: Any) -> None:
        self.scripts["place"] = list(items)

    def on_status(self, *items: Any) -> None:
        self.scripts["status"] = list(items)

    def on_cancel(self, *items: Any) -> None:
        self.scripts["cancel"] = list(items)

    def calls_to(self, endpoint: str) -> list[RecordedCall]:
        return [c for c in self.calls if self._endpoint(c.method, c.path) == endpoint]

    @staticmethod
    def _endpoint(method: str, path: str) -> str:
        if method == "POST" and path.endswith("/batch_cancel"):
            return "cancel"
        if method == "POST":
            return "place"
        return "status"

    def request(self, method, url, data=None, headers=None, timeout=None):
        path = urlparse(url).path
        self.calls.append(RecordedCall(method, path, data, dict(headers or {}), timeout))
        script = self.scripts[self._endpoint(method, path)]
        if not script:
            raise AssertionError(f"no scripted response for {method} {path}")
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item
        return item


class ImmediateExecutor(Executor):
    """Runs each job inline; the returned future is already done."""

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:  # noqa: BLE001
            future.set_exception(e)
        return future


class _HeldCallbackFuture(Future):
    def add_done_callback(self, fn):
        pass


class HeldCallbackExecutor(Executor):
    """Runs each job inline but never fires done-callbacks: completion is visible only on the future."""

    def submit(self, fn, /, *args, **kwargs):
        future = _HeldCallbackFuture()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:  # noqa: BLE001
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Queues jobs until run_pending() is called."""

    def __init__(self) -> None:
        self.pending: list[tuple[Future, Any, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self) -> int:
        jobs, self.pending = self.pending, []
        ran = 0
        for future, fn, args, kwargs in jobs:
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as e:  # noqa: BLE001
                future.set_exception(e)
            ran += 1
        return ran


class MemoryStore:
    """StateStore keeping the latest state per instrument in a dict."""

    def __init__(self) -> None:
        self.saved: dict[str, dict] = {}
        self.saves = 0

    def save(self, instrument: str, state: dict) -> None:
        self.saved[instrument] = json.loads(json.dumps(state))
        self.saves += 1

    def load(self, instrument: str) -> dict | None:
        return self.saved.get(instrument)


