"""
Pipeline: per-instrument tick consumers wired to a shared order router.

Each InstrumentWorker owns its channel, decision engine, position and tracker
and is driven by exactly one thread. Exchange requests run on the router's
pool; their completion callbacks only enqueue the finished futures, which
the consumer thread applies before each tick. Tracker and position are
therefore never mutated off the consumer thread.
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future
from typing import Any

import requests

from breakout_core.channel import ChannelReading, ChannelSignalEngine
from breakout_core.config import Settings
from breakout_core.decision import DecisionEngine
from breakout_core.errors import ConfigurationError
from breakout_core.execution.client import ExchangeClient
from breakout_core.execution.router import OrderRouter
from breakout_core.execution.types import ExecutionReport, RequestKind
from breakout_core.log import EventLogger, StdlibEventLogger
from breakout_core.order import Order, OrderStatus
from breakout_core.persistence import StateStore
from breakout_core.tick import Tick
from breakout_core.tracker import OrderTracker

logger = logging.getLogger(__name__)

# log an unresolved order as an error every this many polls
UNRESOLVED_ALERT_EVERY = 10


class InstrumentWorker:
    """
    Tick consumer for one instrument. Not thread-safe: call process/run/drain
    from a single thread only.
    """

    def __init__(
        self,
        instrument: str,
        channel: ChannelSignalEngine,
        decision: DecisionEngine,
        router: OrderRouter,
        *,
        poll_interval: float = 5.0,
        order_ttl: float | None = None,
        max_signing_failures: int = 3,
        not_found_polls: int = 3,
        store: StateStore | None = None,
        logger: EventLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if decision.instrument != instrument:
            raise ValueError(f"decision engine is for {decision.instrument}, not {instrument}")
        self.instrument = instrument
        self.channel = channel
        self.decision = decision
        self.tracker: OrderTracker = decision.tracker
        self.router = router
        self.poll_interval = poll_interval
        self.order_ttl = order_ttl
        self.max_signing_failures = max_signing_failures
        self.not_found_polls = not_found_polls
        self.store = store
        self.last_reading: ChannelReading | None = None
        self._logger = logger or StdlibEventLogger()
        self._clock = clock
        self._inbox: queue.Queue[Future[ExecutionReport]] = queue.Queue()
        self._in_flight: dict[str, Future[ExecutionReport]] = {}
        self._last_contact: dict[str, float] = {}
        self._opened_at: dict[str, float] = {}
        self._cancel_requested: set[str] = set()
        self._not_found: dict[str, int] = {}
        self._signing_failures = 0

    # --- tick processing ---

    def process(self, tick: Tick) -> Order | None:
        """Handle one tick. Returns the order emitted for it, if any."""
        self.pump()
        reading = self.channel.update(tick)
        self.last_reading = reading
        self._schedule_followups()
        order = self.decision.decide(reading, tick.timestamp)
        if order is not None:
            self._dispatch(order, RequestKind.PLACE)
            self.save()
        return order

    def run(self, ticks: Iterable[Tick], stop: threading.Event | None = None) -> None:
        """
        Consume ticks in arrival order until the feed ends or stop is set.
        Only ConfigurationError ends the loop early; other errors skip the tick.
        """
        self._logger.info("worker.started", instrument=self.instrument)
        for tick in ticks:
            if stop is not None and stop.is_set():
                break
            try:
                self.process(tick)
            except ConfigurationError:
                raise
            except Exception as e:  # noqa: BLE001
                logger.exception("Tick processing failed for %s", self.instrument)
                self._logger.error("worker.tick_failed", instrument=self.instrument, error=repr(e))
        self.pump()
        self._logger.info("worker.stopped", instrument=self.instrument)

    # --- exchange reports ---

    def pump(self) -> int:
        """Apply every completed exchange report, then schedule due polls/cancels. Returns reports applied."""
        applied = 0
        while True:
            try:
                future = self._inbox.get_nowait()
            except queue.Empty:
                break
            applied += self._collect(future)
        if applied:
            self.save()
        if self._signing_failures >= self.max_signing_failures:
            raise ConfigurationError(
                f"{self.instrument}: request signing failed {self._signing_failures} times; check the access secret"
            )
        self._schedule_followups()
        return applied

    def _dispatch(self, order: Order, kind: RequestKind) -> None:
        if kind == RequestKind.PLACE:
            future = self.router.place(order)
        elif kind == RequestKind.CANCEL:
            self._cancel_requested.add(order.client_order_id)
            future = self.router.cancel(order)
        else:
            future = self.router.poll(order)
        self._in_flight[order.client_order_id] = future
        future.add_done_callback(self._enqueue)

    def _enqueue(self, future: Future[ExecutionReport]) -> None:
        # runs on the pool thread (or inline if already done): no state changes here
        if not future.cancelled():
            self._inbox.put(future)

    def _collect(self, future: Future[ExecutionReport]) -> bool:
        """Apply a finished request if it is still the one in flight for its order."""
        cid = next((c for c, f in self._in_flight.items() if f is future), None)
        if cid is None:
            return False
        error = future.exception()
        if error is not None:
            del self._in_flight[cid]
            logger.error("Exchange job for %s raised: %r", cid, error)
            return False
        self._apply(future.result())
        return True

    def _apply(self, report: ExecutionReport) -> None:
        cid = report.client_order_id
        self._in_flight.pop(cid, None)
        current = self.tracker.get(cid)
        if current is None:
            return
        self._last_contact[cid] = self._clock()

        if report.not_found and not current.is_terminal:
            misses = self._not_found[cid] = self._not_found.get(cid, 0) + 1
            if misses >= self.not_found_polls:
                report = dataclasses.replace(
                    report,
                    status=OrderStatus.REJECTED,
                    message=f"not found on exchange after {misses} lookups",
                )
        elif report.status_known:
            self._not_found.pop(cid, None)

        if not report.status_known:
            self._logger.info(
                "order.status_unavailable",
                instrument=self.instrument,
                client_order_id=cid,
                kept=current.status.value,
                polls=self.tracker.poll_attempts(cid),
                not_found=self._not_found.get(cid, 0),
            )
            return

        updated = self.tracker.update_status(
            cid,
            report.status,
            exchange_order_id=report.exchange_order_id,
            message=report.message,
        )
        if updated.status != current.status:
            log = self._logger.error if updated.status == OrderStatus.UNKNOWN else self._logger.info
            log(
                "order.status",
                instrument=self.instrument,
                client_order_id=cid,
                exchange_order_id=updated.exchange_order_id,
                previous=current.status.value,
                status=updated.status.value,
                source=report.kind.value,
                reason=report.message,
            )
        if updated.status == OrderStatus.OPEN and cid not in self._opened_at:
            self._opened_at[cid] = self._clock()
        self.decision.apply(updated)

        if report.kind == RequestKind.PLACE:
            if report.signing_failure:
                self._signing_failures += 1
                self._logger.error(
                    "worker.signing_failed",
                    instrument=self.instrument,
                    failures=self._signing_failures,
                    budget=self.max_signing_failures,
                )
            else:
                self._signing_failures = 0

        if updated.is_terminal:
            self._last_contact.pop(cid, None)
            self._opened_at.pop(cid, None)
            self._cancel_requested.discard(cid)
            self._not_found.pop(cid, None)

    def _schedule_followups(self) -> None:
        """Poll or cancel the active order when due. One request per order at a time."""
        active = self.tracker.active_order_for(self.instrument)
        if active is None or active.client_order_id in self._in_flight:
            return
        cid = active.client_order_id
        now = self._clock()
        opened = self._opened_at.get(cid)
        if (
            self.order_ttl is not None
            and active.status == OrderStatus.OPEN
            and opened is not None
            and now - opened >= self.order_ttl
            and cid not in self._cancel_requested
        ):
            self._logger.info("order.expiring", instrument=self.instrument, client_order_id=cid, ttl=self.order_ttl)
            self._dispatch(active, RequestKind.CANCEL)
            return
        last = self._last_contact.get(cid)
        if last is not None and now - last < self.poll_interval:
            return
        polls = self.tracker.note_poll(cid)
        if active.status == OrderStatus.UNKNOWN and polls % UNRESOLVED_ALERT_EVERY == 0:
            self._logger.error("order.unreconciled", instrument=self.instrument, client_order_id=cid, polls=polls)
        self._dispatch(active, RequestKind.POLL)

    # --- shutdown & persistence ---

    def drain(self, timeout: float | None = None) -> None:
        """
        Wait for outstanding requests, apply their reports, and mark placements
        that never completed as UNKNOWN so they are reconciled on restart.
        """
        if self._in_flight:
            concurrent.futures.wait(list(self._in_flight.values()), timeout=timeout)
        # finished futures are read directly: their callbacks may not have run yet
        for future in list(self._in_flight.values()):
            if future.done() and not future.cancelled():
                self._collect(future)
        for cid, future in list(self._in_flight.items()):
            future.cancel()
            del self._in_flight[cid]
            order = self.tracker.get(cid)
            if order is not None and order.status == OrderStatus.PENDING:
                self.tracker.update_status(cid, OrderStatus.UNKNOWN, message="placement unresolved at shutdown")
                self._logger.error("order.unresolved_at_shutdown", instrument=self.instrument, client_order_id=cid)
        self.save()

    def in_flight(self) -> int:
        return len(self._in_flight)

    def save(self) -> None:
        if self.store is None:
            return
        self.store.save(self.instrument, self.snapshot())

    def restore(self) -> bool:
        """Load state from the store, if any. Returns whether state was restored."""
        if self.store is None:
            return False
        data = self.store.load(self.instrument)
        if not data:
            return False
        self.tracker.restore(data["tracker"])
        self.decision.restore(data["decision"])
        active = self.tracker.active_order_for(self.instrument)
        self._logger.info(
            "worker.restored",
            instrument=self.instrument,
            side=self.decision.position.side.value,
            active_order=active.client_order_id if active else None,
        )
        return True

    def snapshot(self) -> dict[str, Any]:
        return {"tracker": self.tracker.snapshot(), "decision": self.decision.snapshot()}


class TradingPipeline:
    """
    Partitioned map of instrument -> worker, one consumer thread each.
    stop() signals every consumer; join() waits for them, drains outstanding
    requests and shuts the router pool down.
    """

    def __init__(self, router: OrderRouter, *, logger: EventLogger | None = None) -> None:
        self.router = router
        self._workers: dict[str, InstrumentWorker] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._errors: dict[str, BaseException] = {}
        self._stop = threading.Event()
        self._logger = logger or StdlibEventLogger()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session: requests.Session | None = None,
        store: StateStore | None = None,
        logger: EventLogger | None = None,
    ) -> TradingPipeline:
        """Build client, router and one worker per configured product."""
        client = ExchangeClient(settings.exchange, session, logger=logger)
        router = OrderRouter(client, max_workers=settings.exchange.max_workers)
        pipeline = cls(router, logger=logger)
        strategy = settings.strategy
        for product_id in strategy.product_ids:
            tracker = OrderTracker()
            pipeline.add(
                InstrumentWorker(
                    product_id,
                    ChannelSignalEngine(strategy.high_period, strategy.low_period),
                    DecisionEngine(product_id, tracker, size=strategy.order_size, logger=logger),
                    router,
                    poll_interval=strategy.poll_interval,
                    order_ttl=strategy.order_ttl,
                    max_signing_failures=strategy.max_signing_failures,
                    not_found_polls=strategy.not_found_polls,
                    store=store,
                    logger=logger,
                )
            )
        return pipeline

    def add(self, worker: InstrumentWorker) -> None:
        if worker.instrument in self._workers:
            raise ValueError(f"worker for {worker.instrument} already registered")
        self._workers[worker.instrument] = worker

    def worker(self, instrument: str) -> InstrumentWorker:
        return self._workers[instrument]

    @property
    def instruments(self) -> list[str]:
        return list(self._workers)

    @property
    def errors(self) -> dict[str, BaseException]:
        """Errors that ended a consumer (ConfigurationError), by instrument."""
        return dict(self._errors)

    def start(self, feeds: Mapping[str, Iterable[Tick]]) -> None:
        """Start one consumer thread per feed. Every feed must have a registered worker."""
        for instrument, ticks in feeds.items():
            if instrument not in self._workers:
                raise KeyError(f"no worker registered for {instrument}")
            if instrument in self._threads:
                raise RuntimeError(f"consumer for {instrument} already started")
            thread = threading.Thread(
                target=self._consume,
                args=(instrument, ticks),
                name=f"consumer-{instrument}",
            )
            self._threads[instrument] = thread
            thread.start()

    def _consume(self, instrument: str, ticks: Iterable[Tick]) -> None:
        worker = self._workers[instrument]
        try:
            worker.restore()
            worker.run(ticks, self._stop)
        except ConfigurationError as e:
            self._errors[instrument] = e
            self._logger.error("worker.halted", instrument=instrument, error=str(e))

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        """Join consumers, drain every worker and shut the request pool down."""
        for thread in self._threads.values():
            thread.join(timeout)
        for instrument, worker in self._workers.items():
            if self._threads.get(instrument) is not None and self._threads[instrument].is_alive():
                self._logger.error("worker.join_timeout", instrument=instrument)
                continue
            worker.drain(timeout)
        self.router.shutdown(wait=True, cancel_futures=True)
        self._logger.info("pipeline.stopped", instruments=",".join(self._workers))
