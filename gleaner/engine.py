"""The crawl engine.

CrawlEngine drives an asyncio.PriorityQueue of CrawlRequests with a pool
of workers. Each worker:

1. dequeues a request
2. resolves it through the AdapterChain (browser adapters serialize on the
   chain's session lock, plain fetches run concurrently)
3. invokes the extractor callback named on the request, one callback at a
   time, so the pending-entity mapping is never mutated concurrently
4. enqueues yielded requests (resolved against the document) and forwards
   yielded entities downstream

Failures are split by reach. Anything raised while resolving or parsing a
single request fails that request's chain: the extractor is told via
``on_chain_failed`` and the run continues. SessionUnusable is fatal: the
engine stops issuing work, closes the chain (and with it the session) and
returns an ``aborted`` report.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from typing_extensions import assert_never

from gleaner.browser.chain import AdapterChain
from gleaner.common.data_models import DeferredValidation
from gleaner.common.exceptions import (
    DataFormatAssumptionException,
    SessionUnusable,
    TransientException,
)
from gleaner.data_types import (
    BaseExtractor,
    CrawlRequest,
    ParsedData,
    ResolvedDocument,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RunStatus = Literal["completed", "aborted", "stopped", "error"]


def log_and_validate_invalid_data(data: DeferredValidation) -> None:
    """Default invalid-data handler: log the validation errors."""
    try:
        data.confirm()
    except DataFormatAssumptionException as e:
        error_summary = ", ".join(
            f"{err['loc'][0]}: {err['msg']}" for err in e.errors
        )
        logger.error(
            f"Data validation failed for model '{e.model_name}': {error_summary}",
            extra={
                "model_name": e.model_name,
                "request_url": e.request_url,
                "error_count": len(e.errors),
                "failed_doc": e.failed_doc,
            },
        )


@dataclass
class CrawlReport:
    """Outcome of one run.

    Partial success is normal: ``emitted`` entities reached downstream while
    ``discarded`` entities and ``failed_chains`` requests did not.
    """

    status: RunStatus
    emitted: int = 0
    discarded: int = 0
    failed_chains: int = 0
    invalid: int = 0
    error: Exception | None = None

    @property
    def aborted(self) -> bool:
        return self.status == "aborted"

    def summary(self) -> str:
        text = (
            f"{self.status}: {self.emitted} emitted, {self.discarded} "
            f"discarded, {self.failed_chains} failed chains, "
            f"{self.invalid} invalid"
        )
        if self.error is not None:
            text += f" ({type(self.error).__name__}: {self.error})"
        return text


class CrawlEngine(Generic[T]):
    """Runs an extractor against an AdapterChain.

    Example::

        engine = CrawlEngine(extractor, chain, on_data=store_reviews(store))
        report = await engine.run()
    """

    def __init__(
        self,
        extractor: BaseExtractor[T],
        chain: AdapterChain,
        on_data: Callable[[Any], Awaitable[None]] | None = None,
        on_invalid_data: Callable[[DeferredValidation], Awaitable[None]]
        | None = None,
        on_chain_failed: Callable[[CrawlRequest, Exception], Awaitable[None]]
        | None = None,
        on_run_start: Callable[[str], Awaitable[None]] | None = None,
        on_run_complete: Callable[[str, CrawlReport], Awaitable[None]]
        | None = None,
        stop_event: asyncio.Event | None = None,
        num_workers: int = 1,
    ) -> None:
        """Initialize the engine.

        Args:
            extractor: Extractor whose callbacks parse resolved documents.
            chain: Resolves requests; closed by the engine when the run ends.
            on_data: Receives each validated entity.
            on_invalid_data: Receives entities that failed validation. When
                omitted the validation errors are logged.
            on_chain_failed: Receives each request whose chain failed, after
                the extractor released its pending state.
            on_run_start: Receives the extractor name.
            on_run_complete: Receives the extractor name and the report.
            stop_event: When set, workers stop taking new requests.
            num_workers: Concurrent workers. Browser-routed requests still
                resolve one at a time.
        """
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        self.extractor = extractor
        self.chain = chain
        self.on_data = on_data
        self.on_invalid_data = on_invalid_data
        self.on_chain_failed = on_chain_failed
        self.on_run_start = on_run_start
        self.on_run_complete = on_run_complete
        self.stop_event = stop_event
        self.num_workers = num_workers

        # (priority, counter, request); the counter keeps equal priorities FIFO
        self.request_queue: asyncio.PriorityQueue[
            tuple[int, int, CrawlRequest]
        ] = asyncio.PriorityQueue()
        self._queue_counter = 0
        self._queue_lock = asyncio.Lock()
        self._callback_lock = asyncio.Lock()
        self._abort = asyncio.Event()
        self._fatal: SessionUnusable | None = None

        self.emitted = 0
        self.invalid = 0
        self.failed_chains = 0

    async def run(self) -> CrawlReport:
        """Crawl until the queue drains, a stop is requested, or the session dies.

        Returns:
            The run's CrawlReport.
        """
        extractor_name = self.extractor.__class__.__name__
        if self.on_run_start:
            await self.on_run_start(extractor_name)

        status: RunStatus = "completed"
        error: Exception | None = None
        try:
            if not self._stop_requested():
                for entry_request in self.extractor.get_entry():
                    await self.enqueue_request(entry_request)
                await self._drain()

            if self._fatal is not None:
                status = "aborted"
            elif self._stop_requested():
                status = "stopped"
        except Exception as e:
            status = "error"
            error = e
            raise
        finally:
            # Closes the session exactly once, on every exit path
            await self.chain.close()
            report = self._build_report(status, error)
            logger.info(f"Run of {extractor_name} {report.summary()}")
            if self.on_run_complete:
                await self.on_run_complete(extractor_name, report)

        return report

    async def _drain(self) -> None:
        workers = [
            asyncio.create_task(self._worker(i))
            for i in range(self.num_workers)
        ]
        join_task = asyncio.ensure_future(self.request_queue.join())
        try:
            while not join_task.done():
                if self._abort.is_set() or self._stop_requested():
                    break
                await asyncio.wait({join_task}, timeout=0.05)
        finally:
            join_task.cancel()
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, join_task, return_exceptions=True)

    def _stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _build_report(
        self, status: RunStatus, error: Exception | None = None
    ) -> CrawlReport:
        pending = getattr(self.extractor, "pending", None)
        return CrawlReport(
            status=status,
            emitted=self.emitted,
            discarded=pending.discarded if pending is not None else 0,
            failed_chains=self.failed_chains,
            invalid=self.invalid,
            error=self._fatal or error,
        )

    async def _worker(self, worker_id: int) -> None:
        while True:
            _priority, _counter, request = await self.request_queue.get()
            try:
                if self._abort.is_set() or self._stop_requested():
                    continue
                await self.process_request(request)
            except SessionUnusable as e:
                if self._fatal is None:
                    self._fatal = e
                    logger.error(
                        f"Browser session unusable, aborting run: {e}",
                        extra={"request_url": request.url},
                    )
                self._abort.set()
            finally:
                self.request_queue.task_done()

    async def enqueue_request(
        self,
        new_request: CrawlRequest,
        context: ResolvedDocument | None = None,
    ) -> None:
        """Queue a request, resolving its URL against ``context`` if given."""
        request = (
            new_request.resolve_from(context) if context else new_request
        )
        async with self._queue_lock:
            await self.request_queue.put(
                (request.priority, self._queue_counter, request)
            )
            self._queue_counter += 1

    async def process_request(self, request: CrawlRequest) -> None:
        """Resolve one request and run its callback.

        Raises:
            SessionUnusable: If the browser died; everything else is local.
        """
        try:
            document = await self.chain.resolve(request)
        except SessionUnusable:
            raise
        except Exception as e:
            async with self._callback_lock:
                await self._fail_chain(request, e)
            return

        async with self._callback_lock:
            try:
                callback = self.extractor.get_callback(request.callback_name)
                for item in callback(document):
                    match item:
                        case ParsedData():
                            await self.handle_data(item.unwrap())
                        case CrawlRequest():
                            await self.enqueue_request(item, document)
                        case None:
                            pass
                        case _:
                            assert_never(item)
            except SessionUnusable:
                raise
            except Exception as e:
                await self._fail_chain(request, e)

    async def handle_data(self, data: Any) -> None:
        """Validate deferred entities and forward them downstream."""
        if isinstance(data, DeferredValidation):
            try:
                data = data.confirm()
            except DataFormatAssumptionException:
                self.invalid += 1
                if self.on_invalid_data:
                    await self.on_invalid_data(data)
                else:
                    log_and_validate_invalid_data(data)
                return

        self.emitted += 1
        if self.on_data:
            await self.on_data(data)

    async def _fail_chain(self, request: CrawlRequest, error: Exception) -> None:
        # Caller holds the callback lock
        self.failed_chains += 1
        expected = isinstance(error, TransientException)
        logger.warning(
            f"Chain failed at {request.url}: {type(error).__name__}: {error}",
            exc_info=not expected,
            extra={
                "request_url": request.url,
                "callback": request.callback_name,
                "error_type": type(error).__name__,
            },
        )
        self.extractor.on_chain_failed(request, error)
        if self.on_chain_failed:
            await self.on_chain_failed(request, error)
