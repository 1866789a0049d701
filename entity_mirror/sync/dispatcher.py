"""
Background dispatch of sync operations.

AsyncDispatcher runs coroutines on an event loop owned by a dedicated
worker thread, so callers never block on network I/O unless they ask
to. Every submission produces exactly one completion: the returned
future resolves once, and an optional callback receives
``(result, error)`` with exactly one of the two populated.

Dispatched operations cannot be cancelled once they reach the remote
service; callers that lose interest should ignore the completion.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CompletionCallback = Callable[[Any, BaseException | None], None]


class AsyncDispatcher:
    """Runs coroutine factories on a background event loop.

    Example:
        >>> dispatcher = AsyncDispatcher()
        >>> future = dispatcher.submit(lambda: coordinator.save(note), callback=on_done)
        >>> dispatcher.close()
    """

    def __init__(self, thread_name: str = "entity-mirror-dispatcher") -> None:
        """Initialize the dispatcher. The worker thread starts on first use.

        Args:
            thread_name: Name of the worker thread
        """
        self.thread_name = thread_name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread if it is not running."""
        with self._lock:
            if self.is_running:
                return

            loop = asyncio.new_event_loop()
            ready = threading.Event()
            thread = threading.Thread(
                target=self._run_loop, args=(loop, ready), name=self.thread_name, daemon=True
            )
            thread.start()
            ready.wait()
            self._loop = loop
            self._thread = thread
            logger.debug(f"Dispatcher thread {self.thread_name} started")

    def _run_loop(self, loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def submit(
        self,
        factory: Callable[[], Awaitable[T]],
        callback: CompletionCallback | None = None,
    ) -> concurrent.futures.Future[T]:
        """Schedule a coroutine on the worker loop.

        Args:
            factory: Zero-argument callable returning the awaitable to run
            callback: Called once with ``(result, None)`` or ``(None, error)``

        Returns:
            Future resolving to the coroutine's result
        """
        self.start()
        assert self._loop is not None
        future = asyncio.run_coroutine_threadsafe(self._invoke(factory), self._loop)
        if callback is not None:
            future.add_done_callback(partial(self._deliver, callback))
        return future

    @staticmethod
    async def _invoke(factory: Callable[[], Awaitable[T]]) -> T:
        return await factory()

    @staticmethod
    def _deliver(callback: CompletionCallback, future: concurrent.futures.Future[Any]) -> None:
        if future.cancelled():
            result, error = None, concurrent.futures.CancelledError()
        else:
            error = future.exception()
            result = None if error is not None else future.result()

        try:
            callback(result, error)
        except Exception:
            logger.exception("Completion callback raised")

    def run(self, factory: Callable[[], Awaitable[T]], timeout: float | None = None) -> T:
        """Run a coroutine on the worker loop and block until it completes.

        Raises:
            RuntimeError: If called from the worker thread itself
            TimeoutError: If ``timeout`` elapses; the operation keeps running
            Exception: Whatever the coroutine raised
        """
        if self._thread is not None and threading.current_thread() is self._thread:
            raise RuntimeError("Blocking dispatch from the dispatcher thread would deadlock")
        return self.submit(factory).result(timeout)

    def close(self, timeout: float | None = 5.0) -> None:
        """Stop the worker loop and wait for the thread to exit.

        Operations still in flight are cancelled.
        """
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None

        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        logger.debug(f"Dispatcher thread {self.thread_name} stopped")

    def __enter__(self) -> AsyncDispatcher:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
