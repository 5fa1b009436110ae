#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
ExecutionBridge -- runs an asyncio event loop on a dedicated thread so that a synchronous
caller (a UI, a command-line loop, etc.) can:

  1. Run a coroutine to completion, blocking only the caller's thread (run_blocking)
  2. Schedule a coroutine and return immediately without observing its outcome (submit_fire_and_forget)

The loop keeps running between submissions, with nothing queued, until stop() is called.
"""

from __future__ import annotations


import asyncio
import concurrent.futures
import threading

from .internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_STOP_TIMEOUT
from .exceptions import LifxError

_T = TypeVar('_T')

class ExecutionBridge(ContextManager['ExecutionBridge']):
    """An asyncio event loop running on its own thread, with an explicit start/stop lifecycle.

    Usage:
        with ExecutionBridge() as bridge:
            registry = bridge.run_blocking(populate())
            bridge.submit_fire_and_forget(command(job))
    """

    name: str
    """The name of the loop thread, as shown in logs and debuggers"""

    _loop: Optional[asyncio.AbstractEventLoop] = None
    _thread: Optional[threading.Thread] = None
    _started: threading.Event
    _lock: threading.Lock
    _in_flight: Set[concurrent.futures.Future[Any]]

    def __init__(self, name: str="lifx-control-loop"):
        self.name = name
        self._started = threading.Event()
        self._lock = threading.Lock()
        self._in_flight = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        loop = self._loop
        if loop is None:
            raise LifxError("ExecutionBridge is not running")
        return loop

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and self._loop is not None and self._loop.is_running()

    @property
    def num_in_flight(self) -> int:
        """The number of submitted coroutines that have not completed"""
        with self._lock:
            return len(self._in_flight)

    def _run_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(self._started.set)
        try:
            loop.run_forever()
        finally:
            try:
                self._cancel_remaining_tasks(loop)
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                asyncio.set_event_loop(None)
                loop.close()
                logger.debug(f"ExecutionBridge loop thread {self.name} exiting")

    @staticmethod
    def _cancel_remaining_tasks(loop: asyncio.AbstractEventLoop) -> None:
        tasks = [t for t in asyncio.all_tasks(loop) if not t.done()]
        if len(tasks) == 0:
            return
        logger.debug(f"ExecutionBridge cancelling {len(tasks)} unfinished task(s)")
        for task in tasks:
            task.cancel()
        loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))

    def start(self) -> None:
        """Starts the loop thread and returns once the loop is running. A bridge cannot be restarted."""
        with self._lock:
            if self._thread is not None:
                raise LifxError("ExecutionBridge has already been started")
            loop = asyncio.new_event_loop()
            self._loop = loop
            self._thread = threading.Thread(target=self._run_loop, args=(loop,), name=self.name, daemon=True)
            self._thread.start()
        self._started.wait()
        logger.debug(f"ExecutionBridge loop thread {self.name} started")

    def stop(self, timeout: Optional[float]=DEFAULT_STOP_TIMEOUT) -> None:
        """Stops the loop. Unfinished tasks are cancelled and allowed to unwind before the
           loop is closed. Safe to call more than once."""
        with self._lock:
            thread = self._thread
            loop = self._loop
        if thread is None or loop is None:
            return
        if threading.current_thread() is thread:
            raise LifxError("ExecutionBridge.stop() cannot be called from the loop thread")
        if not loop.is_closed():
            try:
                loop.call_soon_threadsafe(loop.stop)
            except RuntimeError:
                # loop closed between the check and the call
                pass
        thread.join(timeout)
        if thread.is_alive():
            logger.warning(f"ExecutionBridge loop thread {self.name} did not exit within {timeout} seconds")
        with self._lock:
            self._loop = None
            self._in_flight.clear()

    def _check_caller(self) -> asyncio.AbstractEventLoop:
        loop = self.loop
        if threading.current_thread() is self._thread:
            raise LifxError("ExecutionBridge cannot be entered from its own loop thread; await the coroutine instead")
        return loop

    def run_blocking(self, coro: Coroutine[Any, Any, _T], timeout: Optional[float]=None) -> _T:
        """Runs a coroutine on the loop and blocks the calling thread until it completes.

        Returns the coroutine's result, or raises its exception. If timeout (in seconds) elapses
        first, the coroutine is cancelled and concurrent.futures.TimeoutError is raised.
        """
        try:
            loop = self._check_caller()
        except LifxError:
            coro.close()
            raise
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def submit_fire_and_forget(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Schedules a coroutine on the loop and returns immediately.

        The outcome is never reported to the submitter: the coroutine should handle its own failures.
        Any exception that escapes it is logged at warning level and dropped.
        """
        try:
            loop = self._check_caller()
        except LifxError:
            coro.close()
            raise
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._on_fire_and_forget_done)

    def _on_fire_and_forget_done(self, future: concurrent.futures.Future[Any]) -> None:
        with self._lock:
            self._in_flight.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning(f"Fire-and-forget task on {self.name} failed: {exc!r}")

    def __enter__(self) -> ExecutionBridge:
        self.start()
        return self

    def __exit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> Optional[bool]:
        self.stop()
        return False
