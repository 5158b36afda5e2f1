"""Async utilities for bridging blocking store calls into the event loop."""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used for Firestore client calls and the connectivity check, which may
    run concurrently with each other.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        snapshot = await run_sync(doc_ref.get, timeout=30)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


class SingleWriter:
    """One dedicated background thread for every local-store call.

    The local cache is single-writer: its session must only ever be used
    from one thread, and calls must run in submission order.  Both the
    reconciler and the listener dispatcher route their local work through
    the same ``SingleWriter``.

    Calls are serialized but transactions are not: whoever stages changes
    and then saves them must hold ``transaction()`` in between, so a save
    or rollback never commits or discards another owner's work.

    Args:
        name: Thread name prefix, visible in log records.
    """

    def __init__(self, name: str = "local-writer") -> None:
        self._name = name
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=name
        )
        self._closed = False
        self._transaction = asyncio.Lock()

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *func* on the writer thread and await its result."""
        if self._closed:
            raise RuntimeError(f"Writer '{self._name}' has been shut down")
        loop = asyncio.get_running_loop()
        call = functools.partial(func, *args, **kwargs)
        return await loop.run_in_executor(self._executor, call)

    def transaction(self) -> asyncio.Lock:
        """Lock held from the first staged change until its save."""
        return self._transaction

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; by default wait for queued calls to finish."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait)
        logger.debug("Writer '%s' shut down", self._name)

    @property
    def closed(self) -> bool:
        return self._closed
