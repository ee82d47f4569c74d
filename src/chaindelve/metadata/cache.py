"""
Caches used by the metadata layer.

FileCache persists explorer responses between runs; FetchOnce memoises one
lookup for the lifetime of the process.
"""

import asyncio
import json
import logging
import os
from base64 import urlsafe_b64encode
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FileCache:
    """A key -> JSON value store with one file per key."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / urlsafe_b64encode(key.encode()).decode()

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, "r") as f:
            return json.load(f)

    def put(self, key: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w") as f:
            json.dump(value, f)
        os.replace(tmp, path)


class FetchState(Enum):
    NOT_FETCHED = "not_fetched"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class FetchOnce(Generic[T]):
    """
    Runs an async fetch at most once and replays its outcome.

    Concurrent callers arriving while the fetch is in flight wait for the same
    result. A failure is cached too: later calls re-raise the same exception.
    """

    def __init__(self, fetch: Callable[[], Awaitable[T]]):
        self._fetch = fetch
        self.state = FetchState.NOT_FETCHED
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None
        self._pending: Optional[asyncio.Future] = None

    async def get(self) -> T:
        if self.state is FetchState.READY:
            return self._value
        if self.state is FetchState.FAILED:
            raise self._error
        if self.state is FetchState.PENDING:
            return await asyncio.shield(self._pending)

        self.state = FetchState.PENDING
        self._pending = asyncio.get_running_loop().create_future()
        try:
            value = await self._fetch()
        except asyncio.CancelledError:
            self.state = FetchState.NOT_FETCHED
            self._pending.cancel()
            raise
        except Exception as e:
            self.state = FetchState.FAILED
            self._error = e
            self._pending.set_exception(e)
            self._pending.exception()  # mark retrieved, waiters get it from await
            raise
        self.state = FetchState.READY
        self._value = value
        self._pending.set_result(value)
        return value
