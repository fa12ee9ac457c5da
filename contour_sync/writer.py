"""Chunked writes, applied in-process or dispatched to a worker pool."""

from __future__ import annotations

import logging
import math
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, Self

from sqlalchemy.exc import SQLAlchemyError

from contour_sync.config import DEFAULT_CHUNK_SIZE

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence
    from types import TracebackType

    from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)


class ChunkHandler(Protocol):
    def __call__(self, conn: Connection, table: str, rows: Sequence[Any]) -> int: ...


class ChunkResult(NamedTuple):
    table: str
    index: int
    size: int
    inserted: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChunkWriteError(RuntimeError):
    """A chunk could not be written after all attempts."""


def chunk_count(total: int, size: int) -> int:
    return math.ceil(total / max(1, size))


def chunked(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield contiguous, order-preserving slices of at most ``size`` rows."""
    size = max(1, int(size))
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _default_backoff(attempt: int) -> float:
    """~0.5s, 1s, 2s with ±20% jitter; tests may override to 0."""
    base = 0.5 * (2**attempt)
    jitter: float = random.uniform(-0.2, 0.2)  # noqa: S311
    return base * (1 + jitter)


class ChunkedWriter:
    """Split insert batches into chunks and apply each as one transaction.

    Synchronous mode applies chunks immediately and raises on the first chunk
    that still fails after retries. Deferred mode submits one task per chunk
    to a thread pool; failures stay confined to their chunk and are reported
    by wait(). There is no transaction spanning chunks, so callers must
    tolerate partial completion. Handlers re-check existence before inserting,
    which makes retries and re-runs safe.
    """

    def __init__(
        self,
        engine: Engine,
        handler: ChunkHandler,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        deferred: bool = False,
        max_workers: int = 4,
        max_attempts: int = 3,
        backoff_fn: Callable[[int], float] | None = None,
    ) -> None:
        self.engine = engine
        self.handler = handler
        self.chunk_size = max(1, int(chunk_size))
        self.deferred = deferred
        self.max_workers = max(1, max_workers)
        self.max_attempts = max(1, max_attempts)
        self.backoff_fn = backoff_fn or _default_backoff
        self._executor: ThreadPoolExecutor | None = None
        self._pending: list[tuple[str, int, int, Future[int]]] = []
        self._results: list[ChunkResult] = []

    def submit(self, table: str, rows: Sequence[Any]) -> int:
        """Chunk ``rows`` and apply or dispatch every chunk.

        Returns:
            Number of chunks submitted

        Raises:
            ChunkWriteError: In synchronous mode, when a chunk fails
        """
        submitted = 0
        for index, chunk in enumerate(chunked(rows, self.chunk_size)):
            if self.deferred:
                future = self._pool().submit(self._apply_with_retry, table, chunk)
                self._pending.append((table, index, len(chunk), future))
            else:
                try:
                    inserted = self._apply_with_retry(table, chunk)
                except Exception as e:
                    self._results.append(
                        ChunkResult(table, index, len(chunk), 0, str(e))
                    )
                    msg = f"Chunk {index} of {table} failed: {e}"
                    raise ChunkWriteError(msg) from e
                self._results.append(ChunkResult(table, index, len(chunk), inserted))
            submitted += 1

        logger.info(
            "%s %d chunk(s) for %s (%d rows)",
            "Dispatched" if self.deferred else "Applied",
            submitted,
            table,
            len(rows),
        )
        return submitted

    def wait(self) -> list[ChunkResult]:
        """Block until every dispatched chunk has finished; return all results.

        Acts as the barrier between stages: once it returns, every chunk
        submitted so far is committed or has failed.
        """
        pending, self._pending = self._pending, []
        for table, index, size, future in pending:
            try:
                inserted = future.result()
            except Exception as e:  # noqa: BLE001
                logger.error("Chunk %d of %s failed: %s", index, table, e)  # noqa: TRY400
                self._results.append(ChunkResult(table, index, size, 0, str(e)))
            else:
                self._results.append(ChunkResult(table, index, size, inserted))
        return list(self._results)

    def close(self) -> None:
        self.wait()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="contour-chunk"
            )
        return self._executor

    def _apply_with_retry(self, table: str, chunk: Sequence[Any]) -> int:
        # Retry only database errors; anything else is a bug and fails fast.
        for attempt in range(self.max_attempts):
            try:
                with self.engine.begin() as conn:
                    return self.handler(conn, table, chunk)
            except SQLAlchemyError as e:
                if attempt < self.max_attempts - 1:
                    logger.warning(
                        "Chunk write to %s failed (attempt %d/%d): %s",
                        table,
                        attempt + 1,
                        self.max_attempts,
                        e,
                    )
                    time.sleep(self.backoff_fn(attempt))
                    continue
                raise
        msg = "unreachable"  # pragma: no cover
        raise AssertionError(msg)  # pragma: no cover
