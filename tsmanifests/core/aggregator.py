# tsmanifests/core/aggregator.py
"""
Turns candidate paths into the aggregate list.

Each path is evaluated, its export classified and resolved into entries, and
the entries of all files are concatenated in candidate order. Files may be
evaluated concurrently, but their entries are only appended once every file
has finished, in the order the paths were given.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

import structlog

from tsmanifests.core.evaluation import NO_EXPORT, Evaluator
from tsmanifests.core.exports import classify, resolve
from tsmanifests.exceptions import EvaluationError

log = structlog.get_logger(__name__)


class FileState(Enum):
    PENDING = "pending"
    EVALUATED = "evaluated"
    SKIPPED = "skipped"
    NORMALIZED = "normalized"
    APPENDED = "appended"
    FAILED = "failed"


@dataclass
class FileResult:
    path: Path
    state: FileState = FileState.PENDING
    entries: List[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def entry_count(self) -> int:
        return len(self.entries)


class Aggregator:
    # owns one aggregate list per `aggregate` call; nothing carries over between runs.
    def __init__(self, evaluator: Evaluator, concurrency: int = 1):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.evaluator = evaluator
        self.concurrency = concurrency
        self.results: List[FileResult] = []
        self.log = structlog.get_logger(f"{__name__}.{self.__class__.__name__}")

    async def _process(self, result: FileResult) -> FileResult:
        path = result.path
        try:
            value = await self.evaluator.evaluate(path)
        except EvaluationError as e:
            result.state, result.error = FileState.FAILED, e.message
            raise
        except Exception as e:
            result.state, result.error = FileState.FAILED, str(e)
            raise EvaluationError(path, f"{type(e).__name__}: {e}") from e

        result.state = FileState.EVALUATED
        if value is NO_EXPORT:
            self.log.info("file_has_no_default_export", path=str(path))
            result.state = FileState.SKIPPED
            return result

        try:
            result.entries = await resolve(classify(value), path)
        except EvaluationError as e:
            result.state, result.error = FileState.FAILED, e.message
            raise
        except Exception as e:
            result.state, result.error = FileState.FAILED, str(e)
            raise EvaluationError(path, f"default export raised {type(e).__name__}: {e}") from e

        result.state = FileState.NORMALIZED
        self.log.debug("file_export_normalized", path=str(path), entries=result.entry_count)
        return result

    async def aggregate(
        self,
        paths: Iterable[Path],
        on_file_done: Optional[Callable[[FileResult], None]] = None,
    ) -> List[Any]:
        """
        Evaluates every path and returns the concatenated entries.

        At most `concurrency` files are in flight at once. The first failure
        cancels the remaining work and propagates as `EvaluationError`; no
        partial list is returned.
        """
        self.results = [FileResult(Path(p)) for p in paths]
        self.log.info("aggregation_started", files=len(self.results), concurrency=self.concurrency)
        semaphore = asyncio.Semaphore(self.concurrency)
        aborted = asyncio.Event()

        async def bounded(result: FileResult) -> FileResult:
            async with semaphore:
                # files still queued when another one fails are never started.
                if aborted.is_set():
                    return result
                try:
                    await self._process(result)
                except BaseException:
                    aborted.set()
                    raise
            if on_file_done is not None:
                on_file_done(result)
            return result

        tasks = [asyncio.ensure_future(bounded(r)) for r in self.results]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        items: List[Any] = []
        for result in self.results:
            if result.state is FileState.NORMALIZED:
                items.extend(result.entries)
                result.state = FileState.APPENDED
        self.log.info("aggregation_complete", files=len(self.results), items=len(items))
        return items

    def aggregate_sync(self, paths: Iterable[Path]) -> List[Any]:
        return asyncio.run(self.aggregate(paths))
