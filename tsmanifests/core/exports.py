# tsmanifests/core/exports.py
"""
Export shapes.

A module's default export is inspected once, right after evaluation, and
tagged as one of three shapes. Everything downstream dispatches on the tag
instead of re-checking the value's runtime type.
"""
import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DirectExport:
    value: Any


@dataclass(frozen=True)
class CallableExport:
    operation: Callable[[], Any]


@dataclass(frozen=True)
class SequenceExport:
    values: Sequence[Any]


ExportShape = Union[DirectExport, CallableExport, SequenceExport]


def classify(value: Any) -> ExportShape:
    # strings, bytes and mappings are single entries, only lists and tuples spread.
    if callable(value):
        return CallableExport(value)
    if isinstance(value, (list, tuple)):
        return SequenceExport(value)
    return DirectExport(value)


def normalize(shape: ExportShape) -> List[Any]:
    """Entries contributed by a shape that needs no invocation."""
    if isinstance(shape, SequenceExport):
        return list(shape.values)
    if isinstance(shape, DirectExport):
        return [shape.value]
    raise TypeError("callable exports must be resolved, not normalized")


async def resolve(shape: ExportShape, path: Optional[Path] = None) -> List[Any]:
    """
    Entries contributed by any shape.

    A callable is invoked exactly once with no arguments and its result awaited
    when it is awaitable. The produced value is classified again, one level
    only: a callable produced by a callable is kept as a single entry.
    """
    if not isinstance(shape, CallableExport):
        return normalize(shape)

    produced = shape.operation()
    if inspect.isawaitable(produced):
        produced = await produced

    produced_shape = classify(produced)
    if isinstance(produced_shape, CallableExport):
        log.warning(
            "callable_export_produced_callable",
            path=str(path) if path else None,
            hint="the produced callable is not invoked and is emitted as a single entry",
        )
        return [produced]
    return normalize(produced_shape)
