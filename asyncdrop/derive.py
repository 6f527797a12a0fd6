"""Per-type derivations the oracle depends on.

Everything here works from dataclass metadata: the empty instance of a type
is ``cls()``, and resetting a value assigns each field its declared default.
"""
from __future__ import annotations
import dataclasses
import inspect
from typing import Any, Iterable, TypeVar

from .errors import FinalizableMisuse

T = TypeVar("T")


def field_default(f: dataclasses.Field) -> Any:
    if f.default is not dataclasses.MISSING:
        return f.default
    if f.default_factory is not dataclasses.MISSING:  # type: ignore[misc]
        return f.default_factory()  # type: ignore[misc]
    raise FinalizableMisuse(f"field {f.name!r} has no default")


def reset_to_defaults(value: Any) -> None:
    """Set every dataclass field of ``value`` back to its default."""
    for f in dataclasses.fields(value):
        setattr(value, f.name, field_default(f))


def empty_of(cls: type[T]) -> T:
    try:
        return cls()
    except TypeError as ex:
        raise FinalizableMisuse(f"{cls.__name__}() cannot build an empty instance: {ex}") from ex


def field_names(value: Any) -> Iterable[str]:
    return [f.name for f in dataclasses.fields(value)]


def move_fields(src: Any, dst: Any) -> None:
    for name in field_names(src):
        setattr(dst, name, getattr(src, name))


def validate_type(cls: type) -> None:
    """Reject types the equality oracle cannot handle.

    Raises:
        FinalizableMisuse: if ``cls`` is not a mutable dataclass with ``eq``,
            has no fields, has a field without a default, or lacks an
            ``async def finalize``.
    """
    name = getattr(cls, "__name__", repr(cls))
    if not inspect.isclass(cls) or not dataclasses.is_dataclass(cls):
        raise FinalizableMisuse(f"{name} must be a dataclass")
    params = cls.__dataclass_params__  # type: ignore[attr-defined]
    if not params.eq:
        raise FinalizableMisuse(f"{name} must compare by value (dataclass eq=True)")
    if params.frozen:
        raise FinalizableMisuse(f"{name} is frozen and cannot be reset after finalization")
    fs = dataclasses.fields(cls)
    if not fs:
        raise FinalizableMisuse(f"{name} has no fields; a type with no fields cannot be finalized")
    missing = [f.name for f in fs if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING]  # type: ignore[misc]
    if missing:
        raise FinalizableMisuse(f"{name} fields need defaults to build an empty instance: {', '.join(missing)}")
    if not inspect.iscoroutinefunction(getattr(cls, "finalize", None)):
        raise FinalizableMisuse(f"{name} must define 'async def finalize(self)'")
