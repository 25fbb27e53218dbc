"""
Field access adapters.

The evaluation engine reads every entity and every metadata-context object
through one call, ``get_field(target, name) -> (value, found)``. A missing
field is reported as ``found=False``; accessors never raise for it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Callable, Protocol, runtime_checkable

Getter = Callable[[Any], tuple[Any, bool]]

_MISSING = object()


@runtime_checkable
class FieldAccessor(Protocol):
    def get_field(self, target: Any, name: str) -> tuple[Any, bool]:
        ...


def _lookup(target: Any, name: str) -> tuple[Any, bool]:
    if isinstance(target, Mapping):
        value = target.get(name, _MISSING)
    else:
        value = getattr(target, name, _MISSING)
    if value is _MISSING:
        return None, False
    return value, True


def _make_getter(name: str) -> Getter:
    def getter(target: Any) -> tuple[Any, bool]:
        return _lookup(target, name)

    return getter


class ModelFieldAccessor:
    """Accessor table generated from a target's declared field set.

    Works on mappings (request payloads) and attribute objects (dataclasses,
    Pydantic models). Names outside the declared set are never found, even
    if the object happens to carry them.
    """

    def __init__(self, field_names: list[str]):
        self._getters: dict[str, Getter] = {name: _make_getter(name) for name in field_names}

    @property
    def field_names(self) -> list[str]:
        return list(self._getters)

    def get_field(self, target: Any, name: str) -> tuple[Any, bool]:
        getter = self._getters.get(name)
        if getter is None or target is None:
            return None, False
        return getter(target)


def _call(method: Callable[[], Any]) -> tuple[Any, bool]:
    """Call a zero-argument accessor method; a failing call is not found."""
    try:
        return method(), True
    except (TypeError, AttributeError):
        return None, False


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class IntrospectionAccessor:
    """Reflective lookup for metadata-context objects.

    Tries, in order: mapping key or attribute (methods are called),
    ``get_<name>()`` / ``is_<name>()`` methods, then the same again for the
    snake_case spelling of the name. A method that cannot be called without
    arguments counts as not found.
    """

    def get_field(self, target: Any, name: str) -> tuple[Any, bool]:
        if target is None:
            return None, False
        is_mapping = isinstance(target, Mapping)
        for candidate in dict.fromkeys((name, _snake_case(name))):
            value, found = _lookup(target, candidate)
            if found:
                if not callable(value) or is_mapping:
                    return value, True
                value, found = _call(value)
                if found:
                    return value, True
            if is_mapping:
                continue
            for prefix in ("get_", "is_"):
                method = getattr(target, prefix + candidate, None)
                if callable(method):
                    value, found = _call(method)
                    if found:
                        return value, True
        return None, False
