"""Shared utility functions used across mtaji modules."""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Generator

from sqlalchemy import inspect as sa_inspect

from mtaji.errors import SubmissionInFlight

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def isoformat(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def row_to_dict(row: Any) -> dict[str, Any]:
    """Serialize an ORM row column-by-column.

    ``*_json`` columns are parsed and exposed without the suffix; dates become
    ISO strings.
    """
    out: dict[str, Any] = {}
    for attr in sa_inspect(row).mapper.column_attrs:
        key = attr.key
        value = getattr(row, key)
        if key.endswith("_json"):
            out[key.removesuffix("_json")] = json_parse(value, [])
        elif isinstance(value, (date, datetime)):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out


class SubmissionGuard:
    """Per-caller in-flight flag. Cooperative only; it does not deduplicate across callers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def is_busy(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def acquire(self, key: str) -> None:
        with self._lock:
            if key in self._in_flight:
                raise SubmissionInFlight("A submission is already in progress. Please wait for it to finish.")
            self._in_flight.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._in_flight.discard(key)

    @contextmanager
    def claim(self, key: str) -> Generator[None, None, None]:
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)


default_guard = SubmissionGuard()
