# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""In-memory execution engine.

Evaluates criteria against plain Python objects (dataclasses, attribute
bags or mappings).  Useful for tests, fixtures and caches; it honours the
same contract as the SQLAlchemy engine, including global filters and
selector validation.

Example::

    engine = InMemoryExecutionEngine()
    engine.add_all(User, users)
    engine.register_global_filter(User, lambda u: u.deleted_at.is_(None))

    repo = CriteriaRepository(engine)
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from specfly.data.combinator import ensure_compatible
from specfly.data.expressions import FieldAccess, Lambda, predicate, read_path
from specfly.kernel.exceptions import InvalidSelectorException

T = TypeVar("T")

_COLLECTIONS = (list, tuple, set, frozenset)

logger = structlog.get_logger("specfly.data.adapters.memory")


class InMemoryExecutionEngine:
    """Holds rows per entity type and hands out snapshot sessions.

    Args:
        latency: Seconds each terminal operation sleeps before answering,
            simulating a round-trip.
        queryable_type: Queryable class to hand out, for instrumented subclasses.
    """

    def __init__(self, *, latency: float = 0.0, queryable_type: type[InMemoryQueryable[Any]] | None = None) -> None:
        self._tables: dict[type, list[Any]] = {}
        self._global_filters: dict[type, list[Lambda[Any]]] = {}
        self._latency = latency
        self._queryable_type = queryable_type or InMemoryQueryable
        self.sessions_opened = 0
        self.open_sessions = 0

    def add(self, *rows: Any) -> None:
        """Store rows under their own class."""
        for row in rows:
            self._tables.setdefault(type(row), []).append(row)

    def add_all(self, entity_type: type, rows: Iterable[Any]) -> None:
        """Store rows under *entity_type* (required for mapping rows)."""
        self._tables.setdefault(entity_type, []).extend(rows)

    def register_global_filter(self, entity_type: type[T], condition: Lambda[T] | Any) -> None:
        """Add an ambient restriction applied unless a criteria bypasses it."""
        resolved = condition if isinstance(condition, Lambda) else predicate(entity_type, condition)
        self._global_filters.setdefault(entity_type, []).append(resolved)

    def rows_of(self, entity_type: type) -> list[Any]:
        rows: list[Any] = []
        for stored_type, stored in self._tables.items():
            if issubclass(stored_type, entity_type):
                rows.extend(stored)
        return rows

    def global_filters_of(self, entity_type: type) -> list[Lambda[Any]]:
        filters: list[Lambda[Any]] = []
        for filtered_type, conditions in self._global_filters.items():
            if issubclass(entity_type, filtered_type):
                filters.extend(conditions)
        return filters

    @asynccontextmanager
    async def session(self, entity_type: type[T]) -> AsyncIterator[InMemoryQueryable[T]]:
        self.sessions_opened += 1
        self.open_sessions += 1
        try:
            yield self._queryable_type(
                entity_type=entity_type,
                rows=tuple(self.rows_of(entity_type)),
                global_filters=tuple(self.global_filters_of(entity_type)),
                latency=self._latency,
            )
        finally:
            self.open_sessions -= 1


@dataclass(frozen=True)
class InMemoryQueryable(Generic[T]):
    """Immutable query over a snapshot of rows."""

    entity_type: type[T]
    rows: tuple[Any, ...]
    global_filters: tuple[Lambda[Any], ...] = ()
    ignoring_global_filters: bool = False
    predicates: tuple[Lambda[Any], ...] = ()
    includes: tuple[FieldAccess, ...] = ()
    ordering: tuple[tuple[FieldAccess, bool], ...] = ()
    latency: float = 0.0

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def ignore_global_filters(self) -> InMemoryQueryable[T]:
        return dataclasses.replace(self, ignoring_global_filters=True)

    def filter(self, predicate: Lambda[T]) -> InMemoryQueryable[T]:
        ensure_compatible(self.entity_type, predicate.entity_type)
        return dataclasses.replace(self, predicates=(*self.predicates, predicate))

    def include(self, selector: FieldAccess) -> InMemoryQueryable[T]:
        return dataclasses.replace(self, includes=(*self.includes, selector))

    def order_by(self, selector: FieldAccess, descending: bool = False) -> InMemoryQueryable[T]:
        return dataclasses.replace(self, ordering=((selector, descending),))

    def then_by(self, selector: FieldAccess, descending: bool = False) -> InMemoryQueryable[T]:
        if not self.ordering:
            raise InvalidSelectorException("then_by() requires a preceding order_by()", code="ORDER_MISSING")
        return dataclasses.replace(self, ordering=(*self.ordering, (selector, descending)))

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    async def to_list(self) -> list[T]:
        await asyncio.sleep(self.latency)
        return self._materialize()

    async def first(self) -> T | None:
        await asyncio.sleep(self.latency)
        rows = self._materialize()
        return rows[0] if rows else None

    async def count(self) -> int:
        await asyncio.sleep(self.latency)
        return len(self._materialize())

    async def exists(self) -> bool:
        await asyncio.sleep(self.latency)
        return bool(self._materialize())

    async def window(self, offset: int, limit: int) -> list[T]:
        await asyncio.sleep(self.latency)
        return self._materialize()[offset : offset + limit]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _materialize(self) -> list[T]:
        rows = list(self.rows)
        if not self.ignoring_global_filters:
            for condition in self.global_filters:
                rows = [row for row in rows if condition.evaluate(row)]
        for condition in self.predicates:
            rows = [row for row in rows if condition.evaluate(row)]
        for include in self.includes:
            self._check_include(include, rows)
        for key, _descending in self.ordering:
            self._check_selector(key, rows)
        # Stable sorts applied from the least to the most significant key.
        for key, descending in reversed(self.ordering):
            rows.sort(key=lambda row, _k=key: _sort_key(read_path(row, _k.path)), reverse=descending)
        logger.debug("in_memory_query", entity=self.entity_type.__name__, rows=len(rows))
        return rows

    def _check_selector(self, selector: FieldAccess, rows: list[Any]) -> None:
        if rows:
            for row in rows:
                read_path(row, selector.path)
            return
        head = selector.path[0]
        if not _declares(self.entity_type, head):
            raise self._unknown(selector, head)

    def _check_include(self, include: FieldAccess, rows: list[Any]) -> None:
        """Like :meth:`_check_selector`, but steps into collections along the path."""
        if not rows:
            self._check_selector(include, rows)
            return
        for row in rows:
            self._walk(include, row, 0)

    def _walk(self, include: FieldAccess, current: Any, index: int) -> None:
        if current is None or index == len(include.path):
            return
        if isinstance(current, _COLLECTIONS):
            for element in current:
                self._walk(include, element, index)
            return
        name = include.path[index]
        if isinstance(current, Mapping):
            if name not in current:
                raise self._unknown(include, name)
            self._walk(include, current[name], index + 1)
            return
        if not hasattr(current, name):
            raise self._unknown(include, name)
        self._walk(include, getattr(current, name), index + 1)

    def _unknown(self, selector: FieldAccess, name: str) -> InvalidSelectorException:
        return InvalidSelectorException(
            f"'{self.entity_type.__name__}' has no member '{name}' (selector '{selector.dotted}')",
            code="SELECTOR_INVALID",
            context={"entity": self.entity_type.__name__, "selector": selector.dotted},
        )


def _declares(entity_type: type, name: str) -> bool:
    if hasattr(entity_type, name):
        return True
    return any(name in getattr(klass, "__annotations__", {}) for klass in entity_type.__mro__)


def _sort_key(value: Any) -> tuple[bool, Any]:
    # None sorts first ascending and last descending.
    return (value is not None, value)
