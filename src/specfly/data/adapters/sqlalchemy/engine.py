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
"""Async SQLAlchemy execution engine.

Each :meth:`SQLAlchemyExecutionEngine.session` call opens its own
:class:`~sqlalchemy.ext.asyncio.AsyncSession` and yields a
:class:`SQLAlchemyQueryable` that builds one ``SELECT`` lazily.  Global
filters are appended as ``WHERE`` clauses on the root entity and as
``with_loader_criteria`` options for eager-loaded relationships, so
soft-deleted children stay hidden too.

Example::

    engine = SQLAlchemyExecutionEngine.from_engine(create_async_engine(url))
    engine.register_global_filter(Tenant, lambda t: t.active == True)  # noqa: E712

    repo = CriteriaRepository(engine)
    users = await repo.to_list(Criteria(User).add_include("orders"))
"""

from __future__ import annotations

import dataclasses
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import ColumnElement, Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased, selectinload, with_loader_criteria

from specfly.data.adapters.sqlalchemy.compiler import PredicateCompiler, resolve_path
from specfly.data.adapters.sqlalchemy.entity import SoftDeleteMixin
from specfly.data.combinator import ensure_compatible
from specfly.data.expressions import FieldAccess, Lambda, predicate
from specfly.kernel.exceptions import ExecutionEngineException, InvalidSelectorException

T = TypeVar("T")
R = TypeVar("R")

logger = structlog.get_logger("specfly.data.adapters.sqlalchemy")


class SQLAlchemyExecutionEngine:
    """Execution engine backed by an ``async_sessionmaker``.

    Args:
        session_factory: Factory producing one session per criteria call.
        soft_delete: Hide rows of :class:`SoftDeleteMixin` entities whose
            ``deleted_at`` is set, unless the criteria bypasses global filters.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, soft_delete: bool = True) -> None:
        self._session_factory = session_factory
        self._soft_delete = soft_delete
        self._global_filters: dict[type, list[Lambda[Any]]] = {}

    @classmethod
    def from_engine(cls, engine: AsyncEngine, *, soft_delete: bool = True) -> SQLAlchemyExecutionEngine:
        return cls(async_sessionmaker(engine, expire_on_commit=False), soft_delete=soft_delete)

    def register_global_filter(self, entity_type: type[T], condition: Lambda[T] | Any) -> None:
        """Add an ambient restriction for *entity_type* and its subclasses."""
        resolved = condition if isinstance(condition, Lambda) else predicate(entity_type, condition)
        self._global_filters.setdefault(entity_type, []).append(resolved)
        logger.debug("global_filter_registered", entity=entity_type.__name__)

    def global_filters(self) -> tuple[tuple[type, Lambda[Any]], ...]:
        return tuple(
            (entity_type, condition)
            for entity_type, conditions in self._global_filters.items()
            for condition in conditions
        )

    @asynccontextmanager
    async def session(self, entity_type: type[T]) -> AsyncIterator[SQLAlchemyQueryable[T]]:
        async with self._session_factory() as session:
            yield SQLAlchemyQueryable(
                session=session,
                entity_type=entity_type,
                global_filters=self.global_filters(),
                soft_delete=self._soft_delete,
            )


def _not_deleted(cls: Any) -> ColumnElement[bool]:
    return cls.deleted_at.is_(None)


@dataclass(frozen=True)
class SQLAlchemyQueryable(Generic[T]):
    """Immutable, lazily compiled ``SELECT`` over one mapped entity."""

    session: AsyncSession
    entity_type: type[T]
    global_filters: tuple[tuple[type, Lambda[Any]], ...] = ()
    soft_delete: bool = True
    ignoring_global_filters: bool = False
    predicates: tuple[Lambda[Any], ...] = ()
    includes: tuple[FieldAccess, ...] = ()
    ordering: tuple[tuple[FieldAccess, bool], ...] = ()

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def ignore_global_filters(self) -> SQLAlchemyQueryable[T]:
        return dataclasses.replace(self, ignoring_global_filters=True)

    def filter(self, predicate: Lambda[T]) -> SQLAlchemyQueryable[T]:
        ensure_compatible(self.entity_type, predicate.entity_type)
        return dataclasses.replace(self, predicates=(*self.predicates, predicate))

    def include(self, selector: FieldAccess) -> SQLAlchemyQueryable[T]:
        return dataclasses.replace(self, includes=(*self.includes, selector))

    def order_by(self, selector: FieldAccess, descending: bool = False) -> SQLAlchemyQueryable[T]:
        return dataclasses.replace(self, ordering=((selector, descending),))

    def then_by(self, selector: FieldAccess, descending: bool = False) -> SQLAlchemyQueryable[T]:
        if not self.ordering:
            raise InvalidSelectorException("then_by() requires a preceding order_by()", code="ORDER_MISSING")
        return dataclasses.replace(self, ordering=(*self.ordering, (selector, descending)))

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    async def to_list(self) -> list[T]:
        stmt = self.statement()
        result = await self._run(lambda: self.session.execute(stmt))
        return list(result.scalars().all())

    async def first(self) -> T | None:
        stmt = self.statement().limit(1)
        result = await self._run(lambda: self.session.execute(stmt))
        return result.scalars().first()

    async def count(self) -> int:
        inner = self.statement(with_includes=False, with_ordering=False).subquery()
        stmt = select(func.count()).select_from(inner)
        return int(await self._run(lambda: self.session.scalar(stmt)) or 0)

    async def exists(self) -> bool:
        inner = self.statement(with_includes=False, with_ordering=False)
        stmt = select(inner.exists())
        return bool(await self._run(lambda: self.session.scalar(stmt)))

    async def window(self, offset: int, limit: int) -> list[T]:
        stmt = self.statement().offset(offset).limit(limit)
        result = await self._run(lambda: self.session.execute(stmt))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Statement building
    # ------------------------------------------------------------------

    def statement(self, *, with_includes: bool = True, with_ordering: bool = True) -> Select[Any]:
        """Build the ``SELECT`` this queryable stands for.

        Raises:
            InvalidSelectorException: If a filter, include or sort path
                does not resolve against the mapped classes.
        """
        model = self.entity_type
        compiler = PredicateCompiler(model)
        stmt = select(model)

        if not self.ignoring_global_filters:
            stmt = self._apply_global_filters(stmt, compiler, with_includes)

        for condition in self.predicates:
            stmt = stmt.where(compiler.compile(condition))

        if with_includes:
            for include in self.includes:
                stmt = stmt.options(self._loader(include))

        if with_ordering:
            stmt = self._apply_ordering(stmt)
        return stmt

    def _apply_global_filters(self, stmt: Select[Any], compiler: PredicateCompiler, loading: bool) -> Select[Any]:
        model = self.entity_type
        loading = loading and bool(self.includes)
        if self.soft_delete and issubclass(model, SoftDeleteMixin):
            stmt = stmt.where(_not_deleted(model))
        if self.soft_delete and loading:
            stmt = stmt.options(
                with_loader_criteria(SoftDeleteMixin, lambda cls: cls.deleted_at.is_(None), include_aliases=True)
            )
        for filtered_type, condition in self.global_filters:
            if issubclass(model, filtered_type):
                stmt = stmt.where(compiler.compile(condition))
            elif loading:
                related = PredicateCompiler(filtered_type).compile(condition)
                stmt = stmt.options(with_loader_criteria(filtered_type, related, include_aliases=True))
        return stmt

    def _loader(self, include: FieldAccess) -> Any:
        resolved = resolve_path(self.entity_type, include.path)
        if resolved.attribute is not None:
            raise InvalidSelectorException(
                f"Include '{include.dotted}' must name a relationship, not a column",
                code="SELECTOR_INVALID",
                context={"entity": self.entity_type.__name__, "selector": include.dotted},
            )
        loader = None
        for hop in resolved.hops:
            loader = selectinload(hop.attribute) if loader is None else loader.selectinload(hop.attribute)
        return loader

    def _apply_ordering(self, stmt: Select[Any]) -> Select[Any]:
        joined: dict[tuple[str, ...], Any] = {}
        for key, descending in self.ordering:
            resolved = resolve_path(self.entity_type, key.path)
            if resolved.attribute is None or any(hop.uselist for hop in resolved.hops):
                raise InvalidSelectorException(
                    f"Cannot order by '{key.dotted}': sort keys must end on a column reached through "
                    "single-valued relationships",
                    code="SELECTOR_INVALID",
                    context={"entity": self.entity_type.__name__, "selector": key.dotted},
                )
            current: Any = self.entity_type
            for depth, hop in enumerate(resolved.hops):
                prefix = key.path[: depth + 1]
                alias = joined.get(prefix)
                if alias is None:
                    alias = aliased(hop.target)
                    stmt = stmt.outerjoin(getattr(current, hop.name).of_type(alias))
                    joined[prefix] = alias
                current = alias
            column = getattr(current, key.path[-1])
            stmt = stmt.order_by(column.desc().nulls_last() if descending else column.asc().nulls_first())
        return stmt

    async def _run(self, call: Callable[[], Awaitable[R]]) -> R:
        try:
            return await call()
        except SQLAlchemyError as exc:
            raise ExecutionEngineException(
                f"Query on '{self.entity_type.__name__}' failed: {exc}",
                code="EXECUTION_ENGINE_FAILURE",
                context={"entity": self.entity_type.__name__},
            ) from exc
