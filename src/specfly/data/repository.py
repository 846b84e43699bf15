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
"""Result materializers for criteria queries.

:class:`CriteriaRepository` is what repository-like callers talk to.  Each
operation opens its own engine session, applies the criteria, runs one
terminal operation and releases the session on every exit path.

Usage::

    repo = CriteriaRepository(engine, mapper=mapper)

    smiths = await repo.to_list(Criteria.where(User, lambda u: u.last_name == "Smith"))
    page = await repo.to_paged_list(criteria, page_number=2, page_size=25)
    cards = await repo.to_list(criteria, projection=UserCard)

    async for user in repo.to_lazy_sequence(criteria.add_order_by("id")):
        ...
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any, TypeVar

import structlog

from specfly.core.config import Config
from specfly.data.applier import CriteriaApplier
from specfly.data.criteria import Criteria
from specfly.data.mapper import Mapper
from specfly.data.page import Page
from specfly.data.pageable import Pageable
from specfly.data.ports.outbound import ExecutionEnginePort, QueryablePort
from specfly.data.properties import CriteriaProperties
from specfly.kernel.cancellation import CancellationToken, guarded
from specfly.kernel.exceptions import (
    ExecutionEngineException,
    MapperNotRegisteredException,
    ResourceNotFoundException,
    SpecflyException,
)
from specfly.logging.structlog_adapter import LoggingProperties, configure_logging

T = TypeVar("T")
R = TypeVar("R")

logger = structlog.get_logger("specfly.data.repository")


class CriteriaRepository:
    """Materializes :class:`Criteria` against an execution engine.

    Args:
        engine: Source of scoped query sessions.
        mapper: Row-shape mapper for projected operations.  Projections
            fail with :class:`MapperNotRegisteredException` without one.
        properties: Batch and page size settings.
        applier: Criteria translator; the default is fine for all engines.
    """

    def __init__(
        self,
        engine: ExecutionEnginePort,
        mapper: Mapper | None = None,
        properties: CriteriaProperties | None = None,
        applier: CriteriaApplier | None = None,
    ) -> None:
        self._engine = engine
        self._mapper = mapper
        self._properties = properties or CriteriaProperties()
        self._applier = applier or CriteriaApplier()

    @classmethod
    def from_config(cls, engine: ExecutionEnginePort, config: Config, mapper: Mapper | None = None) -> CriteriaRepository:
        """Build a repository whose properties are bound from ``specfly.data.*``.

        When ``specfly.logging.configure`` is set, the library loggers are
        configured from ``specfly.logging.*`` as well.
        """
        if config.bind(LoggingProperties).configure:
            configure_logging(config)
        return cls(engine, mapper=mapper, properties=config.bind(CriteriaProperties))

    @property
    def properties(self) -> CriteriaProperties:
        return self._properties

    # ------------------------------------------------------------------
    # Scalar results
    # ------------------------------------------------------------------

    async def exists(
        self,
        criteria: Criteria[T],
        *,
        projection: type | None = None,
        cancellation: CancellationToken | None = None,
    ) -> bool:
        """Whether at least one row matches."""
        self._projector(criteria, projection)
        return await self._run("exists", criteria, lambda q: q.exists(), cancellation)

    async def count(
        self,
        criteria: Criteria[T],
        *,
        projection: type | None = None,
        cancellation: CancellationToken | None = None,
    ) -> int:
        """Number of matching rows."""
        self._projector(criteria, projection)
        return await self._run("count", criteria, lambda q: q.count(), cancellation)

    # ------------------------------------------------------------------
    # Single rows
    # ------------------------------------------------------------------

    async def first(
        self,
        criteria: Criteria[T],
        *,
        projection: type | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        """First row in applied order.

        Raises:
            ResourceNotFoundException: If nothing matches.
        """
        transform = self._projector(criteria, projection)
        row = await self._run("first", criteria, lambda q: q.first(), cancellation)
        if row is None:
            raise ResourceNotFoundException(
                f"No {criteria.entity_type.__name__} matches the criteria",
                code="NOT_FOUND",
                context={"entity": criteria.entity_type.__name__},
            )
        return transform(row) if transform else row

    async def first_or_default(
        self,
        criteria: Criteria[T],
        *,
        projection: type | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any | None:
        """First row in applied order, or ``None`` when nothing matches."""
        transform = self._projector(criteria, projection)
        row = await self._run("first_or_default", criteria, lambda q: q.first(), cancellation)
        if row is None:
            return None
        return transform(row) if transform else row

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def to_list(
        self,
        criteria: Criteria[T],
        *,
        projection: type | None = None,
        cancellation: CancellationToken | None = None,
    ) -> list[Any]:
        """All matching rows, in applied order."""
        transform = self._projector(criteria, projection)
        rows = await self._run("to_list", criteria, lambda q: q.to_list(), cancellation)
        return [transform(row) for row in rows] if transform else rows

    async def to_paged_list(
        self,
        criteria: Criteria[T],
        page_number: int = 1,
        page_size: int | None = None,
        *,
        projection: type | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Page[Any]:
        """One page of matching rows plus page metadata.

        Pages past the end come back empty with correct ``total`` and
        ``total_pages``.

        Raises:
            ValueError: If *page_number* or *page_size* is below 1.
        """
        transform = self._projector(criteria, projection)
        pageable = Pageable.of(page_number, self._page_size(page_size))

        async def fetch(query: QueryablePort[T]) -> tuple[int, list[T]]:
            total = await query.count()
            if pageable.offset >= total:
                return total, []
            return total, await query.window(pageable.offset, pageable.size)

        total, rows = await self._run("to_paged_list", criteria, fetch, cancellation)
        page: Page[Any] = Page(items=rows, total=total, page=pageable.page, size=pageable.size)
        return page.map(transform) if transform else page

    def to_lazy_sequence(
        self,
        criteria: Criteria[T],
        *,
        projection: type | None = None,
        batch_size: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[Any]:
        """Stream matching rows, fetching *batch_size* rows per round-trip.

        The returned iterator is forward-only and can be consumed once.  The
        engine session stays open until it is exhausted or closed.  Without
        any sort key the batch boundaries depend on the engine's natural
        row order.
        """
        transform = self._projector(criteria, projection)
        size = batch_size if batch_size is not None else self._properties.lazy_batch_size
        if size < 1:
            raise ValueError(f"batch_size must be >= 1, got {size}")
        if not criteria.has_ordering:
            logger.warning("lazy_sequence_without_ordering", entity=criteria.entity_type.__name__)
        return self._stream(criteria, transform, size, cancellation)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _projector(self, criteria: Criteria[T], projection: type | None) -> Callable[[Any], Any] | None:
        if projection is None:
            return None
        if self._mapper is None:
            raise MapperNotRegisteredException(
                f"No mapper configured; cannot project '{criteria.entity_type.__name__}' to '{projection.__name__}'",
                code="MAPPER_NOT_REGISTERED",
                context={"source": criteria.entity_type.__name__, "destination": projection.__name__},
            )
        return self._mapper.projector(criteria.entity_type, projection)

    def _page_size(self, requested: int | None) -> int:
        size = requested if requested is not None else self._properties.default_page_size
        if size > self._properties.max_page_size:
            logger.warning("page_size_clamped", requested=size, max_page_size=self._properties.max_page_size)
            return self._properties.max_page_size
        return size

    async def _run(
        self,
        operation: str,
        criteria: Criteria[T],
        terminal: Callable[[QueryablePort[T]], Awaitable[R]],
        cancellation: CancellationToken | None,
    ) -> R:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        started = time.perf_counter()
        try:
            async with self._engine.session(criteria.entity_type) as source:
                query = self._applier.apply(source, criteria)
                result = await guarded(terminal(query), cancellation)
        except SpecflyException:
            raise
        except Exception as exc:
            raise _engine_failure(operation, criteria, exc) from exc

        logger.debug(
            "criteria_materialized",
            operation=operation,
            entity=criteria.entity_type.__name__,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return result

    async def _stream(
        self,
        criteria: Criteria[T],
        transform: Callable[[Any], Any] | None,
        batch_size: int,
        cancellation: CancellationToken | None,
    ) -> AsyncIterator[Any]:
        async with aclosing(self._batches(criteria, batch_size, cancellation)) as batches:
            async for batch in batches:
                for row in batch:
                    yield transform(row) if transform else row

    async def _batches(
        self,
        criteria: Criteria[T],
        batch_size: int,
        cancellation: CancellationToken | None,
    ) -> AsyncIterator[list[T]]:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        fetched = 0
        try:
            async with self._engine.session(criteria.entity_type) as source:
                query = self._applier.apply(source, criteria)
                while True:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    batch = await guarded(query.window(fetched, batch_size), cancellation)
                    if batch:
                        fetched += len(batch)
                        yield batch
                    if len(batch) < batch_size:
                        break
        except SpecflyException:
            raise
        except Exception as exc:
            raise _engine_failure("to_lazy_sequence", criteria, exc) from exc

        logger.debug("lazy_sequence_completed", entity=criteria.entity_type.__name__, rows=fetched)


def _engine_failure(operation: str, criteria: Criteria[Any], exc: Exception) -> ExecutionEngineException:
    logger.error(
        "execution_engine_failed",
        operation=operation,
        entity=criteria.entity_type.__name__,
        error=type(exc).__name__,
    )
    return ExecutionEngineException(
        f"Execution engine failed during {operation} for {criteria.entity_type.__name__}: {exc}",
        code="EXECUTION_ENGINE_FAILURE",
        context={"operation": operation, "entity": criteria.entity_type.__name__},
    )
