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
"""Outbound ports: the queryable surface and the execution engine behind it."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol, TypeVar, runtime_checkable

from specfly.data.expressions import FieldAccess, Lambda

T = TypeVar("T")


@runtime_checkable
class QueryablePort(Protocol[T]):
    """A query under construction, scoped to one engine session.

    Builder methods return the (possibly new) queryable to continue with.
    Terminal methods are coroutines and may be called more than once on the
    same queryable; each call runs its own query.
    """

    def ignore_global_filters(self) -> QueryablePort[T]: ...

    def filter(self, predicate: Lambda[T]) -> QueryablePort[T]: ...

    def include(self, selector: FieldAccess) -> QueryablePort[T]: ...

    def order_by(self, selector: FieldAccess, descending: bool = False) -> QueryablePort[T]: ...

    def then_by(self, selector: FieldAccess, descending: bool = False) -> QueryablePort[T]: ...

    async def to_list(self) -> list[T]: ...

    async def first(self) -> T | None: ...

    async def count(self) -> int: ...

    async def exists(self) -> bool: ...

    async def window(self, offset: int, limit: int) -> list[T]: ...


@runtime_checkable
class ExecutionEnginePort(Protocol):
    """Hands out one scoped session per materialization.

    ``session(entity_type)`` returns an async context manager yielding a fresh
    :class:`QueryablePort` over *entity_type*; leaving the context releases
    every resource the session holds.
    """

    def session(self, entity_type: type[T]) -> AbstractAsyncContextManager[QueryablePort[T]]: ...
