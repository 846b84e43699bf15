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
"""Criteria — reusable, composable query intents.

A :class:`Criteria` bundles everything a caller wants from a read query
over one entity type: an optional filter predicate, eager-load (include)
selectors, ascending and descending order selectors, and a flag to bypass
the execution engine's global filters.

Criteria are immutable.  Every builder method returns a new instance, so a
criteria can be shared freely between concurrent materializations::

    by_name = (
        Criteria(User)
        .with_filter(lambda u: u.last_name == "Smith")
        .add_include(lambda u: u.address)
        .add_order_by(lambda u: u.first_name)
    )

    active = Criteria(User).with_filter(lambda u: u.active)

    smiths_or_active = by_name | active
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from specfly.data.combinator import combine, ensure_compatible
from specfly.data.expressions import BoolOperator, FieldAccess, Lambda, predicate, selector
from specfly.data.pageable import Sort

T = TypeVar("T")

SelectorLike = str | FieldAccess | Callable[[Any], Any]
PredicateLike = Lambda[Any] | Callable[[Any], Any] | None


@dataclass(frozen=True, eq=False)
class Criteria(Generic[T]):
    """Immutable description of filter, include, order and bypass intents.

    Attributes:
        entity_type: The entity type every predicate and selector ranges over.
        filter: Restriction predicate, or ``None`` for no restriction.
        includes: Related paths to eager-load, in call order.
        order_by: Ascending sort keys, in call order.
        order_by_descending: Descending sort keys, in call order.
        bypass_global_filters: Ask the engine to skip its ambient filters.
    """

    entity_type: type[T]
    filter: Lambda[T] | None = None
    includes: tuple[FieldAccess, ...] = ()
    order_by: tuple[FieldAccess, ...] = ()
    order_by_descending: tuple[FieldAccess, ...] = ()
    bypass_global_filters: bool = False

    @classmethod
    def where(cls, entity_type: type[T], condition: PredicateLike) -> Criteria[T]:
        """Shortcut for ``Criteria(entity_type).with_filter(condition)``."""
        return cls(entity_type).with_filter(condition)

    @property
    def has_ordering(self) -> bool:
        return bool(self.order_by or self.order_by_descending)

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def with_filter(self, condition: PredicateLike) -> Criteria[T]:
        """Replace the filter predicate. The last call wins; ``None`` clears it."""
        if condition is None:
            return dataclasses.replace(self, filter=None)
        if isinstance(condition, Lambda):
            ensure_compatible(self.entity_type, condition.entity_type)
            resolved: Lambda[T] = condition
        else:
            resolved = predicate(self.entity_type, condition)
        return dataclasses.replace(self, filter=resolved)

    def add_include(self, target: SelectorLike) -> Criteria[T]:
        """Append an eager-load directive for a related path."""
        return dataclasses.replace(self, includes=(*self.includes, self._selector(target)))

    def add_order_by(self, target: SelectorLike) -> Criteria[T]:
        """Append an ascending sort key."""
        return dataclasses.replace(self, order_by=(*self.order_by, self._selector(target)))

    def add_order_by_descending(self, target: SelectorLike) -> Criteria[T]:
        """Append a descending sort key."""
        return dataclasses.replace(self, order_by_descending=(*self.order_by_descending, self._selector(target)))

    def with_sort(self, sort: Sort) -> Criteria[T]:
        """Append every order of *sort*; blank property names are skipped."""
        result: Criteria[T] = self
        for order in sort.orders:
            if not order.property.strip():
                continue
            if order.direction == "desc":
                result = result.add_order_by_descending(order.property)
            else:
                result = result.add_order_by(order.property)
        return result

    def enable_bypass_global_filters(self) -> Criteria[T]:
        """Ask the engine to skip global filters. There is no way back."""
        return dataclasses.replace(self, bypass_global_filters=True)

    def _selector(self, target: SelectorLike) -> FieldAccess:
        resolved = selector(self.entity_type, target)
        ensure_compatible(self.entity_type, resolved.source.entity_type)
        return resolved

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def and_(self, other: Criteria[T]) -> CompositeCriteria[T]:
        return CompositeCriteria.of(self, other, BoolOperator.AND)

    def or_(self, other: Criteria[T]) -> CompositeCriteria[T]:
        return CompositeCriteria.of(self, other, BoolOperator.OR)

    def __and__(self, other: Criteria[T]) -> CompositeCriteria[T]:
        return self.and_(other)

    def __or__(self, other: Criteria[T]) -> CompositeCriteria[T]:
        return self.or_(other)

    # ------------------------------------------------------------------
    # In-memory evaluation
    # ------------------------------------------------------------------

    def match(self, entity: T) -> bool:
        """Test one in-memory object against the filter.

        Returns ``False`` when there is no filter.  This differs from query
        execution, where a missing filter places no restriction at all.
        """
        if self.filter is None:
            return False
        return self.filter.evaluate(entity)


@dataclass(frozen=True, eq=False)
class CompositeCriteria(Criteria[T]):
    """Criteria built from exactly two operands.

    The filter is the combination of both operands' filters.  Includes,
    ordering and the bypass flag come from the left operand only; the
    right operand contributes its filter and nothing else.  No reference
    to either operand is kept.
    """

    operator: BoolOperator = BoolOperator.AND

    @classmethod
    def of(cls, left: Criteria[T], right: Criteria[T], operator: BoolOperator) -> CompositeCriteria[T]:
        ensure_compatible(left.entity_type, right.entity_type)
        return cls(
            entity_type=left.entity_type,
            filter=combine(left.filter, right.filter, operator),
            includes=left.includes,
            order_by=left.order_by,
            order_by_descending=left.order_by_descending,
            bypass_global_filters=left.bypass_global_filters,
            operator=operator,
        )
