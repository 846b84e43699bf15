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
"""Dynamic predicate building.

Provides :class:`FilterOperator` for single-field predicates and
:class:`FilterUtils` for generating predicates from partial entities,
dicts or keyword arguments (query by example).  Field names may be given
as ``snake_case``, ``camelCase``, ``PascalCase`` or ``kebab-case`` and may
be dotted paths.

Example::

    # From keyword arguments (eq by default, ANDed together)
    condition = FilterUtils.by(User, last_name="Smith", active=True)
    smiths = Criteria(User).with_filter(condition)

    # From a dict (None values are skipped)
    condition = FilterUtils.from_dict(User, {"role": "admin", "name": None})

    # From a partial entity / dataclass
    condition = FilterUtils.from_example(User, UserFilter(role="admin"))

    # Using operators directly for richer predicates
    condition = and_also(FilterOperator.gte(User, "age", 18), FilterOperator.lt(User, "age", 65))
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Any, TypeVar

from specfly.data.combinator import combine
from specfly.data.expressions import (
    BoolOperator,
    Comparison,
    ComparisonOperator,
    FieldAccess,
    Lambda,
    Literal,
    Node,
    Variable,
    normalize_property_name,
)
from specfly.kernel.exceptions import InvalidSelectorException

T = TypeVar("T")


def _field(variable: Variable, name: str) -> FieldAccess:
    path = tuple(normalize_property_name(part) for part in name.split(".") if part.strip())
    if not path:
        raise InvalidSelectorException("Filter field must not be empty", code="SELECTOR_EMPTY")
    return FieldAccess(variable, path)


def _lambda(entity_type: type[T], name: str, op: ComparisonOperator, value: Any = None) -> Lambda[T]:
    variable = Variable(entity_type)
    right: Node | None
    if op in (ComparisonOperator.IS_NULL, ComparisonOperator.IS_NOT_NULL):
        right = None
    elif op in (ComparisonOperator.IN, ComparisonOperator.NOT_IN):
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise TypeError(f"'{op.value}' expects a collection of values, got {type(value).__name__}")
        right = Literal(tuple(value))
    else:
        right = Literal(value)
    return Lambda(variable, Comparison(op, _field(variable, name), right))


class FilterOperator:
    """Filter operators for building dynamic predicates.

    Each static method returns a :class:`Lambda` applying a single
    field-level comparison.  Combine results with
    :func:`~specfly.data.combinator.and_also` /
    :func:`~specfly.data.combinator.or_else` or through
    :class:`~specfly.data.criteria.Criteria` composition.
    """

    @staticmethod
    def eq(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Equal to."""
        return _lambda(entity_type, field, ComparisonOperator.EQ, value)

    @staticmethod
    def neq(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Not equal to."""
        return _lambda(entity_type, field, ComparisonOperator.NE, value)

    @staticmethod
    def gt(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Greater than."""
        return _lambda(entity_type, field, ComparisonOperator.GT, value)

    @staticmethod
    def gte(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Greater than or equal."""
        return _lambda(entity_type, field, ComparisonOperator.GE, value)

    @staticmethod
    def lt(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Less than."""
        return _lambda(entity_type, field, ComparisonOperator.LT, value)

    @staticmethod
    def lte(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Less than or equal."""
        return _lambda(entity_type, field, ComparisonOperator.LE, value)

    @staticmethod
    def contains(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        """Substring (or member) containment."""
        return _lambda(entity_type, field, ComparisonOperator.CONTAINS, value)

    @staticmethod
    def not_contains(entity_type: type[T], field: str, value: Any) -> Lambda[T]:
        return _lambda(entity_type, field, ComparisonOperator.NOT_CONTAINS, value)

    @staticmethod
    def starts_with(entity_type: type[T], field: str, prefix: str) -> Lambda[T]:
        return _lambda(entity_type, field, ComparisonOperator.STARTSWITH, prefix)

    @staticmethod
    def ends_with(entity_type: type[T], field: str, suffix: str) -> Lambda[T]:
        return _lambda(entity_type, field, ComparisonOperator.ENDSWITH, suffix)

    @staticmethod
    def in_list(entity_type: type[T], field: str, values: Iterable[Any]) -> Lambda[T]:
        """Value is in list."""
        return _lambda(entity_type, field, ComparisonOperator.IN, values)

    @staticmethod
    def not_in_list(entity_type: type[T], field: str, values: Iterable[Any]) -> Lambda[T]:
        return _lambda(entity_type, field, ComparisonOperator.NOT_IN, values)

    @staticmethod
    def is_null(entity_type: type[T], field: str) -> Lambda[T]:
        """Value is ``None`` / NULL."""
        return _lambda(entity_type, field, ComparisonOperator.IS_NULL)

    @staticmethod
    def is_not_null(entity_type: type[T], field: str) -> Lambda[T]:
        """Value is not ``None`` / NULL."""
        return _lambda(entity_type, field, ComparisonOperator.IS_NOT_NULL)

    @staticmethod
    def between(entity_type: type[T], field: str, low: Any, high: Any) -> Lambda[T]:
        """Value is between *low* and *high* (inclusive)."""
        variable = Variable(entity_type)
        target = _field(variable, field)
        return Lambda(variable, (target >= low) & (target <= high))

    @staticmethod
    def build(entity_type: type[T], field: str, op: ComparisonOperator | str, value: Any = None) -> Lambda[T]:
        """Build a comparison from an operator name such as ``"ge"`` or ``"not_in"``."""
        try:
            resolved = ComparisonOperator(op)
        except ValueError:
            raise ValueError(
                f"Unknown filter operator '{op}'; expected one of "
                + ", ".join(o.value for o in ComparisonOperator)
            ) from None
        return _lambda(entity_type, field, resolved, value)


class FilterUtils:
    """Generate predicates dynamically from entities, dicts, or kwargs.

    Every method returns ``None`` when no condition remains, which
    composition treats as "no predicate".
    """

    @staticmethod
    def by(entity_type: type[T], **kwargs: Any) -> Lambda[T] | None:
        """Create a predicate from keyword arguments (all eq, ANDed)."""
        return FilterUtils._combine_and([FilterOperator.eq(entity_type, f, v) for f, v in kwargs.items()])

    @staticmethod
    def from_dict(entity_type: type[T], filters: dict[str, Any]) -> Lambda[T] | None:
        """Create a predicate from a dict of field->value pairs (all eq, ANDed).

        ``None`` values are skipped.
        """
        return FilterUtils._combine_and(
            [FilterOperator.eq(entity_type, f, v) for f, v in filters.items() if v is not None]
        )

    @staticmethod
    def from_example(entity_type: type[T], example: Any) -> Lambda[T] | None:
        """Create a predicate from an example entity/DTO.

        Extracts non-``None`` field values and creates eq filters for each.
        Supports dataclasses and any object with ``__dict__``.
        """
        if dataclasses.is_dataclass(example) and not isinstance(example, type):
            fields = {f.name: getattr(example, f.name) for f in dataclasses.fields(example)}
        else:
            fields = {k: v for k, v in vars(example).items() if not k.startswith("_")}
        return FilterUtils.from_dict(entity_type, fields)

    @staticmethod
    def from_conditions(
        entity_type: type[T],
        conditions: Iterable[tuple[str, ComparisonOperator | str, Any]],
        op: BoolOperator = BoolOperator.AND,
    ) -> Lambda[T] | None:
        """Combine ``(field, operator, value)`` triples under *op*."""
        result: Lambda[T] | None = None
        for field, operator, value in conditions:
            result = combine(result, FilterOperator.build(entity_type, field, operator, value), op)
        return result

    @staticmethod
    def _combine_and(conditions: list[Lambda[T]]) -> Lambda[T] | None:
        """AND-combine a list of predicates.  Returns ``None`` if empty."""
        result: Lambda[T] | None = None
        for condition in conditions:
            result = combine(result, condition, BoolOperator.AND)
        return result
