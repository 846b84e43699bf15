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
"""Compile predicate expression trees into SQLAlchemy column expressions.

Single-segment paths become column comparisons.  Dotted paths through
relationships are wrapped in ``has()`` (many-to-one) or ``any()``
(collections), so ``u.address.city == "Oslo"`` compiles to::

    EXISTS (SELECT 1 FROM address WHERE address.id = user.address_id AND address.city = 'Oslo')

Null handling mirrors in-memory evaluation, where a missing value is never
unknown:

- ``!=``, ``not_in`` and ``not_contains`` also match rows whose column is
  NULL;
- comparisons that hold for a missing value also match rows whose
  many-to-one relationship along the path is absent;
- ``~`` negates ``COALESCE(condition, false)``, so ``~(u.age > 18)`` keeps
  rows whose ``age`` is NULL.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import singledispatch
from typing import Any

from sqlalchemy import ColumnElement, and_, false, func, inspect, not_, or_, true

from specfly.data.expressions import (
    BinaryBoolOp,
    BoolOperator,
    Comparison,
    ComparisonOperator,
    FieldAccess,
    Lambda,
    Literal,
    Node,
    Not,
    Variable,
)
from specfly.kernel.exceptions import InvalidSelectorException


@dataclass(frozen=True)
class Hop:
    """One relationship traversed along a path."""

    name: str
    attribute: Any
    target: type
    uselist: bool


@dataclass(frozen=True)
class ResolvedPath:
    """Relationships traversed plus the terminal column (``None`` if the path ends on a relationship)."""

    hops: tuple[Hop, ...]
    attribute: Any | None


def resolve_path(model: type, path: tuple[str, ...]) -> ResolvedPath:
    """Resolve an attribute path against mapped classes.

    Raises:
        InvalidSelectorException: If a segment is neither a relationship
            nor a mapped attribute, or a column is followed by more segments.
    """
    current = model
    hops: list[Hop] = []
    for index, name in enumerate(path):
        mapper = inspect(current).mapper
        if name in mapper.relationships:
            prop = mapper.relationships[name]
            hop = Hop(name, getattr(current, name), prop.mapper.class_, bool(prop.uselist))
            hops.append(hop)
            current = hop.target
            continue
        if index == len(path) - 1 and name in mapper.all_orm_descriptors and not name.startswith("_"):
            return ResolvedPath(tuple(hops), getattr(current, name))
        dotted = ".".join(path)
        raise InvalidSelectorException(
            f"'{current.__name__}' has no mapped member '{name}' (selector '{dotted}')",
            code="SELECTOR_INVALID",
            context={"entity": model.__name__, "selector": dotted},
        )
    return ResolvedPath(tuple(hops), None)


class PredicateCompiler:
    """Compile :class:`Lambda` predicates over one mapped class.

    Usage::

        compiler = PredicateCompiler(User)
        stmt = select(User).where(compiler.compile(criteria.filter))
    """

    def __init__(self, model: type) -> None:
        self._model = model

    @property
    def model(self) -> type:
        return self._model

    def compile(self, condition: Lambda[Any]) -> ColumnElement[bool]:
        return _compile(condition.body, _Scope(self._model, condition.parameter))


@dataclass(frozen=True)
class _Scope:
    model: type
    parameter: Variable

    def resolve(self, node: FieldAccess) -> ResolvedPath:
        if node.source is not self.parameter:
            raise InvalidSelectorException(
                f"Field '{node.dotted}' refers to a variable outside the predicate",
                code="SELECTOR_UNBOUND",
            )
        return resolve_path(self.model, node.path)


def _unsupported(message: str) -> InvalidSelectorException:
    return InvalidSelectorException(message, code="PREDICATE_UNSUPPORTED")


def _wrap(hops: tuple[Hop, ...], clause: ColumnElement[bool], missing_matches: bool = False) -> ColumnElement[bool]:
    for hop in reversed(hops):
        if hop.uselist:
            clause = hop.attribute.any(clause)
            missing_matches = False
        elif missing_matches:
            clause = or_(hop.attribute.has(clause), ~hop.attribute.has())
        else:
            clause = hop.attribute.has(clause)
    return clause


def _presence(resolved: ResolvedPath, present: bool) -> ColumnElement[bool]:
    *outer, last = resolved.hops
    exists = last.attribute.any() if last.uselist else last.attribute.has()
    return _wrap(tuple(outer), exists if present else ~exists)


@singledispatch
def _compile(node: Node, scope: _Scope) -> ColumnElement[bool]:
    raise _unsupported(f"Cannot compile {type(node).__name__} to SQL")


@_compile.register
def _(node: Literal, scope: _Scope) -> ColumnElement[bool]:
    return true() if node.value else false()


@_compile.register
def _(node: FieldAccess, scope: _Scope) -> ColumnElement[bool]:
    resolved = scope.resolve(node)
    if resolved.attribute is None:
        return _presence(resolved, True)
    return _wrap(resolved.hops, resolved.attribute.is_(True))


@_compile.register
def _(node: Not, scope: _Scope) -> ColumnElement[bool]:
    return not_(func.coalesce(_compile(node.operand, scope), false()))


@_compile.register
def _(node: BinaryBoolOp, scope: _Scope) -> ColumnElement[bool]:
    left = _compile(node.left, scope)
    right = _compile(node.right, scope)
    return and_(left, right) if node.op is BoolOperator.AND else or_(left, right)


_MIRRORED = {
    ComparisonOperator.EQ: ComparisonOperator.EQ,
    ComparisonOperator.NE: ComparisonOperator.NE,
    ComparisonOperator.LT: ComparisonOperator.GT,
    ComparisonOperator.LE: ComparisonOperator.GE,
    ComparisonOperator.GT: ComparisonOperator.LT,
    ComparisonOperator.GE: ComparisonOperator.LE,
}


@_compile.register
def _(node: Comparison, scope: _Scope) -> ColumnElement[bool]:
    left, right, op = node.left, node.right, node.op
    if isinstance(left, Literal) and isinstance(right, FieldAccess):
        if op not in _MIRRORED:
            raise _unsupported(f"'{op.value}' needs the field on the left-hand side")
        left, right, op = right, left, _MIRRORED[op]
    if not isinstance(left, FieldAccess):
        raise _unsupported(f"'{op.value}' comparison must involve a field of the row")

    resolved = scope.resolve(left)
    if resolved.attribute is None:
        if op is ComparisonOperator.IS_NULL:
            return _presence(resolved, False)
        if op is ComparisonOperator.IS_NOT_NULL:
            return _presence(resolved, True)
        raise _unsupported(f"Relationship '{left.dotted}' only supports is_(None) / is_not(None)")

    value = _operand(right, scope)
    clause = _SQL_OPERATORS[op](resolved.attribute, value)
    return _wrap(resolved.hops, clause, _matches_missing(op, value))


def _matches_missing(op: ComparisonOperator, value: Any) -> bool:
    if op is ComparisonOperator.EQ:
        return value is None
    if op is ComparisonOperator.NE:
        return value is not None
    return op in (ComparisonOperator.NOT_IN, ComparisonOperator.NOT_CONTAINS, ComparisonOperator.IS_NULL)


def _operand(node: Node | None, scope: _Scope) -> Any:
    if node is None:
        return None
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, FieldAccess):
        resolved = scope.resolve(node)
        if resolved.hops or resolved.attribute is None:
            raise _unsupported(f"Right-hand field '{node.dotted}' must be a column of the row itself")
        return resolved.attribute
    raise _unsupported(f"Cannot use {type(node).__name__} as a comparison operand")


def _like(method: str) -> Callable[[Any, Any], ColumnElement[bool]]:
    def apply(column: Any, value: Any) -> ColumnElement[bool]:
        return getattr(column, method)(value, autoescape=isinstance(value, str))

    return apply


def _null_tolerant(clause: Callable[[Any, Any], ColumnElement[bool]]) -> Callable[[Any, Any], ColumnElement[bool]]:
    def apply(column: Any, value: Any) -> ColumnElement[bool]:
        return or_(clause(column, value), column.is_(None))

    return apply


_SQL_OPERATORS: dict[ComparisonOperator, Callable[[Any, Any], ColumnElement[bool]]] = {
    ComparisonOperator.EQ: lambda c, v: c.is_(None) if v is None else c == v,
    ComparisonOperator.NE: lambda c, v: c.is_not(None) if v is None else or_(c != v, c.is_(None)),
    ComparisonOperator.LT: lambda c, v: c < v,
    ComparisonOperator.LE: lambda c, v: c <= v,
    ComparisonOperator.GT: lambda c, v: c > v,
    ComparisonOperator.GE: lambda c, v: c >= v,
    ComparisonOperator.IN: lambda c, v: c.in_(list(v)),
    ComparisonOperator.NOT_IN: _null_tolerant(lambda c, v: c.not_in(list(v))),
    ComparisonOperator.CONTAINS: _like("contains"),
    ComparisonOperator.NOT_CONTAINS: _null_tolerant(lambda c, v: not_(_like("contains")(c, v))),
    ComparisonOperator.STARTSWITH: _like("startswith"),
    ComparisonOperator.ENDSWITH: _like("endswith"),
    ComparisonOperator.IS_NULL: lambda c, _v: c.is_(None),
    ComparisonOperator.IS_NOT_NULL: lambda c, _v: c.is_not(None),
}
