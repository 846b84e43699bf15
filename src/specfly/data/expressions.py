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
"""Predicate expression trees.

Predicates are explicit, immutable node trees rather than opaque callables,
so they can be inspected, rewritten (bound-variable substitution) and
compiled by execution engines.

Node types:
    - :class:`Variable` — a bound variable over an entity type.
    - :class:`Literal` — a constant value.
    - :class:`FieldAccess` — an attribute path read from a variable.
    - :class:`Comparison` — a comparison between two operands.
    - :class:`BinaryBoolOp` — ``AND`` / ``OR`` of two boolean operands.
    - :class:`Not` — boolean negation.
    - :class:`Lambda` — a body bound to one parameter variable.

Trees are normally built by calling a plain Python function with a row
proxy, the way SQLAlchemy column expressions are built::

    adults = predicate(User, lambda u: (u.age >= 18) & u.email.is_not(None))
    adults.evaluate(User(age=30, email="a@b.c"))   # True

Rewrites and evaluation are ``functools.singledispatch`` visitors over
the node classes.
"""

from __future__ import annotations

import enum
import itertools
from collections.abc import Callable, Collection, Iterator, Mapping
from dataclasses import dataclass, field
from functools import singledispatch
from typing import Any, Generic, TypeVar

from specfly.kernel.exceptions import InvalidSelectorException

T = TypeVar("T")

_variable_ids = itertools.count(1)


class ComparisonOperator(str, enum.Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTSWITH = "startswith"
    ENDSWITH = "endswith"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class BoolOperator(str, enum.Enum):
    AND = "and"
    OR = "or"


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class Node:
    """Base class for every expression node."""

    __slots__ = ()

    def __bool__(self) -> bool:
        raise TypeError(
            "Expression nodes have no truth value; combine predicates with '&', '|' and '~' "
            "instead of 'and', 'or' and 'not'"
        )


class BooleanNode(Node):
    """A node that can be combined with ``&``, ``|`` and ``~``."""

    __slots__ = ()

    def __and__(self, other: Any) -> BinaryBoolOp:
        return BinaryBoolOp(BoolOperator.AND, self, _as_node(other))

    def __rand__(self, other: Any) -> BinaryBoolOp:
        return BinaryBoolOp(BoolOperator.AND, _as_node(other), self)

    def __or__(self, other: Any) -> BinaryBoolOp:
        return BinaryBoolOp(BoolOperator.OR, self, _as_node(other))

    def __ror__(self, other: Any) -> BinaryBoolOp:
        return BinaryBoolOp(BoolOperator.OR, _as_node(other), self)

    def __invert__(self) -> Not:
        return Not(self)


@dataclass(frozen=True, eq=False)
class Variable(Node):
    """A bound variable ranging over instances of *entity_type*.

    Variables compare by identity: two variables with the same name are
    still distinct bindings.
    """

    entity_type: type
    name: str = field(default_factory=lambda: f"x{next(_variable_ids)}")

    def __repr__(self) -> str:
        return f"Variable({self.entity_type.__name__}, {self.name!r})"


@dataclass(frozen=True, eq=False)
class Literal(BooleanNode):
    value: Any

    def __repr__(self) -> str:
        return f"Literal({self.value!r})"


@dataclass(frozen=True, eq=False)
class FieldAccess(BooleanNode):
    """Attribute path read from a variable, e.g. ``x.address.city``.

    Comparison operators on a field build :class:`Comparison` nodes.
    Unknown attribute names extend the path; use ``field["name"]`` for
    names that clash with the methods below.
    """

    source: Variable
    path: tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.path)

    def __getattr__(self, name: str) -> FieldAccess:
        if name.startswith("_"):
            raise AttributeError(name)
        return FieldAccess(self.source, (*self.path, name))

    def __getitem__(self, name: str) -> FieldAccess:
        return FieldAccess(self.source, (*self.path, *name.split(".")))

    def __eq__(self, other: Any) -> Comparison:  # type: ignore[override]
        return Comparison(ComparisonOperator.EQ, self, _as_node(other))

    def __ne__(self, other: Any) -> Comparison:  # type: ignore[override]
        return Comparison(ComparisonOperator.NE, self, _as_node(other))

    def __lt__(self, other: Any) -> Comparison:
        return Comparison(ComparisonOperator.LT, self, _as_node(other))

    def __le__(self, other: Any) -> Comparison:
        return Comparison(ComparisonOperator.LE, self, _as_node(other))

    def __gt__(self, other: Any) -> Comparison:
        return Comparison(ComparisonOperator.GT, self, _as_node(other))

    def __ge__(self, other: Any) -> Comparison:
        return Comparison(ComparisonOperator.GE, self, _as_node(other))

    __hash__ = object.__hash__

    def in_(self, values: Collection[Any]) -> Comparison:
        return Comparison(ComparisonOperator.IN, self, Literal(tuple(values)))

    def not_in(self, values: Collection[Any]) -> Comparison:
        return Comparison(ComparisonOperator.NOT_IN, self, Literal(tuple(values)))

    def contains(self, value: Any) -> Comparison:
        return Comparison(ComparisonOperator.CONTAINS, self, _as_node(value))

    def not_contains(self, value: Any) -> Comparison:
        return Comparison(ComparisonOperator.NOT_CONTAINS, self, _as_node(value))

    def startswith(self, prefix: str) -> Comparison:
        return Comparison(ComparisonOperator.STARTSWITH, self, _as_node(prefix))

    def endswith(self, suffix: str) -> Comparison:
        return Comparison(ComparisonOperator.ENDSWITH, self, _as_node(suffix))

    def is_(self, value: None) -> Comparison:
        if value is not None:
            raise TypeError("is_() only accepts None; use == for values")
        return Comparison(ComparisonOperator.IS_NULL, self, None)

    def is_not(self, value: None) -> Comparison:
        if value is not None:
            raise TypeError("is_not() only accepts None; use != for values")
        return Comparison(ComparisonOperator.IS_NOT_NULL, self, None)

    def between(self, low: Any, high: Any) -> BinaryBoolOp:
        """Inclusive range check."""
        return (self >= low) & (self <= high)

    def __repr__(self) -> str:
        return f"{self.source.name}.{self.dotted}"


@dataclass(frozen=True, eq=False)
class Comparison(BooleanNode):
    op: ComparisonOperator
    left: Node
    right: Node | None

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op.value} {self.right!r})"


@dataclass(frozen=True, eq=False)
class BinaryBoolOp(BooleanNode):
    op: BoolOperator
    left: Node
    right: Node

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op.value} {self.right!r})"


@dataclass(frozen=True, eq=False)
class Not(BooleanNode):
    operand: Node

    def __repr__(self) -> str:
        return f"(not {self.operand!r})"


@dataclass(frozen=True, eq=False)
class Lambda(Node, Generic[T]):
    """A boolean body bound to a single parameter variable."""

    parameter: Variable
    body: Node

    @property
    def entity_type(self) -> type:
        return self.parameter.entity_type

    def evaluate(self, entity: T) -> bool:
        """Evaluate the predicate against one in-memory object."""
        return bool(evaluate(self.body, {self.parameter: entity}))

    def __call__(self, entity: T) -> bool:
        return self.evaluate(entity)

    def __repr__(self) -> str:
        return f"lambda {self.parameter.name}: {self.body!r}"


def _as_node(value: Any) -> Node:
    if isinstance(value, Node):
        return value
    if isinstance(value, RowProxy):
        raise TypeError("A row itself cannot be used as an operand; select one of its fields")
    return Literal(value)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class RowProxy:
    """Stand-in for an entity row; attribute access yields :class:`FieldAccess` nodes."""

    __slots__ = ("_specfly_variable",)

    def __init__(self, variable: Variable) -> None:
        object.__setattr__(self, "_specfly_variable", variable)

    def __getattr__(self, name: str) -> FieldAccess:
        if name.startswith("_"):
            raise AttributeError(name)
        return FieldAccess(self._specfly_variable, (name,))

    def __getitem__(self, name: str) -> FieldAccess:
        return FieldAccess(self._specfly_variable, tuple(name.split(".")))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("RowProxy is read-only")


def predicate(entity_type: type[T], builder: Callable[[Any], Any], *, name: str | None = None) -> Lambda[T]:
    """Build a :class:`Lambda` by calling *builder* with a row proxy.

    Raises:
        TypeError: If *builder* returns something other than an expression
            node (e.g. a plain ``bool`` because ``and``/``or`` were used).
    """
    parameter = Variable(entity_type, name) if name else Variable(entity_type)
    body = builder(RowProxy(parameter))
    if not isinstance(body, BooleanNode):
        raise TypeError(
            f"Predicate builder must return an expression node, got {type(body).__name__}; "
            "use '&', '|' and '~' to combine conditions"
        )
    return Lambda(parameter, body)


def selector(entity_type: type, target: str | FieldAccess | Callable[[Any], Any]) -> FieldAccess:
    """Resolve *target* into a :class:`FieldAccess` over *entity_type*.

    Accepts a dotted attribute path, an existing field node, or a function
    of a row proxy such as ``lambda u: u.address``.
    """
    if isinstance(target, FieldAccess):
        return target
    if isinstance(target, str):
        path = tuple(normalize_property_name(part) for part in target.split(".") if part.strip())
        if not path:
            raise InvalidSelectorException("Selector path must not be empty", code="SELECTOR_EMPTY")
        return FieldAccess(Variable(entity_type), path)
    result = target(RowProxy(Variable(entity_type)))
    if not isinstance(result, FieldAccess):
        raise TypeError(f"Selector must return a field of the row, got {type(result).__name__}")
    return result


def normalize_property_name(name: str) -> str:
    """Convert ``FirstName``, ``first-name`` or ``firstName`` to ``first_name``."""
    name = name.strip()
    chars: list[str] = []
    for index, char in enumerate(name):
        if char in "-_ ":
            if chars and chars[-1] != "_":
                chars.append("_")
            continue
        if char.isupper():
            previous = name[index - 1] if index else ""
            following = name[index + 1] if index + 1 < len(name) else ""
            if chars and chars[-1] != "_" and (previous.islower() or previous.isdigit() or following.islower()):
                chars.append("_")
            chars.append(char.lower())
        else:
            chars.append(char)
    return "".join(chars).strip("_")


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------


@singledispatch
def substitute(node: Node, old: Variable, new: Variable) -> Node:
    """Return *node* with every reference to *old* replaced by *new*.

    Subtrees without a reference to *old* are returned unchanged.
    """
    raise TypeError(f"Unsupported expression node: {type(node).__name__}")


@substitute.register
def _(node: Variable, old: Variable, new: Variable) -> Node:
    return new if node is old else node


@substitute.register
def _(node: Literal, old: Variable, new: Variable) -> Node:
    return node


@substitute.register
def _(node: FieldAccess, old: Variable, new: Variable) -> Node:
    return FieldAccess(new, node.path) if node.source is old else node


@substitute.register
def _(node: Comparison, old: Variable, new: Variable) -> Node:
    left = substitute(node.left, old, new)
    right = substitute(node.right, old, new) if node.right is not None else None
    if left is node.left and right is node.right:
        return node
    return Comparison(node.op, left, right)


@substitute.register
def _(node: BinaryBoolOp, old: Variable, new: Variable) -> Node:
    left = substitute(node.left, old, new)
    right = substitute(node.right, old, new)
    if left is node.left and right is node.right:
        return node
    return BinaryBoolOp(node.op, left, right)


@substitute.register
def _(node: Not, old: Variable, new: Variable) -> Node:
    operand = substitute(node.operand, old, new)
    return node if operand is node.operand else Not(operand)


@substitute.register
def _(node: Lambda, old: Variable, new: Variable) -> Node:
    # An inner binding of the same variable shadows the outer one.
    if node.parameter is old:
        return node
    body = substitute(node.body, old, new)
    return node if body is node.body else Lambda(node.parameter, body)


def walk(node: Node) -> Iterator[Node]:
    """Yield *node* and all of its descendants, depth first."""
    yield node
    if isinstance(node, Comparison):
        yield from walk(node.left)
        if node.right is not None:
            yield from walk(node.right)
    elif isinstance(node, BinaryBoolOp):
        yield from walk(node.left)
        yield from walk(node.right)
    elif isinstance(node, Not):
        yield from walk(node.operand)
    elif isinstance(node, Lambda):
        yield from walk(node.body)
    elif isinstance(node, FieldAccess):
        yield node.source


def free_variables(node: Node) -> list[Variable]:
    """Variables referenced by field accesses in *node*, in first-seen order."""
    seen: list[Variable] = []
    for child in walk(node):
        if isinstance(child, FieldAccess) and all(child.source is not v for v in seen):
            seen.append(child.source)
    return seen


# ---------------------------------------------------------------------------
# In-memory evaluation
# ---------------------------------------------------------------------------


def read_path(entity: Any, path: tuple[str, ...]) -> Any:
    """Read a dotted attribute path from *entity*; ``None`` short-circuits.

    Raises:
        InvalidSelectorException: If an attribute along the path does not exist.
    """
    current = entity
    for index, part in enumerate(path):
        if current is None:
            return None
        if isinstance(current, Mapping):
            if part not in current:
                raise _unknown_member(entity, path, index)
            current = current[part]
            continue
        try:
            current = getattr(current, part)
        except AttributeError as exc:
            raise _unknown_member(entity, path, index) from exc
    return current


def _unknown_member(entity: Any, path: tuple[str, ...], index: int) -> InvalidSelectorException:
    dotted = ".".join(path)
    return InvalidSelectorException(
        f"'{type(entity).__name__}' has no member '{path[index]}' (selector '{dotted}')",
        code="SELECTOR_INVALID",
        context={"entity": type(entity).__name__, "selector": dotted},
    )


@singledispatch
def evaluate(node: Node, bindings: Mapping[Variable, Any]) -> Any:
    """Evaluate *node* with variables bound to objects in *bindings*."""
    raise TypeError(f"Unsupported expression node: {type(node).__name__}")


@evaluate.register
def _(node: Literal, bindings: Mapping[Variable, Any]) -> Any:
    return node.value


@evaluate.register
def _(node: Variable, bindings: Mapping[Variable, Any]) -> Any:
    try:
        return bindings[node]
    except KeyError:
        raise InvalidSelectorException(f"Unbound variable {node!r}", code="SELECTOR_UNBOUND") from None


@evaluate.register
def _(node: FieldAccess, bindings: Mapping[Variable, Any]) -> Any:
    return read_path(evaluate(node.source, bindings), node.path)


@evaluate.register
def _(node: Not, bindings: Mapping[Variable, Any]) -> Any:
    return not evaluate(node.operand, bindings)


@evaluate.register
def _(node: BinaryBoolOp, bindings: Mapping[Variable, Any]) -> Any:
    if node.op is BoolOperator.AND:
        return bool(evaluate(node.left, bindings)) and bool(evaluate(node.right, bindings))
    return bool(evaluate(node.left, bindings)) or bool(evaluate(node.right, bindings))


@evaluate.register
def _(node: Comparison, bindings: Mapping[Variable, Any]) -> Any:
    left = evaluate(node.left, bindings)
    right = evaluate(node.right, bindings) if node.right is not None else None
    return _COMPARATORS[node.op](left, right)


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def apply(left: Any, right: Any) -> bool:
        if left is None or right is None:
            return False
        return compare(left, right)

    return apply


def _contains(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return right in left


def _startswith(left: Any, right: Any) -> bool:
    return isinstance(left, str) and right is not None and left.startswith(right)


def _endswith(left: Any, right: Any) -> bool:
    return isinstance(left, str) and right is not None and left.endswith(right)


_COMPARATORS: dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.EQ: lambda a, b: a == b,
    ComparisonOperator.NE: lambda a, b: a != b,
    ComparisonOperator.LT: _ordered(lambda a, b: a < b),
    ComparisonOperator.LE: _ordered(lambda a, b: a <= b),
    ComparisonOperator.GT: _ordered(lambda a, b: a > b),
    ComparisonOperator.GE: _ordered(lambda a, b: a >= b),
    ComparisonOperator.IN: lambda a, b: a in b,
    ComparisonOperator.NOT_IN: lambda a, b: a not in b,
    ComparisonOperator.CONTAINS: _contains,
    ComparisonOperator.NOT_CONTAINS: lambda a, b: not _contains(a, b),
    ComparisonOperator.STARTSWITH: _startswith,
    ComparisonOperator.ENDSWITH: _endswith,
    ComparisonOperator.IS_NULL: lambda a, _b: a is None,
    ComparisonOperator.IS_NOT_NULL: lambda a, _b: a is not None,
}
