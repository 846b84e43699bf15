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
"""Predicate combinator — merge two independently bound predicates.

Given ``p1 = lambda x: A(x)`` and ``p2 = lambda y: B(y)`` over the same
entity type, :func:`combine` produces ``lambda x: A(x) <op> B(x)`` by
rewriting every reference to ``y`` inside ``B`` into a reference to ``x``.
"""

from __future__ import annotations

from typing import TypeVar

import structlog

from specfly.data.expressions import BinaryBoolOp, BoolOperator, Lambda, substitute
from specfly.kernel.exceptions import CriteriaTypeMismatchException

T = TypeVar("T")

logger = structlog.get_logger("specfly.data.combinator")


def combine(left: Lambda[T] | None, right: Lambda[T] | None, op: BoolOperator) -> Lambda[T] | None:
    """Combine two predicates under ``AND`` / ``OR``.

    If either side is ``None`` the other is returned unchanged, and two
    ``None`` sides yield ``None``.  The result is bound to *left*'s
    parameter; *left*'s body is reused as-is.

    Raises:
        CriteriaTypeMismatchException: If the predicates range over
            unrelated entity types.
    """
    if left is None:
        return right
    if right is None:
        return left

    ensure_compatible(left.entity_type, right.entity_type)

    rewritten = substitute(right.body, right.parameter, left.parameter)
    combined: Lambda[T] = Lambda(left.parameter, BinaryBoolOp(op, left.body, rewritten))
    logger.debug(
        "predicates_combined",
        op=op.value,
        entity=left.entity_type.__name__,
        parameter=left.parameter.name,
        replaced=right.parameter.name,
    )
    return combined


def and_also(left: Lambda[T] | None, right: Lambda[T] | None) -> Lambda[T] | None:
    return combine(left, right, BoolOperator.AND)


def or_else(left: Lambda[T] | None, right: Lambda[T] | None) -> Lambda[T] | None:
    return combine(left, right, BoolOperator.OR)


def ensure_compatible(left: type, right: type) -> None:
    """Fail fast when two entity types cannot share one predicate."""
    if left is right or issubclass(left, right) or issubclass(right, left):
        return
    raise CriteriaTypeMismatchException(
        f"Cannot combine criteria over '{left.__name__}' with criteria over '{right.__name__}'",
        code="CRITERIA_TYPE_MISMATCH",
        context={"left": left.__name__, "right": right.__name__},
    )
