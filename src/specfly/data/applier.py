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
"""Criteria applier — translate a :class:`Criteria` into queryable operations.

The translation always runs in the same order:

1. bypass global filters, if requested;
2. restrict by the filter predicate (no filter means no restriction);
3. eager-load every include, in the order they were added;
4. order block-wise.  Every ascending key is applied first, then every
   descending key as a secondary block.  The first key of the leading
   non-empty block is the primary one.  Keys are never interleaved by call
   time.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

import structlog

from specfly.data.criteria import Criteria
from specfly.data.expressions import FieldAccess
from specfly.data.ports.outbound import QueryablePort

T = TypeVar("T")

logger = structlog.get_logger("specfly.data.applier")


class CriteriaApplier:
    """Stateless translator from criteria to queryable operations."""

    def apply(self, query: QueryablePort[T], criteria: Criteria[T]) -> QueryablePort[T]:
        if criteria.bypass_global_filters:
            query = query.ignore_global_filters()

        if criteria.filter is not None:
            query = query.filter(criteria.filter)

        for include in criteria.includes:
            query = query.include(include)

        query = self._apply_ordering(query, criteria)

        logger.debug(
            "criteria_applied",
            entity=criteria.entity_type.__name__,
            bypass_global_filters=criteria.bypass_global_filters,
            filtered=criteria.filter is not None,
            includes=len(criteria.includes),
            order_keys=len(criteria.order_by) + len(criteria.order_by_descending),
        )
        return query

    @staticmethod
    def order_blocks(criteria: Criteria[T]) -> list[tuple[FieldAccess, bool]]:
        """Sort keys as ``(selector, descending)`` pairs, primary key first."""
        ascending = [(key, False) for key in criteria.order_by]
        descending = [(key, True) for key in criteria.order_by_descending]
        return ascending + descending

    def _apply_ordering(self, query: QueryablePort[T], criteria: Criteria[T]) -> QueryablePort[T]:
        keys: Sequence[tuple[FieldAccess, bool]] = self.order_blocks(criteria)
        for index, (key, descending) in enumerate(keys):
            if index == 0:
                query = query.order_by(key, descending=descending)
            else:
                query = query.then_by(key, descending=descending)
        return query


def apply_criteria(query: QueryablePort[T], criteria: Criteria[T]) -> QueryablePort[T]:
    """Module-level shortcut for ``CriteriaApplier().apply(query, criteria)``."""
    return CriteriaApplier().apply(query, criteria)
