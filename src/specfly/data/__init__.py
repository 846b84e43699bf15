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
"""specfly Data — composable query criteria over pluggable execution engines.

Callers describe *what* to read as a :class:`Criteria` (filter, includes,
ordering, global-filter bypass), combine criteria with ``&`` / ``|``, and
hand them to a :class:`CriteriaRepository`, which applies them to a
session of an :class:`ExecutionEnginePort` and materializes the result.

Adapters:
    - **In-memory** (``specfly.data.adapters.memory``) — plain Python objects.
    - **SQLAlchemy** (``specfly.data.adapters.sqlalchemy``) — async ORM sessions.
"""

from specfly.data.applier import CriteriaApplier, apply_criteria
from specfly.data.combinator import and_also, combine, or_else
from specfly.data.criteria import CompositeCriteria, Criteria
from specfly.data.expressions import (
    BoolOperator,
    ComparisonOperator,
    FieldAccess,
    Lambda,
    predicate,
    selector,
)
from specfly.data.filter import FilterOperator, FilterUtils
from specfly.data.mapper import Mapper
from specfly.data.page import Page
from specfly.data.pageable import Order, Pageable, Sort
from specfly.data.ports.outbound import ExecutionEnginePort, QueryablePort
from specfly.data.properties import CriteriaProperties
from specfly.data.repository import CriteriaRepository

__all__ = [
    # Criteria
    "CompositeCriteria",
    "Criteria",
    # Expressions
    "BoolOperator",
    "ComparisonOperator",
    "FieldAccess",
    "Lambda",
    "and_also",
    "combine",
    "or_else",
    "predicate",
    "selector",
    # Dynamic filters
    "FilterOperator",
    "FilterUtils",
    # Application and materialization
    "CriteriaApplier",
    "CriteriaProperties",
    "CriteriaRepository",
    "Mapper",
    "apply_criteria",
    # Paging
    "Order",
    "Page",
    "Pageable",
    "Sort",
    # Ports
    "ExecutionEnginePort",
    "QueryablePort",
]
