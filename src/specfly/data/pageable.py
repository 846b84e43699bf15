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
"""Pagination and sort request types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class Order:
    """A single sort order: property name + direction."""

    property: str
    direction: Literal["asc", "desc"] = "asc"

    @staticmethod
    def asc(property: str) -> Order:
        return Order(property=property, direction="asc")

    @staticmethod
    def desc(property: str) -> Order:
        return Order(property=property, direction="desc")

    @staticmethod
    def parse(expression: str) -> Order:
        """Parse ``"name"``, ``"name,desc"`` or ``"-name"`` into an order."""
        text = expression.strip()
        if text.startswith("-"):
            return Order.desc(text[1:].strip())
        name, _, direction = text.partition(",")
        if direction.strip().lower() == "desc":
            return Order.desc(name.strip())
        return Order.asc(name.strip())


@dataclass(frozen=True)
class Sort:
    """Collection of sort orders, applied in sequence."""

    orders: tuple[Order, ...] = ()

    @staticmethod
    def by(*properties: str) -> Sort:
        """Create ascending sort by properties."""
        return Sort(orders=tuple(Order.asc(p) for p in properties))

    @staticmethod
    def parse(*expressions: str) -> Sort:
        """Create a sort from request-style expressions (see :meth:`Order.parse`)."""
        return Sort(orders=tuple(Order.parse(e) for e in expressions))

    @staticmethod
    def unsorted() -> Sort:
        return Sort()

    def and_then(self, other: Sort) -> Sort:
        """Combine sorts, appending *other*'s orders after this sort's orders."""
        return Sort(orders=self.orders + other.orders)

    def descending(self) -> Sort:
        """Return same sort but all directions flipped to desc."""
        return Sort(orders=tuple(Order.desc(o.property) for o in self.orders))


@dataclass(frozen=True)
class Pageable:
    """Page request: 1-based page number and page size."""

    page: int = 1
    size: int = 20

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        if self.size < 1:
            raise ValueError(f"size must be >= 1, got {self.size}")

    @staticmethod
    def of(page: int, size: int) -> Pageable:
        return Pageable(page=page, size=size)

    @property
    def offset(self) -> int:
        """Number of rows skipped before this page."""
        return (self.page - 1) * self.size

    def next(self) -> Pageable:
        return Pageable(page=self.page + 1, size=self.size)

    def previous(self) -> Pageable:
        """Return Pageable for previous page (min page 1)."""
        return Pageable(page=max(1, self.page - 1), size=self.size)
