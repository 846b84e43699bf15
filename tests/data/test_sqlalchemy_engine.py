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
"""Tests for the SQLAlchemy async execution engine and predicate compiler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

import pytest
from sqlalchemy import ForeignKey, String, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool

from specfly.data.adapters.sqlalchemy import (
    Base,
    PredicateCompiler,
    SoftDeleteMixin,
    SQLAlchemyExecutionEngine,
    resolve_path,
)
from specfly.data.criteria import Criteria
from specfly.data.expressions import Comparison, ComparisonOperator, FieldAccess, Lambda, Literal, Variable, predicate
from specfly.data.filter import FilterOperator
from specfly.data.mapper import Mapper
from specfly.data.ports.outbound import ExecutionEnginePort
from specfly.data.repository import CriteriaRepository
from specfly.kernel.exceptions import ExecutionEngineException, InvalidSelectorException

# ---------------------------------------------------------------------------
# Test entities
# ---------------------------------------------------------------------------


class Address(Base):
    __tablename__ = "crit_addresses"

    id: Mapped[int] = mapped_column(primary_key=True)
    city: Mapped[str] = mapped_column(String(80))


class Customer(SoftDeleteMixin, Base):
    __tablename__ = "crit_customers"

    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(String(50))
    last_name: Mapped[str] = mapped_column(String(50))
    age: Mapped[int | None] = mapped_column(default=None)
    active: Mapped[bool] = mapped_column(default=True)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("crit_addresses.id"), default=None)
    address: Mapped[Address | None] = relationship()
    orders: Mapped[list[PurchaseOrder]] = relationship(back_populates="customer")


class PurchaseOrder(SoftDeleteMixin, Base):
    __tablename__ = "crit_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    total: Mapped[float]
    customer_id: Mapped[int] = mapped_column(ForeignKey("crit_customers.id"))
    customer: Mapped[Customer] = relationship(back_populates="orders")


class DetachedBase(DeclarativeBase):
    pass


class Unmigrated(DetachedBase):
    __tablename__ = "crit_unmigrated"

    id: Mapped[int] = mapped_column(primary_key=True)


@dataclass
class CustomerCard:
    id: int
    label: str


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def engine(db) -> SQLAlchemyExecutionEngine:
    """Seed a known data set and return the execution engine over it."""
    engine = SQLAlchemyExecutionEngine.from_engine(db)
    oslo, bergen = Address(city="Oslo"), Address(city="Bergen")
    john = Customer(id=1, first_name="John", last_name="Smith", age=30, address=oslo)
    jane = Customer(id=2, first_name="Jane", last_name="Smith", age=17, address=bergen)
    bob = Customer(id=3, first_name="Bob", last_name="Doe", age=45)
    ann = Customer(id=4, first_name="Ann", last_name="Lee", active=False)
    ghost = Customer(id=5, first_name="Ghost", last_name="Smith", age=50, deleted_at=datetime(2024, 1, 1, tzinfo=UTC))
    john.orders = [
        PurchaseOrder(total=120.0),
        PurchaseOrder(total=15.0),
        PurchaseOrder(total=999.0, deleted_at=datetime(2024, 2, 1, tzinfo=UTC)),
    ]
    jane.orders = [PurchaseOrder(total=80.0)]
    async with async_sessionmaker(db)() as session:
        session.add_all([john, jane, bob, ann, ghost])
        await session.commit()
    return engine


@pytest.fixture
def repo(engine) -> CriteriaRepository:
    mapper = Mapper()
    mapper.register_projection(
        Customer, CustomerCard, transforms={"label": lambda c: f"{c.first_name} {c.last_name}"}
    )
    return CriteriaRepository(engine, mapper=mapper)


def first_names(rows) -> list[str]:
    return [row.first_name for row in rows]


by_name = Criteria(Customer).add_order_by("last_name").add_order_by("first_name")
smiths = Criteria.where(Customer, lambda x: x.last_name == "Smith")
adults = Criteria.where(Customer, lambda y: y.age >= 18)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


class TestFiltering:
    def test_engine_satisfies_port(self, engine):
        assert isinstance(engine, ExecutionEnginePort)

    @pytest.mark.asyncio
    async def test_soft_deleted_rows_hidden(self, repo):
        assert first_names(await repo.to_list(by_name)) == ["Bob", "Ann", "Jane", "John"]

    @pytest.mark.asyncio
    async def test_bypass_shows_soft_deleted(self, repo):
        assert await repo.count(Criteria(Customer).enable_bypass_global_filters()) == 5

    @pytest.mark.asyncio
    async def test_and_or(self, repo):
        assert first_names(await repo.to_list(smiths & adults)) == ["John"]
        either = (smiths | adults).add_order_by("first_name")
        assert first_names(await repo.to_list(either)) == ["Bob", "Jane", "John"]

    @pytest.mark.asyncio
    async def test_many_to_one_path(self, repo):
        in_oslo = Criteria.where(Customer, lambda c: c.address.city == "Oslo")
        assert first_names(await repo.to_list(in_oslo)) == ["John"]

    @pytest.mark.asyncio
    async def test_collection_path(self, repo):
        big_spenders = Criteria.where(Customer, lambda c: c.orders.total > 100).add_order_by("first_name")
        assert first_names(await repo.to_list(big_spenders)) == ["John"]

    @pytest.mark.asyncio
    async def test_relationship_presence(self, repo):
        homeless = Criteria.where(Customer, lambda c: c.address.is_(None)).add_order_by("first_name")
        assert first_names(await repo.to_list(homeless)) == ["Ann", "Bob"]

    @pytest.mark.asyncio
    async def test_not_equal_includes_nulls(self, repo):
        not_thirty = Criteria.where(Customer, lambda c: c.age != 30).add_order_by("first_name")
        assert first_names(await repo.to_list(not_thirty)) == ["Ann", "Bob", "Jane"]

    @pytest.mark.asyncio
    async def test_string_and_membership_operators(self, repo):
        starts_j = Criteria.where(Customer, lambda c: c.first_name.startswith("J")).add_order_by("first_name")
        assert first_names(await repo.to_list(starts_j)) == ["Jane", "John"]
        listed = Criteria.where(Customer, lambda c: c.first_name.in_(["Bob", "Ann"])).add_order_by("first_name")
        assert first_names(await repo.to_list(listed)) == ["Ann", "Bob"]
        assert await repo.count(Criteria.where(Customer, lambda c: c.last_name.contains("mi"))) == 2

    @pytest.mark.asyncio
    async def test_wildcards_are_escaped(self, repo):
        assert await repo.count(Criteria.where(Customer, lambda c: c.first_name.contains("%"))) == 0

    @pytest.mark.asyncio
    async def test_boolean_field_and_negation(self, repo):
        assert first_names(await repo.to_list(Criteria.where(Customer, lambda c: ~c.active))) == ["Ann"]

    @pytest.mark.asyncio
    async def test_negation_keeps_null_columns(self, repo):
        not_adult = Criteria.where(Customer, lambda c: ~(c.age > 18)).add_order_by("first_name")
        assert first_names(await repo.to_list(not_adult)) == ["Ann", "Jane"]

    @pytest.mark.asyncio
    async def test_not_equal_through_missing_relationship(self, repo):
        outside_oslo = Criteria.where(Customer, lambda c: c.address.city != "Oslo").add_order_by("first_name")
        assert first_names(await repo.to_list(outside_oslo)) == ["Ann", "Bob", "Jane"]
        no_city = Criteria.where(Customer, lambda c: c.address.city.is_(None)).add_order_by("first_name")
        assert first_names(await repo.to_list(no_city)) == ["Ann", "Bob"]

    @pytest.mark.asyncio
    async def test_dynamic_filter(self, repo):
        criteria = Criteria(Customer).with_filter(FilterOperator.between(Customer, "age", 18, 40))
        assert first_names(await repo.to_list(criteria)) == ["John"]

    @pytest.mark.asyncio
    async def test_unknown_member_raises_invalid_selector(self, repo):
        with pytest.raises(InvalidSelectorException) as exc_info:
            await repo.to_list(Criteria.where(Customer, lambda c: c.nickname == "JJ"))
        assert exc_info.value.context == {"entity": "Customer", "selector": "nickname"}


# ---------------------------------------------------------------------------
# Global filters
# ---------------------------------------------------------------------------


class TestGlobalFilters:
    @pytest.mark.asyncio
    async def test_registered_filter_applies(self, engine, repo):
        engine.register_global_filter(Customer, lambda c: c.active == True)  # noqa: E712
        assert first_names(await repo.to_list(by_name)) == ["Bob", "Jane", "John"]

    @pytest.mark.asyncio
    async def test_bypass_skips_registered_and_soft_delete(self, engine, repo):
        engine.register_global_filter(Customer, lambda c: c.active == True)  # noqa: E712
        everyone = by_name.enable_bypass_global_filters()
        assert first_names(await repo.to_list(everyone)) == ["Bob", "Ann", "Ghost", "Jane", "John"]

    @pytest.mark.asyncio
    async def test_soft_delete_can_be_disabled(self, db, engine):
        plain = CriteriaRepository(SQLAlchemyExecutionEngine.from_engine(db, soft_delete=False))
        assert await plain.count(Criteria(Customer)) == 5


# ---------------------------------------------------------------------------
# Includes and ordering
# ---------------------------------------------------------------------------


class TestIncludesAndOrdering:
    @pytest.mark.asyncio
    async def test_include_collection_hides_soft_deleted_children(self, repo):
        john = await repo.first(Criteria.where(Customer, lambda c: c.id == 1).add_include("orders"))
        assert sorted(order.total for order in john.orders) == [15.0, 120.0]

    @pytest.mark.asyncio
    async def test_bypass_loads_soft_deleted_children(self, repo):
        criteria = Criteria.where(Customer, lambda c: c.id == 1).add_include("orders").enable_bypass_global_filters()
        john = await repo.first(criteria)
        assert len(john.orders) == 3

    @pytest.mark.asyncio
    async def test_nested_include(self, repo):
        criteria = Criteria.where(Customer, lambda c: c.id == 2).add_include("orders.customer").add_include("address")
        jane = await repo.first(criteria)
        assert jane.address.city == "Bergen"
        assert jane.orders[0].customer is jane

    @pytest.mark.asyncio
    async def test_include_of_column_rejected(self, repo):
        with pytest.raises(InvalidSelectorException):
            await repo.to_list(Criteria(Customer).add_include("first_name"))

    @pytest.mark.asyncio
    async def test_ascending_block_leads(self, repo):
        criteria = Criteria(Customer).add_order_by_descending("first_name").add_order_by("last_name")
        assert first_names(await repo.to_list(criteria)) == ["Bob", "Ann", "John", "Jane"]

    @pytest.mark.asyncio
    async def test_order_by_related_column(self, repo):
        criteria = Criteria(Customer).add_order_by("address.city").add_order_by("first_name")
        assert first_names(await repo.to_list(criteria)) == ["Ann", "Bob", "Jane", "John"]

    @pytest.mark.asyncio
    async def test_order_by_collection_rejected(self, repo):
        with pytest.raises(InvalidSelectorException):
            await repo.to_list(Criteria(Customer).add_order_by("orders.total"))


# ---------------------------------------------------------------------------
# Materializers
# ---------------------------------------------------------------------------


class TestMaterializers:
    @pytest.mark.asyncio
    async def test_scalars(self, repo):
        assert await repo.exists(smiths) is True
        assert await repo.exists(Criteria.where(Customer, lambda c: c.age > 100)) is False
        assert await repo.count(smiths) == 2

    @pytest.mark.asyncio
    async def test_first_and_default(self, repo):
        assert (await repo.first(by_name)).first_name == "Bob"
        assert await repo.first_or_default(Criteria.where(Customer, lambda c: c.age > 100)) is None

    @pytest.mark.asyncio
    async def test_paged(self, repo):
        page = await repo.to_paged_list(by_name, 2, 2)
        assert first_names(page.items) == ["Jane", "John"]
        assert (page.total, page.total_pages, page.is_last) == (4, 2, True)

    @pytest.mark.asyncio
    async def test_projection(self, repo):
        cards = await repo.to_list(by_name, projection=CustomerCard)
        assert cards[0] == CustomerCard(id=3, label="Bob Doe")

    @pytest.mark.asyncio
    async def test_lazy_sequence(self, repo):
        rows = [row async for row in repo.to_lazy_sequence(by_name, batch_size=3)]
        assert first_names(rows) == ["Bob", "Ann", "Jane", "John"]

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self, db):
        repo = CriteriaRepository(SQLAlchemyExecutionEngine.from_engine(db))
        with pytest.raises(ExecutionEngineException) as exc_info:
            await repo.to_list(Criteria(Unmigrated))
        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


def sql(condition) -> str:
    clause = PredicateCompiler(Customer).compile(condition)
    return str(select(Customer).where(clause).compile(compile_kwargs={"literal_binds": True}))


class TestPredicateCompiler:
    def test_dotted_path_uses_exists(self):
        assert "EXISTS" in sql(predicate(Customer, lambda c: c.address.city == "Oslo"))

    def test_is_null(self):
        assert "age IS NULL" in sql(predicate(Customer, lambda c: c.age.is_(None)))

    def test_negation_coalesces(self):
        assert "coalesce(" in sql(predicate(Customer, lambda c: ~(c.age > 18)))

    def test_literal_on_left_is_mirrored(self):
        parameter = Variable(Customer)
        condition = Lambda(parameter, Comparison(ComparisonOperator.LT, Literal(18), FieldAccess(parameter, ("age",))))
        assert "age > 18" in sql(condition)

    def test_foreign_variable_rejected(self):
        stray = Lambda(Variable(Customer), FieldAccess(Variable(Customer), ("active",)))
        with pytest.raises(InvalidSelectorException):
            sql(stray)

    def test_resolve_path(self):
        resolved = resolve_path(Customer, ("orders", "total"))
        assert [hop.name for hop in resolved.hops] == ["orders"]
        assert resolved.hops[0].uselist is True
        assert resolved.attribute is PurchaseOrder.total

    def test_resolve_unknown(self):
        with pytest.raises(InvalidSelectorException):
            resolve_path(Customer, ("first_name", "upper"))
