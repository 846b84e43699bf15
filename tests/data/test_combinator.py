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
"""Tests for the predicate combinator — merging independently bound predicates."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from specfly.data.combinator import and_also, combine, ensure_compatible, or_else
from specfly.data.expressions import BinaryBoolOp, BoolOperator, free_variables, predicate
from specfly.kernel.exceptions import ConfigurationException, CriteriaTypeMismatchException


@dataclass
class User:
    first_name: str
    last_name: str
    age: int = 0


@dataclass
class Admin(User):
    level: int = 1


@dataclass
class Order:
    total: float


PEOPLE = [
    User("John", "Smith", 30),
    User("Jane", "Smith", 17),
    User("Bob", "Doe", 45),
]


class TestCombine:
    def test_result_is_bound_to_left_parameter(self):
        left = predicate(User, lambda x: x.last_name == "Smith")
        right = predicate(User, lambda y: y.age >= 18)
        combined = and_also(left, right)
        assert combined.parameter is left.parameter
        assert free_variables(combined.body) == [left.parameter]

    def test_left_body_reused(self):
        left = predicate(User, lambda x: x.last_name == "Smith")
        right = predicate(User, lambda y: y.age >= 18)
        combined = combine(left, right, BoolOperator.AND)
        assert isinstance(combined.body, BinaryBoolOp)
        assert combined.body.left is left.body

    def test_inputs_unchanged(self):
        left = predicate(User, lambda x: x.last_name == "Smith")
        right = predicate(User, lambda y: y.age >= 18)
        and_also(left, right)
        assert free_variables(right.body) == [right.parameter]

    @pytest.mark.parametrize("person", PEOPLE, ids=lambda p: p.first_name)
    def test_and_matches_both(self, person):
        left = predicate(User, lambda x: x.last_name == "Smith")
        right = predicate(User, lambda y: y.age >= 18)
        assert and_also(left, right).evaluate(person) == (left(person) and right(person))

    @pytest.mark.parametrize("person", PEOPLE, ids=lambda p: p.first_name)
    def test_or_matches_either(self, person):
        left = predicate(User, lambda x: x.first_name == "Bob")
        right = predicate(User, lambda y: y.age < 18)
        assert or_else(left, right).evaluate(person) == (left(person) or right(person))

    def test_absent_left_returns_right_unchanged(self):
        right = predicate(User, lambda y: y.age >= 18)
        assert combine(None, right, BoolOperator.AND) is right
        assert combine(None, right, BoolOperator.OR) is right

    def test_absent_right_returns_left_unchanged(self):
        left = predicate(User, lambda x: x.age >= 18)
        assert combine(left, None, BoolOperator.OR) is left

    def test_both_absent(self):
        assert combine(None, None, BoolOperator.AND) is None

    def test_associative_evaluation(self):
        a = predicate(User, lambda u: u.last_name == "Smith")
        b = predicate(User, lambda u: u.age >= 18)
        c = predicate(User, lambda u: u.first_name.startswith("J"))
        left_first = and_also(and_also(a, b), c)
        right_first = and_also(a, and_also(b, c))
        for person in PEOPLE:
            assert left_first(person) == right_first(person)

    def test_repeatable(self):
        left = predicate(User, lambda x: x.age > 20)
        right = predicate(User, lambda y: y.age < 40)
        first = and_also(left, right)
        second = and_also(left, right)
        assert [first(p) for p in PEOPLE] == [second(p) for p in PEOPLE]

    def test_subclass_predicates_are_compatible(self):
        base = predicate(User, lambda u: u.age > 20)
        admin = predicate(Admin, lambda a: a.level > 1)
        combined = and_also(base, admin)
        assert combined(Admin("Ann", "Lee", 30, level=2)) is True


class TestTypeMismatch:
    def test_unrelated_types_rejected(self):
        users = predicate(User, lambda u: u.age > 1)
        orders = predicate(Order, lambda o: o.total > 1)
        with pytest.raises(CriteriaTypeMismatchException) as exc_info:
            and_also(users, orders)
        assert exc_info.value.code == "CRITERIA_TYPE_MISMATCH"
        assert exc_info.value.context == {"left": "User", "right": "Order"}

    def test_mismatch_is_configuration_error(self):
        with pytest.raises(ConfigurationException):
            ensure_compatible(User, Order)

    def test_same_type_is_compatible(self):
        ensure_compatible(User, User)
        ensure_compatible(Admin, User)
