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
"""Tests for Page — paged window with metadata."""

from __future__ import annotations

from specfly.data.page import Page


class TestPageMetadata:
    def test_first_of_three(self) -> None:
        page = Page(items=[1, 2, 3, 4, 5], total=12, page=1, size=5)
        assert page.total_pages == 3
        assert page.has_next is True
        assert page.has_previous is False
        assert page.is_first is True
        assert page.is_last is False
        assert len(page) == 5

    def test_last_partial_page(self) -> None:
        page = Page(items=[11, 12], total=12, page=3, size=5)
        assert page.has_next is False
        assert page.has_previous is True
        assert page.is_last is True

    def test_zero_rows(self) -> None:
        page: Page[int] = Page(items=[], total=0, page=1, size=10)
        assert page.total_pages == 0
        assert page.is_last is True
        assert page.has_next is False
        assert page.has_previous is False

    def test_past_the_end(self) -> None:
        page: Page[int] = Page(items=[], total=3, page=4, size=5)
        assert page.total_pages == 1
        assert page.is_last is True
        assert page.has_next is False

    def test_exact_multiple(self) -> None:
        assert Page(items=[], total=10, page=1, size=5).total_pages == 2


class TestPageMap:
    def test_map_preserves_metadata(self) -> None:
        page = Page(items=[1, 2], total=7, page=2, size=2)
        mapped = page.map(str)
        assert mapped.items == ["1", "2"]
        assert (mapped.total, mapped.page, mapped.size) == (7, 2, 2)
