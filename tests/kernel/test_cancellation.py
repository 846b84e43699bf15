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
"""Tests for CancellationToken — racing fetches against caller cancellation."""

from __future__ import annotations

import asyncio
import inspect

import pytest

from specfly.kernel.cancellation import CancellationToken, guarded
from specfly.kernel.exceptions import OperationCancelledException


class TestCancellationToken:
    def test_starts_uncancelled(self):
        token = CancellationToken()
        assert token.is_cancelled is False
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.is_cancelled is True

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledException) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.code == "OPERATION_CANCELLED"


class TestGuard:
    @pytest.mark.asyncio
    async def test_returns_result_when_not_cancelled(self):
        token = CancellationToken()

        async def fetch() -> int:
            await asyncio.sleep(0)
            return 42

        assert await token.guard(fetch()) == 42

    @pytest.mark.asyncio
    async def test_already_cancelled_raises_before_running(self):
        token = CancellationToken()
        token.cancel()
        started = False

        async def fetch() -> int:
            nonlocal started
            started = True
            return 1

        coro = fetch()
        with pytest.raises(OperationCancelledException):
            await token.guard(coro)
        assert started is False
        assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED

    @pytest.mark.asyncio
    async def test_guarded_closes_coroutine_of_cancelled_token(self):
        token = CancellationToken()
        token.cancel()

        async def fetch() -> int:
            return 1

        coro = fetch()
        with pytest.raises(OperationCancelledException):
            await guarded(coro, token)
        assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED

    @pytest.mark.asyncio
    async def test_cancel_during_fetch_aborts_it(self):
        token = CancellationToken()
        fetch_cancelled = asyncio.Event()

        async def slow_fetch() -> int:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                fetch_cancelled.set()
                raise
            return 1

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationCancelledException):
            await token.guard(slow_fetch())
        await canceller
        assert fetch_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_fetch_errors_propagate(self):
        token = CancellationToken()

        async def failing() -> int:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await token.guard(failing())


class TestGuarded:
    @pytest.mark.asyncio
    async def test_without_token_awaits_directly(self):
        async def fetch() -> str:
            return "rows"

        assert await guarded(fetch(), None) == "rows"

    @pytest.mark.asyncio
    async def test_with_token_uses_guard(self):
        token = CancellationToken()
        token.cancel()

        async def fetch() -> str:
            return "rows"

        coro = fetch()
        with pytest.raises(OperationCancelledException):
            await guarded(coro, token)
        coro.close()
