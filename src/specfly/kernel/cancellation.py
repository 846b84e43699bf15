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
"""Cooperative cancellation signal for materializer calls.

A :class:`CancellationToken` is created by the caller and passed to any
``CriteriaRepository`` operation.  Cancelling the token aborts the fetch
that is currently in flight and surfaces :class:`OperationCancelledException`
from the awaiting call.

Example::

    token = CancellationToken()
    task = asyncio.create_task(repo.to_list(criteria, cancellation=token))
    token.cancel()
    await task  # raises OperationCancelledException
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from specfly.kernel.exceptions import OperationCancelledException

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an :class:`asyncio.Event`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelledException` if the token was cancelled."""
        if self._event.is_set():
            raise OperationCancelledException("Operation was cancelled", code="OPERATION_CANCELLED")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        The awaitable runs as its own task and races the cancellation
        event.  When the event wins the fetch task is cancelled and awaited
        before :class:`OperationCancelledException` is raised.  A coroutine
        passed to an already-cancelled token is closed without running.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        fetch = asyncio.ensure_future(awaitable)
        watcher = asyncio.create_task(self._event.wait(), name="specfly-cancellation")
        try:
            done, _pending = await asyncio.wait(
                {fetch, watcher},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            fetch.cancel()
            watcher.cancel()
            await asyncio.wait({fetch, watcher})
            raise

        if fetch in done:
            watcher.cancel()
            await asyncio.wait({watcher})
            return fetch.result()

        fetch.cancel()
        await asyncio.wait({fetch})
        raise OperationCancelledException("Operation was cancelled", code="OPERATION_CANCELLED")


async def guarded(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await *awaitable*, racing it against *token* when one is given."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)
