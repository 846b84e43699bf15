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
"""Unified exception hierarchy for specfly.

All library exceptions inherit from SpecflyException, enabling unified
error handling across modules.

Categories:
- ConfigurationException: Caller wiring errors detected before any query runs
- BusinessException: Invalid query intents and missing results
- InfrastructureException: Execution engine failures
"""

from __future__ import annotations


# =============================================================================
# Base Exception
# =============================================================================


class SpecflyException(Exception):
    """Base exception for all specfly errors.

    Carries an optional error code and context dict for structured error data.
    Catch SpecflyException to handle all library errors, or catch specific
    subclasses for targeted handling.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (e.g. "SELECTOR_INVALID").
        context: Arbitrary key-value pairs for error context and debugging.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict = context if context is not None else {}


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigurationException(SpecflyException):
    """The caller wired the library inconsistently."""


class MapperNotRegisteredException(ConfigurationException):
    """No row-shape mapping exists for the requested projection."""


class CriteriaTypeMismatchException(ConfigurationException):
    """Two criteria or predicates over different entity shapes were combined."""


# =============================================================================
# Business Exceptions
# =============================================================================


class BusinessException(SpecflyException):
    """Query intent violations and result expectations."""


class InvalidSelectorException(BusinessException):
    """A filter, include or order selector cannot be resolved against the entity."""


class ResourceNotFoundException(BusinessException):
    """A query that requires at least one row matched nothing."""


# =============================================================================
# Cancellation
# =============================================================================


class OperationCancelledException(SpecflyException):
    """The caller cancelled an in-flight materialization."""


# =============================================================================
# Infrastructure Exceptions
# =============================================================================


class InfrastructureException(SpecflyException):
    """Infrastructure failures: database, driver, network."""


class ExecutionEngineException(InfrastructureException):
    """The underlying execution engine failed; the failure is surfaced, not retried."""
