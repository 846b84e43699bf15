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
"""Criteria subsystem configuration properties."""

from __future__ import annotations

from dataclasses import dataclass

from specfly.core.config import config_properties


@config_properties(prefix="specfly.data")
@dataclass
class CriteriaProperties:
    """Configuration for criteria materialization (specfly.data.*)."""

    lazy_batch_size: int = 100
    default_page_size: int = 20
    max_page_size: int = 1000

    def __post_init__(self) -> None:
        for name in ("lazy_batch_size", "default_page_size", "max_page_size"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
