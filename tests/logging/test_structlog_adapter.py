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
"""Tests for StructlogAdapter and the specfly logger hierarchy."""

import io
import json
import logging
from dataclasses import dataclass

import pytest
import structlog

from specfly.core.config import Config
from specfly.data.adapters.memory import InMemoryExecutionEngine
from specfly.data.criteria import Criteria
from specfly.data.repository import CriteriaRepository
from specfly.logging import DATA_LOGGERS, LoggingProperties, StructlogAdapter, configure_logging


@dataclass
class Item:
    name: str


@pytest.fixture(autouse=True)
def _restore_logging():
    library = logging.getLogger("specfly")
    saved = (library.level, library.propagate, list(library.handlers))
    data_levels = {name: logging.getLogger(name).level for name in DATA_LOGGERS}
    yield
    structlog.reset_defaults()
    library.setLevel(saved[0])
    library.propagate = saved[1]
    library.handlers[:] = saved[2]
    for name, level in data_levels.items():
        logging.getLogger(name).setLevel(level)


def logging_config(**section) -> Config:
    return Config({"specfly": {"logging": section}})


def events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigure:
    def test_defaults(self):
        adapter = configure_logging(Config({}))
        assert (adapter.level, adapter.format, adapter.logger_levels) == ("INFO", "console", {})

    def test_library_defaults(self):
        assert Config.defaults().bind(LoggingProperties) == LoggingProperties(level={"root": "INFO"})
        assert configure_logging(Config.defaults()).level == "INFO"

    def test_root_level_applies_to_library_logger(self):
        configure_logging(logging_config(level={"root": "warning"}))
        assert logging.getLogger("specfly").level == logging.WARNING

    def test_per_logger_levels(self):
        adapter = configure_logging(logging_config(level={"root": "WARNING", "specfly.data.repository": "debug"}))
        assert adapter.logger_levels == {"specfly.data.repository": "DEBUG"}
        levels = adapter.effective_levels()
        assert levels["specfly.data.repository"] == "DEBUG"
        assert levels["specfly.data.applier"] == "WARNING"

    def test_logger_outside_hierarchy_rejected(self):
        with pytest.raises(ValueError, match="outside"):
            configure_logging(logging_config(level={"sqlalchemy.engine": "INFO"}))

    def test_unknown_format_rejected(self):
        with pytest.raises(ValueError, match="log format"):
            configure_logging(logging_config(format="xml"))

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError, match="log level"):
            configure_logging(logging_config(level={"root": "LOUD"}))

    def test_root_logger_untouched(self):
        root_handlers = list(logging.getLogger().handlers)
        configure_logging(Config({}))
        configure_logging(Config({}))
        assert logging.getLogger().handlers == root_handlers
        library = logging.getLogger("specfly")
        assert library.propagate is False
        assert len([h for h in library.handlers if h.get_name() == "specfly-structlog"]) == 1

    def test_set_level(self):
        adapter = configure_logging(Config({}))
        adapter.set_level("specfly.data.combinator", "error")
        assert logging.getLogger("specfly.data.combinator").level == logging.ERROR


class TestRendering:
    @pytest.mark.asyncio
    async def test_repository_events_rendered_as_json(self):
        stream = io.StringIO()
        StructlogAdapter(stream).configure(logging_config(format="json", level={"root": "DEBUG"}))
        await CriteriaRepository(InMemoryExecutionEngine()).count(Criteria(Item))
        materialized = [e for e in events(stream) if e["event"] == "criteria_materialized"]
        assert len(materialized) == 1
        assert materialized[0]["logger"] == "specfly.data.repository"
        assert materialized[0]["level"] == "debug"
        assert materialized[0]["operation"] == "count"

    @pytest.mark.asyncio
    async def test_level_filters_events(self):
        stream = io.StringIO()
        StructlogAdapter(stream).configure(logging_config(format="json", level={"root": "WARNING"}))
        await CriteriaRepository(InMemoryExecutionEngine()).to_paged_list(Criteria(Item), 1, 5000)
        assert [e["event"] for e in events(stream)] == ["page_size_clamped"]


class TestFromConfig:
    def test_opt_in(self):
        config = logging_config(configure=True, level={"root": "ERROR"})
        CriteriaRepository.from_config(InMemoryExecutionEngine(), config)
        assert logging.getLogger("specfly").level == logging.ERROR

    def test_off_by_default(self):
        before = logging.getLogger("specfly").level
        CriteriaRepository.from_config(InMemoryExecutionEngine(), Config.defaults())
        assert logging.getLogger("specfly").level == before

    def test_env_switch(self, monkeypatch):
        monkeypatch.setenv("SPECFLY_LOGGING_CONFIGURE", "true")
        CriteriaRepository.from_config(InMemoryExecutionEngine(), logging_config(level={"root": "CRITICAL"}))
        assert logging.getLogger("specfly").level == logging.CRITICAL
