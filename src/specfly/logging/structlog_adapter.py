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
"""Structlog wiring for the ``specfly`` logger hierarchy.

The data modules log through ``structlog.get_logger("specfly.data....")``
with snake_case events: ``criteria_materialized`` at DEBUG,
``page_size_clamped`` and ``lazy_sequence_without_ordering`` at WARNING,
``execution_engine_failed`` at ERROR.  :class:`StructlogAdapter` renders
them through the stdlib ``specfly`` logger with a handler of its own, so
the host application's root logger is left untouched.

Configuration::

    specfly:
      logging:
        configure: true        # CriteriaRepository.from_config applies it
        format: json           # console | json
        level:
          root: WARNING        # level of the ``specfly`` logger
          specfly.data.repository: DEBUG
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, TextIO

import structlog

from specfly.core.config import Config, config_properties

LIBRARY_LOGGER = "specfly"

DATA_LOGGERS = (
    "specfly.data.applier",
    "specfly.data.combinator",
    "specfly.data.repository",
    "specfly.data.adapters.memory",
    "specfly.data.adapters.sqlalchemy",
)

_FORMATS = ("console", "json")
_HANDLER_NAME = "specfly-structlog"


@config_properties(prefix="specfly.logging")
@dataclass
class LoggingProperties:
    """Logging settings (specfly.logging.*)."""

    configure: bool = False
    format: str = "console"
    level: dict[str, str] = field(default_factory=dict)


class StructlogAdapter:
    """Configures structlog and the ``specfly`` stdlib logger tree.

    Args:
        stream: Destination for rendered events; ``sys.stderr`` by default.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self.level = "INFO"
        self.format = "console"
        self.logger_levels: dict[str, str] = {}

    def configure(self, config: Config) -> None:
        """Apply the ``specfly.logging`` section.

        Raises:
            ValueError: On an unknown format or level, or a per-logger key
                outside the ``specfly`` hierarchy.
        """
        properties = config.bind(LoggingProperties)
        levels = dict(properties.level)
        self.level = _level_name(levels.pop("root", "INFO"))
        self.logger_levels = {}
        for name, value in levels.items():
            if name != LIBRARY_LOGGER and not name.startswith(LIBRARY_LOGGER + "."):
                raise ValueError(f"Logger '{name}' is outside the '{LIBRARY_LOGGER}' hierarchy")
            self.logger_levels[name] = _level_name(value)
        self.format = properties.format.lower()
        if self.format not in _FORMATS:
            raise ValueError(f"Unknown log format '{properties.format}', expected one of {_FORMATS}")

        self._configure_structlog()
        self._configure_library_logger()

    def get_logger(self, name: str) -> Any:
        return structlog.get_logger(name)

    def set_level(self, name: str, level: str) -> None:
        logging.getLogger(name).setLevel(_level_name(level))

    def effective_levels(self) -> dict[str, str]:
        """Effective level of every data logger."""
        return {name: logging.getLevelName(logging.getLogger(name).getEffectiveLevel()) for name in DATA_LOGGERS}

    def _configure_structlog(self) -> None:
        renderer: structlog.types.Processor
        if self.format == "json":
            renderer = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                renderer,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            # Module-level loggers must keep following later reconfiguration.
            cache_logger_on_first_use=False,
        )

    def _configure_library_logger(self) -> None:
        library = logging.getLogger(LIBRARY_LOGGER)
        for handler in [h for h in library.handlers if h.get_name() == _HANDLER_NAME]:
            library.removeHandler(handler)
        handler = logging.StreamHandler(self._stream or sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter("%(message)s"))
        library.addHandler(handler)
        library.setLevel(self.level)
        library.propagate = False
        for name in DATA_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)
        for name, level in self.logger_levels.items():
            self.set_level(name, level)


def configure_logging(config: Config, stream: TextIO | None = None) -> StructlogAdapter:
    """Build a :class:`StructlogAdapter` and apply *config* to it."""
    adapter = StructlogAdapter(stream)
    adapter.configure(config)
    return adapter


def _level_name(value: Any) -> str:
    name = str(value).upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ValueError(f"Unknown log level '{value}'")
    return name
