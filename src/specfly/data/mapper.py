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
"""Row-shape mapper: explicit, per-repository registry of projections.

Every source → destination pair must be registered before it can be used.
Field-name matching does the bulk of the work; registrations can rename
fields, transform values, exclude fields, compute fields from the whole
source row, or supply a hand-written transform.

Example::

    mapper = Mapper()
    mapper.add_mapping(User, UserDTO, field_map={"username": "name"})
    mapper.register_projection(User, UserSummary, transforms={
        "full_name": lambda u: f"{u.first_name} {u.last_name}",
    })
    mapper.register(User, UserCard, lambda u: UserCard(u.id, u.first_name))

    dto = mapper.map(user, UserDTO)
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar, get_type_hints

from specfly.kernel.exceptions import MapperNotRegisteredException

S = TypeVar("S")
D = TypeVar("D")


@dataclasses.dataclass
class MappingConfig:
    """Configuration for a field-matching mapping.

    Attributes:
        field_map: Maps source field names to destination field names.
        transformers: Functions to transform values, keyed by dest field name.
        exclude: Destination fields to exclude from mapping.
    """

    field_map: dict[str, str] = dataclasses.field(default_factory=dict)
    transformers: dict[str, Callable[[Any], Any]] = dataclasses.field(default_factory=dict)
    exclude: set[str] = dataclasses.field(default_factory=set)


class Mapper:
    """Registry of transforms from entity rows to other shapes.

    A mapper is owned by whoever constructs it (typically one
    ``CriteriaRepository``); there is no process-wide registry.
    """

    def __init__(self) -> None:
        self._transforms: dict[tuple[type, type], Callable[[Any], Any]] = {}

    def add_mapping(
        self,
        source_type: type[S],
        dest_type: type[D],
        *,
        field_map: dict[str, str] | None = None,
        transformers: dict[str, Callable[[Any], Any]] | None = None,
        exclude: set[str] | None = None,
    ) -> None:
        """Register a field-matching mapping between source and destination types.

        Field matching strategy:

        1. Check ``field_map`` for an explicit source -> dest rename.
        2. Match by identical field name.
        3. Apply transformers if registered.
        4. Skip fields in the exclude set.
        """
        config = MappingConfig(
            field_map=field_map or {},
            transformers=transformers or {},
            exclude=exclude or set(),
        )
        self._transforms[(source_type, dest_type)] = lambda source: self._map_fields(source, dest_type, config)

    def register_projection(
        self,
        source_type: type[S],
        projection_type: type[D],
        *,
        transforms: dict[str, Callable[[Any], Any]] | None = None,
    ) -> None:
        """Register a projection with optional computed-field transforms.

        Transforms are keyed by destination field name and receive the
        *entire source object*.  Fields without a transform are copied by
        name.
        """
        computed = transforms or {}
        self._transforms[(source_type, projection_type)] = lambda source: self._project(
            source, projection_type, computed
        )

    def register(self, source_type: type[S], dest_type: type[D], transform: Callable[[S], D]) -> None:
        """Register a hand-written transform."""
        self._transforms[(source_type, dest_type)] = transform

    def has_mapping(self, source_type: type, dest_type: type) -> bool:
        return self._lookup(source_type, dest_type) is not None

    def projector(self, source_type: type[S], dest_type: type[D]) -> Callable[[S], D]:
        """Return the transform for *source_type* → *dest_type*.

        Registrations for a base class also serve its subclasses.

        Raises:
            MapperNotRegisteredException: If nothing is registered for the pair.
        """
        transform = self._lookup(source_type, dest_type)
        if transform is None:
            raise MapperNotRegisteredException(
                f"No mapping registered from '{source_type.__name__}' to '{dest_type.__name__}'",
                code="MAPPER_NOT_REGISTERED",
                context={"source": source_type.__name__, "destination": dest_type.__name__},
            )
        return transform

    def map(self, source: S, dest_type: type[D]) -> D:
        """Map one source object to *dest_type*."""
        return self.projector(type(source), dest_type)(source)

    def map_list(self, sources: Iterable[S], dest_type: type[D]) -> list[D]:
        """Map a sequence of source objects to *dest_type*."""
        return [self.map(s, dest_type) for s in sources]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lookup(self, source_type: type, dest_type: type) -> Callable[[Any], Any] | None:
        for candidate in source_type.__mro__:
            transform = self._transforms.get((candidate, dest_type))
            if transform is not None:
                return transform
        return None

    def _map_fields(self, source: Any, dest_type: type[D], config: MappingConfig) -> D:
        source_data = self._extract_fields(source)
        kwargs: dict[str, object] = {}
        for dest_field in self._get_field_names(dest_type):
            if dest_field in config.exclude:
                continue
            source_field = self._resolve_source_field(dest_field, config.field_map)
            if source_field in source_data:
                value = source_data[source_field]
                if dest_field in config.transformers:
                    value = config.transformers[dest_field](value)
                kwargs[dest_field] = value
        return dest_type(**kwargs)

    def _project(self, source: Any, projection_type: type[D], transforms: dict[str, Callable[[Any], Any]]) -> D:
        source_data = self._extract_fields(source)
        kwargs: dict[str, object] = {}
        for name in self._get_field_names(projection_type):
            if name in transforms:
                kwargs[name] = transforms[name](source)
            elif name in source_data:
                kwargs[name] = source_data[name]
        return projection_type(**kwargs)

    @staticmethod
    def _resolve_source_field(dest_field: str, field_map: dict[str, str]) -> str:
        """Reverse lookup in ``{source_name: dest_name}``; defaults to the same name."""
        for src, dst in field_map.items():
            if dst == dest_field:
                return src
        return dest_field

    @staticmethod
    def _get_field_names(cls: type) -> list[str]:
        """Get field names from a type (dataclasses, Pydantic models or annotated classes)."""
        if dataclasses.is_dataclass(cls):
            return [f.name for f in dataclasses.fields(cls)]
        model_fields = getattr(cls, "model_fields", None)
        if isinstance(model_fields, dict):
            return list(model_fields)
        return list(get_type_hints(cls).keys())

    @staticmethod
    def _extract_fields(obj: object) -> dict[str, object]:
        """Extract field values from an object without deep-copying nested rows."""
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        if isinstance(obj, Mapping):
            return dict(obj)
        mapper = getattr(type(obj), "__mapper__", None)
        if mapper is not None:
            return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
