"""Schema registry: dotted setting paths and their static/dynamic classification.

A schema is a nested mapping of sections and leaves, usually loaded from YAML::

    system:
      description: "Core application parameters"
      isa: section
      contains:
        email:
          description: "Dummy email address"
          isa: Str
          default: "dummy@mail.com"
          global: 1
        admins:
          description: "Administrators"
          isa: ArrayRef
          default: []

Leaves marked ``global`` are dynamic (runtime-mutable, stored in the chronicle);
every other leaf is static and always reads as its default.
"""

from __future__ import annotations

import copy
import enum
import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from pydantic import ValidationError as PydanticValidationError

from chronoconf.errors import InvalidKeyError, SchemaError
from chronoconf.types import GLOBAL_REVISION_KEY

logger = logging.getLogger(__name__)

RESERVED_NAMES = frozenset(
    {
        "path",
        "parent_path",
        "version",
        "name",
        "definition",
        "data_set",
        "check_for_update",
        "save_dynamic",
        "refresh_interval",
        GLOBAL_REVISION_KEY,
    }
)

SECTION_TYPE = "section"

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Mutability(str, enum.Enum):
    """Classification of a setting path."""

    STATIC = "static"
    DYNAMIC = "dynamic"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AttributeDefinition:
    """Metadata for one leaf setting."""

    path: str
    data_type: str
    default: Any
    mutability: Mutability
    description: str = ""

    @property
    def is_dynamic(self) -> bool:
        return self.mutability is Mutability.DYNAMIC


class _EntryModel(BaseModel):
    """Validated form of one section or leaf entry."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    isa: str
    description: str = ""
    default: Any = None
    is_global: bool = PydanticField(default=False, alias="global")
    contains: Any = None


def _join(parent: str, name: str) -> str:
    return f"{parent}.{name}" if parent else name


def _validate_name(name: Any, parent: str) -> str:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise SchemaError(f"Invalid setting name {name!r}", parent or None)
    if name in RESERVED_NAMES:
        raise SchemaError(
            f"'{name}' is an internally used name and cannot be reused, "
            "please use a different name",
            parent or None,
        )
    return name


class SchemaRegistry:
    """Immutable lookup table from dotted path to AttributeDefinition."""

    def __init__(
        self,
        attributes: list[AttributeDefinition],
        sections: list[str] | None = None,
    ) -> None:
        by_path: dict[str, AttributeDefinition] = {}
        for attr in attributes:
            if attr.path in by_path:
                raise SchemaError("Duplicate setting path", attr.path)
            by_path[attr.path] = attr
        self._attributes: Mapping[str, AttributeDefinition] = MappingProxyType(by_path)
        self._sections: tuple[str, ...] = tuple(sections or ())
        self._dynamic = tuple(p for p, a in by_path.items() if a.is_dynamic)
        self._static = tuple(p for p, a in by_path.items() if not a.is_dynamic)

    # --- Construction ---

    @classmethod
    def from_definitions(cls, definitions: Mapping[str, Any] | None) -> SchemaRegistry:
        """Build a registry from a nested section/leaf mapping."""
        attributes: list[AttributeDefinition] = []
        sections: list[str] = []
        if definitions is None:
            definitions = {}
        if not isinstance(definitions, Mapping):
            raise SchemaError("Schema root must be a mapping of sections and settings")
        cls._collect(definitions, "", attributes, sections)
        registry = cls(attributes, sections)
        logger.debug(
            "Loaded schema with %d dynamic and %d static settings",
            len(registry._dynamic),
            len(registry._static),
        )
        return registry

    @classmethod
    def from_yaml(cls, path: str | Path) -> SchemaRegistry:
        """Load a registry from a YAML definition file."""
        try:
            with open(path, encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except OSError as e:
            raise SchemaError(f"Cannot read schema file '{path}': {e}") from e
        except yaml.YAMLError as e:
            raise SchemaError(f"Cannot parse schema file '{path}': {e}") from e
        return cls.from_definitions(data)

    @classmethod
    def _collect(
        cls,
        definitions: Mapping[str, Any],
        parent: str,
        attributes: list[AttributeDefinition],
        sections: list[str],
    ) -> None:
        for raw_name, raw_entry in definitions.items():
            name = _validate_name(raw_name, parent)
            path = _join(parent, name)
            if not isinstance(raw_entry, Mapping):
                raise SchemaError("Definition must be a mapping", path)
            try:
                entry = _EntryModel.model_validate(dict(raw_entry))
            except PydanticValidationError as e:
                raise SchemaError(f"Malformed definition: {e}", path) from e

            if entry.isa == SECTION_TYPE:
                if not isinstance(entry.contains, Mapping):
                    raise SchemaError("Section 'contains' must be a mapping", path)
                sections.append(path)
                cls._collect(entry.contains, path, attributes, sections)
                continue

            attributes.append(
                AttributeDefinition(
                    path=path,
                    data_type=entry.isa,
                    default=entry.default,
                    mutability=Mutability.DYNAMIC if entry.is_global else Mutability.STATIC,
                    description=entry.description,
                )
            )

    # --- Queries ---

    def classify(self, path: str) -> Mutability:
        attr = self._attributes.get(path)
        if attr is None:
            return Mutability.UNKNOWN
        return attr.mutability

    def definition(self, path: str) -> AttributeDefinition:
        attr = self._attributes.get(path)
        if attr is None:
            raise InvalidKeyError(path)
        return attr

    def default_of(self, path: str) -> Any:
        """Return a copy of the schema default for *path*."""
        return copy.deepcopy(self.definition(path).default)

    def dynamic_paths(self) -> tuple[str, ...]:
        return self._dynamic

    def static_paths(self) -> tuple[str, ...]:
        return self._static

    def paths(self) -> tuple[str, ...]:
        return tuple(self._attributes)

    def sections(self) -> tuple[str, ...]:
        return self._sections

    def __contains__(self, path: object) -> bool:
        return path in self._attributes

    def __iter__(self) -> Iterator[AttributeDefinition]:
        return iter(self._attributes.values())

    def __len__(self) -> int:
        return len(self._attributes)


def load_schema(source: SchemaRegistry | Mapping[str, Any] | str | Path) -> SchemaRegistry:
    """Coerce a registry, definition mapping, or YAML file path into a SchemaRegistry."""
    if isinstance(source, SchemaRegistry):
        return source
    if isinstance(source, Mapping):
        return SchemaRegistry.from_definitions(source)
    return SchemaRegistry.from_yaml(source)
