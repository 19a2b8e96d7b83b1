from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from kubemeter_core.errors import ConversionError
from kubemeter_core.metering.quantity import billed_units, parse_quantity
from kubemeter_core.metering.types import (
    RESOURCE_CPU,
    RESOURCE_GPU,
    RESOURCE_MEMORY,
    RESOURCE_NETWORK,
    RESOURCE_NODE_PORTS,
    RESOURCE_STORAGE,
)


@dataclass(frozen=True)
class PropertyDefinition:
    name: str
    enum_id: int
    unit: Decimal
    unit_string: str = ""

    @classmethod
    def parse(cls, name: str, enum_id: int, unit: str) -> "PropertyDefinition":
        value = parse_quantity(unit)
        if value <= 0:
            raise ValueError(f"Unit for property {name} must be positive: {unit}")
        return cls(name=name, enum_id=int(enum_id), unit=value, unit_string=unit)


DEFAULT_PROPERTIES: tuple[PropertyDefinition, ...] = (
    PropertyDefinition.parse(RESOURCE_CPU, 0, "1m"),
    PropertyDefinition.parse(RESOURCE_MEMORY, 1, "1Mi"),
    PropertyDefinition.parse(RESOURCE_STORAGE, 2, "1Mi"),
    PropertyDefinition.parse(RESOURCE_NETWORK, 3, "1Mi"),
    PropertyDefinition.parse(RESOURCE_NODE_PORTS, 4, "1"),
    PropertyDefinition.parse(RESOURCE_GPU, 5, "1m"),
)


class PropertyTable:
    """Read-only lookup of billing properties keyed by resource kind."""

    def __init__(self, definitions: Iterable[PropertyDefinition]) -> None:
        by_name: dict[str, PropertyDefinition] = {}
        enums: dict[int, str] = {}
        for definition in definitions:
            owner = enums.get(definition.enum_id)
            if owner is not None and owner != definition.name:
                raise ValueError(
                    f"Duplicate property enum {definition.enum_id}: "
                    f"{owner}, {definition.name}"
                )
            enums[definition.enum_id] = definition.name
            by_name[definition.name] = definition
        self._by_name: Mapping[str, PropertyDefinition] = MappingProxyType(by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def get(self, name: str) -> PropertyDefinition | None:
        return self._by_name.get(name)

    def require(self, name: str) -> PropertyDefinition:
        definition = self._by_name.get(name)
        if definition is None:
            raise ConversionError(f"No property definition for resource {name}")
        return definition

    def names(self) -> list[str]:
        return sorted(self._by_name)

    def convert(self, name: str, quantity: Decimal) -> tuple[int, int]:
        """Return ``(enum_id, billed units)`` for a raw quantity of ``name``."""
        definition = self.require(name)
        return definition.enum_id, billed_units(quantity, definition.unit)

    @classmethod
    def default(cls) -> "PropertyTable":
        return cls(DEFAULT_PROPERTIES)

    @classmethod
    def from_file(cls, path: str | Path) -> "PropertyTable":
        """Defaults overlaid with the entries of a JSON list of {name, enum, unit}."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get("properties", [])
        if not isinstance(payload, list):
            raise ValueError(f"Property file {path} must contain a list")
        merged = {definition.name: definition for definition in DEFAULT_PROPERTIES}
        for item in payload:
            try:
                name = str(item["name"])
                definition = PropertyDefinition.parse(
                    name, int(item["enum"]), str(item["unit"])
                )
            except (KeyError, TypeError) as exc:
                raise ValueError(f"Invalid property entry in {path}: {item}") from exc
            merged[name] = definition
        return cls(merged.values())
