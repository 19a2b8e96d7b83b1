from kubemeter_core.metering.types import (
    EntityIdentity,
    NodeGpuInfo,
    UsageSample,
)
from kubemeter_core.metering.properties import PropertyDefinition, PropertyTable

__all__ = [
    "EntityIdentity",
    "NodeGpuInfo",
    "PropertyDefinition",
    "PropertyTable",
    "UsageSample",
]
