import json
from decimal import Decimal

import pytest

from kubemeter_core.errors import ConversionError
from kubemeter_core.metering.properties import PropertyDefinition, PropertyTable


@pytest.mark.core
def test_default_table_covers_base_resources():
    table = PropertyTable.default()
    for name in ("cpu", "memory", "storage", "network", "services.nodeports", "gpu"):
        assert name in table
    assert table.require("cpu").unit == Decimal("0.001")
    assert table.require("memory").unit == Decimal(1024 * 1024)


@pytest.mark.core
def test_convert_returns_enum_and_ceiling(properties):
    assert properties.convert("cpu", Decimal("0.5")) == (0, 1)
    assert properties.convert("services.nodeports", Decimal(1000)) == (4, 1000)


@pytest.mark.core
def test_unknown_kind_raises_conversion_error(properties):
    with pytest.raises(ConversionError):
        properties.convert("gpu-A100", Decimal(1))


@pytest.mark.core
def test_duplicate_enum_rejected():
    with pytest.raises(ValueError):
        PropertyTable(
            [
                PropertyDefinition.parse("cpu", 0, "1"),
                PropertyDefinition.parse("memory", 0, "1Mi"),
            ]
        )


@pytest.mark.core
def test_non_positive_unit_rejected():
    with pytest.raises(ValueError):
        PropertyDefinition.parse("cpu", 0, "0")


@pytest.mark.core
def test_from_file_extends_defaults(tmp_path):
    path = tmp_path / "properties.json"
    path.write_text(
        json.dumps(
            [
                {"name": "gpu-NVIDIA-A100", "enum": 9, "unit": "1"},
                {"name": "cpu", "enum": 0, "unit": "1"},
            ]
        ),
        encoding="utf-8",
    )
    table = PropertyTable.from_file(path)
    assert table.require("gpu-NVIDIA-A100").enum_id == 9
    assert table.require("cpu").unit == Decimal(1)
    assert "memory" in table


@pytest.mark.core
def test_from_file_rejects_bad_entries(tmp_path):
    path = tmp_path / "properties.json"
    path.write_text(json.dumps([{"name": "cpu"}]), encoding="utf-8")
    with pytest.raises(ValueError):
        PropertyTable.from_file(path)
