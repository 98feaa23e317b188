"""
Tests for settings loading and the module config schemas.
"""

from decimal import Decimal

import pytest
import yaml

from wms_config import DEFAULT_SETTINGS_PATH, load_settings
from wms_config.loader import compute_checksum
from wms_engines.allocation import AllocationMethod
from wms_kernel.exceptions import ConfigurationError
from wms_modules.purchasing.config import PurchasingConfig
from wms_modules.shipments.config import ShipmentConfig


def _write(tmp_path, data, name="settings.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadSettings:

    def test_packaged_defaults(self):
        settings = load_settings()
        assert settings.source == str(DEFAULT_SETTINGS_PATH)
        assert settings.purchasing.default_currency == "USD"
        assert settings.purchasing.editable_statuses == ("draft",)
        assert settings.shipments.volumetric_divisor == Decimal(5000)
        assert settings.shipments.mode_default_methods == {}

    def test_checksum_is_stable(self):
        assert load_settings().checksum == load_settings().checksum
        assert len(load_settings().checksum) == 64

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_overrides(self, tmp_path):
        path = _write(tmp_path, {
            "purchasing": {"default_currency": "EUR", "editable_statuses": ["draft", "pending_approval"]},
            "shipments": {
                "default_currency": "EUR",
                "volumetric_divisor": 6000,
                "mode_default_methods": {"air": "by_chargeable_weight"},
                "cost_type_default_methods": {"duty": "by_value"},
            },
        })
        settings = load_settings(path)
        assert settings.purchasing.editable_statuses == ("draft", "pending_approval")
        assert settings.shipments.volumetric_divisor == Decimal(6000)
        assert settings.shipments.mode_default("air") == AllocationMethod.BY_CHARGEABLE_WEIGHT
        assert settings.shipments.cost_type_default_methods["duty"] == AllocationMethod.BY_VALUE

    def test_missing_section_uses_defaults(self, tmp_path):
        settings = load_settings(_write(tmp_path, {"purchasing": {"allow_over_receipt": False}}))
        assert settings.purchasing.allow_over_receipt is False
        assert settings.shipments.allow_over_ship is True

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path).purchasing.default_currency == "USD"

    def test_different_content_different_checksum(self, tmp_path):
        path = _write(tmp_path, {"shipments": {"allow_over_ship": False}})
        assert load_settings(path).checksum != load_settings().checksum

    def test_load_is_traced(self, tmp_path, captured_logs):
        path = _write(tmp_path, {})
        settings = load_settings(path)
        traces = [r for r in captured_logs() if r["message"] == "WMS_CONFIG_TRACE"]
        assert traces[-1]["checksum"] == settings.checksum


class TestRejectedSettings:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")

    def test_unknown_section(self, tmp_path):
        with pytest.raises(ConfigurationError, match="unknown sections"):
            load_settings(_write(tmp_path, {"receiving": {}}))

    def test_unknown_key(self, tmp_path):
        with pytest.raises(ConfigurationError, match="unknown keys in 'shipments'"):
            load_settings(_write(tmp_path, {"shipments": {"divisor": 5000}}))

    def test_section_not_a_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(_write(tmp_path, {"purchasing": ["draft"]}))

    def test_top_level_not_a_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError, match="top level"):
            load_settings(_write(tmp_path, ["purchasing"]))

    def test_bad_currency(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(_write(tmp_path, {"purchasing": {"default_currency": "XXQ"}}))
        assert exc_info.value.source.endswith("settings.yaml")

    def test_float_divisor(self, tmp_path):
        with pytest.raises(ConfigurationError, match="float"):
            load_settings(_write(tmp_path, {"shipments": {"volumetric_divisor": 5000.5}}))

    def test_unknown_method(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(_write(tmp_path, {"shipments": {"mode_default_methods": {"air": "by_magic"}}}))

    def test_unknown_editable_status(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(_write(tmp_path, {"purchasing": {"editable_statuses": ["archived"]}}))


class TestConfigSchemas:

    def test_shipment_defaults(self):
        config = ShipmentConfig.with_defaults()
        assert config.volumetric_divisor == Decimal(5000)
        assert config.mode_default(None) is None
        assert config.mode_default("ocean") is None

    def test_string_divisor_accepted(self):
        assert ShipmentConfig(volumetric_divisor="6000").volumetric_divisor == Decimal(6000)

    def test_float_divisor_rejected(self):
        with pytest.raises(TypeError):
            ShipmentConfig(volumetric_divisor=5000.0)

    def test_non_positive_divisor_rejected(self):
        with pytest.raises(ValueError):
            ShipmentConfig(volumetric_divisor=0)

    def test_unknown_mode_key_rejected(self):
        with pytest.raises(ValueError, match="mode"):
            ShipmentConfig(mode_default_methods={"boat": "by_volume"})

    def test_unknown_cost_type_key_rejected(self):
        with pytest.raises(ValueError, match="cost type"):
            ShipmentConfig(cost_type_default_methods={"tip": "by_volume"})

    def test_purchasing_from_dict(self):
        config = PurchasingConfig.from_dict({"allow_over_receipt": False})
        assert config.allow_over_receipt is False
        assert config.editable_statuses == ("draft",)
