"""Tests for BillingConfig and YAML loading."""

from decimal import Decimal

import pytest
import yaml

from billing_kernel.config import BillingConfig, load_billing_config
from billing_kernel.exceptions import ConfigurationError


class TestBillingConfig:
    def test_defaults(self):
        config = BillingConfig()

        assert config.growth_rate_percent == Decimal("5.0")
        assert config.inflation_rate_percent == Decimal("2.0")
        assert config.expense_lookback_months == 6
        assert config.max_occurrences_per_run == 1000
        assert config.payment_terms_days == 0
        assert config.max_workers == 4

    def test_fractional_rates(self):
        config = BillingConfig()
        assert config.growth_rate == Decimal("0.05")
        assert config.inflation_rate == Decimal("0.02")

    def test_rates_coerced_to_decimal(self):
        config = BillingConfig(growth_rate_percent="3.5", inflation_rate_percent=1)

        assert config.growth_rate_percent == Decimal("3.5")
        assert isinstance(config.inflation_rate_percent, Decimal)

    def test_negative_growth_allowed(self):
        assert BillingConfig(growth_rate_percent=Decimal("-10")).growth_rate == Decimal("-0.1")

    @pytest.mark.parametrize(
        "field_name, value",
        [
            ("growth_rate_percent", "-100"),
            ("inflation_rate_percent", "fast"),
            ("expense_lookback_months", 0),
            ("max_occurrences_per_run", 0),
            ("payment_terms_days", -1),
            ("max_workers", 0),
        ],
    )
    def test_out_of_range(self, field_name, value):
        with pytest.raises(ConfigurationError) as exc_info:
            BillingConfig(**{field_name: value})
        assert exc_info.value.field_name == field_name

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError) as exc_info:
            BillingConfig.from_mapping({"max_workers": 2, "colour": "blue"})
        assert exc_info.value.field_name == "colour"


class TestLoadBillingConfig:
    def test_billing_section(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text(
            "billing:\n"
            "  growth_rate_percent: '4.0'\n"
            "  payment_terms_days: 30\n"
        )

        config = load_billing_config(path)

        assert config.growth_rate_percent == Decimal("4.0")
        assert config.payment_terms_days == 30
        assert config.inflation_rate_percent == Decimal("2.0")

    def test_top_level_keys(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("max_workers: 8\n")

        assert load_billing_config(path).max_workers == 8

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("")

        assert load_billing_config(path) == BillingConfig()

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigurationError):
            load_billing_config(path)

    def test_section_not_a_mapping(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("billing: 5\n")

        with pytest.raises(ConfigurationError):
            load_billing_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_billing_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("billing: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_billing_config(path)

    def test_logs_load(self, tmp_path, captured_logs):
        path = tmp_path / "billing.yaml"
        path.write_text("billing: {}\n")

        load_billing_config(path)

        loaded = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert loaded[0]["path"] == str(path)
