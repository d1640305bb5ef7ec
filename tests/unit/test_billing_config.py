"""Unit tests for billing configuration validation."""

import pytest

from hoa_billing.services.billing_config import BillingConfigService, parse_billing_config
from hoa_billing.services.doc_paths import billing_config_path
from hoa_billing.services.errors import ConfigurationError


class TestParseBillingConfig:
    """Test parse_billing_config."""

    def test_valid_config(self, config_factory):
        """Test a complete configuration parses into typed fields."""
        config = parse_billing_config("AVII", config_factory())

        assert config.penalty_rate == 0.05
        assert config.penalty_days == 10
        assert config.compound_penalty is True
        assert config.dues_frequency == "quarterly"
        assert config.ancillary_rates == {"carWash": 10000, "boatWash": 20000}

    def test_defaults_for_optional_fields(self):
        """Test only penaltyRate and penaltyDays are required."""
        config = parse_billing_config("AVII", {"penaltyRate": 0.05, "penaltyDays": 10})

        assert config.fiscal_year_start_month == 1
        assert config.dues_frequency == "monthly"
        assert config.allow_negative_credit is False
        assert config.minimum_charge == 0

    def test_missing_document(self):
        """Test a missing configuration is a ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            parse_billing_config("AVII", None)

    def test_every_problem_is_reported(self):
        """Test all invalid fields are listed together."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_billing_config(
                "AVII",
                {
                    "penaltyDays": -1,
                    "duesFrequency": "weekly",
                    "ratePerUnit": 12.5,
                    "fiscalYearStartMonth": 13,
                },
            )

        fields = exc_info.value.details["fields"]
        assert set(fields) == {"penaltyRate", "penaltyDays", "duesFrequency", "ratePerUnit", "fiscalYearStartMonth"}
        assert exc_info.value.error_type == "configuration"

    def test_boolean_is_not_a_rate(self, config_factory):
        """Test booleans are rejected where numbers are expected."""
        with pytest.raises(ConfigurationError):
            parse_billing_config("AVII", config_factory(penaltyRate=True))


class TestBillingConfigService:
    """Test loading from the document store."""

    def test_load(self, store, config_factory):
        """Test configuration loads from the client's config document."""
        store.set(billing_config_path("AVII"), config_factory(penaltyDays=15))

        config = BillingConfigService(store).load("AVII")

        assert config.client_id == "AVII"
        assert config.penalty_days == 15

    def test_load_missing(self, store):
        """Test loading for an unconfigured client fails distinctly."""
        with pytest.raises(ConfigurationError):
            BillingConfigService(store).load("MTC")
