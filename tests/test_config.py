"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for plan, generation and billing
settings.
"""

import os
import tempfile

import pytest
import yaml

from studydeck.config.loader import (
    AppConfig,
    BillingSettings,
    GenerationSettings,
    PlanLimits,
    load_app_config,
    load_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "plans": {
                "free": {"monthly_deck_limit": 3, "monthly_token_limit": 20000},
                "pro": {"monthly_deck_limit": None, "monthly_token_limit": None},
            },
            "generation": {"model": "gpt-4o", "temperature": 0.5, "max_cards": 50},
            "billing": {"price_id": "price_123", "app_url": "https://decks.example.com"},
        })

        config = load_app_config(config_path)

        assert config.plans.free == PlanLimits(3, 20000)
        assert config.plans.pro.monthly_deck_limit is None
        assert config.generation.model == "gpt-4o"
        assert config.generation.temperature == 0.5
        assert config.generation.max_cards == 50
        assert config.generation.expected_card_count == 10
        assert config.billing.price_id == "price_123"

    def test_partial_config_uses_defaults(self):
        config = load_app_config(self._write_config({"generation": {"max_tokens": 800}}))

        assert config.plans.free == PlanLimits(5, 50000)
        assert config.generation.max_tokens == 800
        assert config.generation.model == "gpt-4o-mini"

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_app_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("plans: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_app_config(config_path)

    def test_empty_file(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_app_config(config_path)

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_app_config(self._write_config({"budget": {"daily": 10}}))

    def test_unknown_plan(self):
        with pytest.raises(ValueError, match="Unknown keys in plans"):
            load_app_config(self._write_config({"plans": {"team": {}}}))

    def test_negative_limit(self):
        with pytest.raises(ValueError, match="non-negative integer or null"):
            load_app_config(self._write_config(
                {"plans": {"free": {"monthly_deck_limit": -1}}}
            ))

    def test_boolean_limit(self):
        with pytest.raises(ValueError):
            load_app_config(self._write_config(
                {"plans": {"free": {"monthly_token_limit": True}}}
            ))

    def test_invalid_temperature(self):
        with pytest.raises(ValueError, match="temperature"):
            load_app_config(self._write_config({"generation": {"temperature": 3}}))

    def test_non_string_model(self):
        with pytest.raises(ValueError, match="generation.model"):
            load_app_config(self._write_config({"generation": {"model": 42}}))

    def test_billing_secrets_not_allowed_in_file(self):
        with pytest.raises(ValueError, match="Unknown keys in billing"):
            load_app_config(self._write_config({"billing": {"secret_key": "sk_live"}}))


class TestLoadConfig:
    """Test environment overrides."""

    def test_defaults_without_file(self, monkeypatch):
        for name in ("STUDYDECK_CONFIG", "STRIPE_PRICE_ID", "APP_URL",
                     "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"):
            monkeypatch.delenv(name, raising=False)

        config = load_config()

        assert config == AppConfig()

    def test_billing_from_environment(self, monkeypatch):
        monkeypatch.delenv("STUDYDECK_CONFIG", raising=False)
        monkeypatch.setenv("STRIPE_PRICE_ID", "price_env")
        monkeypatch.setenv("APP_URL", "https://decks.example.com/")
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_123")

        billing = load_config().billing

        assert billing.price_id == "price_env"
        assert billing.app_url == "https://decks.example.com"
        assert billing.secret_key == "sk_test_123"
        assert billing.webhook_secret == "whsec_123"

    def test_secrets_hidden_from_repr(self):
        settings = BillingSettings(secret_key="sk_test_123", webhook_secret="whsec_123")
        assert "sk_test_123" not in repr(settings)
        assert "whsec_123" not in repr(settings)


class TestSettingsValidation:
    """Test dataclass validation."""

    def test_negative_plan_limit(self):
        with pytest.raises(ValueError):
            PlanLimits(monthly_deck_limit=-1, monthly_token_limit=None)

    def test_invalid_generation_settings(self):
        with pytest.raises(ValueError):
            GenerationSettings(model="")
        with pytest.raises(ValueError):
            GenerationSettings(max_cards=0)
