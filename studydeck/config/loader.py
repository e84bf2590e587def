"""
Configuration management and loading.

Handles plan limits, generation settings and billing settings. Plan and
generation settings come from a YAML file; secrets come from the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class PlanLimits:
    """Monthly limits for one subscription plan. None means unbounded."""
    monthly_deck_limit: Optional[int]
    monthly_token_limit: Optional[int]

    def __post_init__(self):
        """Validate limits are non-negative."""
        if self.monthly_deck_limit is not None and self.monthly_deck_limit < 0:
            raise ValueError("monthly_deck_limit must be >= 0")
        if self.monthly_token_limit is not None and self.monthly_token_limit < 0:
            raise ValueError("monthly_token_limit must be >= 0")


FREE_PLAN_LIMITS = PlanLimits(monthly_deck_limit=5, monthly_token_limit=50000)
PRO_PLAN_LIMITS = PlanLimits(monthly_deck_limit=None, monthly_token_limit=None)


@dataclass(frozen=True)
class PlanConfig:
    """Limits for the free and pro plans."""
    free: PlanLimits = FREE_PLAN_LIMITS
    pro: PlanLimits = PRO_PLAN_LIMITS


@dataclass(frozen=True)
class GenerationSettings:
    """AI generation request settings."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 1500
    expected_card_count: int = 10
    max_cards: int = 1000

    def __post_init__(self):
        """Validate generation values."""
        if not self.model:
            raise ValueError("model cannot be empty")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.expected_card_count < 0:
            raise ValueError("expected_card_count must be >= 0")
        if self.max_cards <= 0:
            raise ValueError("max_cards must be > 0")


@dataclass(frozen=True)
class BillingSettings:
    """Hosted checkout settings. Secrets are read from the environment."""
    price_id: str = ""
    app_url: str = "http://localhost:3000"
    secret_key: str = field(default="", repr=False)
    webhook_secret: str = field(default="", repr=False)


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    plans: PlanConfig = field(default_factory=PlanConfig)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    billing: BillingSettings = field(default_factory=BillingSettings)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from ``path``, ``STUDYDECK_CONFIG`` or defaults.

    Billing secrets and overrides are always taken from the environment.
    """
    path = path or os.getenv("STUDYDECK_CONFIG")
    config = load_app_config(path) if path else AppConfig()
    return AppConfig(
        plans=config.plans,
        generation=config.generation,
        billing=_billing_from_env(config.billing),
    )


def load_app_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Strict validation ensures no silent misconfiguration of plan limits,
    which would let users exceed their budget.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'plans', 'generation', 'billing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    plans = _parse_plans(raw_config.get('plans', {}))
    generation = _parse_generation(raw_config.get('generation', {}))
    billing = _parse_billing(raw_config.get('billing', {}))

    return AppConfig(plans=plans, generation=generation, billing=billing)


def _require_dict(data: Any, path: str) -> Dict:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    return data


def _reject_unknown(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_limit(value: Any, path: str) -> Optional[int]:
    """Parse a limit that may be null (unbounded) or a non-negative integer."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{path}' must be a non-negative integer or null")
    return value


def _parse_plans(data: Any) -> PlanConfig:
    data = _require_dict(data, "plans")
    _reject_unknown(data, {'free', 'pro'}, "plans")

    parsed = {}
    for plan_name, default in (('free', FREE_PLAN_LIMITS), ('pro', PRO_PLAN_LIMITS)):
        plan_data = _require_dict(data.get(plan_name, {}), f"plans.{plan_name}")
        allowed = {'monthly_deck_limit', 'monthly_token_limit'}
        _reject_unknown(plan_data, allowed, f"plans.{plan_name}")
        parsed[plan_name] = PlanLimits(
            monthly_deck_limit=_parse_limit(
                plan_data.get('monthly_deck_limit', default.monthly_deck_limit),
                f"plans.{plan_name}.monthly_deck_limit",
            ),
            monthly_token_limit=_parse_limit(
                plan_data.get('monthly_token_limit', default.monthly_token_limit),
                f"plans.{plan_name}.monthly_token_limit",
            ),
        )
    return PlanConfig(**parsed)


def _parse_generation(data: Any) -> GenerationSettings:
    data = _require_dict(data, "generation")
    allowed = {'model', 'temperature', 'max_tokens', 'expected_card_count', 'max_cards'}
    _reject_unknown(data, allowed, "generation")

    defaults = GenerationSettings()
    model = data.get('model', defaults.model)
    if not isinstance(model, str):
        raise ValueError("'generation.model' must be a string")

    temperature = data.get('temperature', defaults.temperature)
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise ValueError("'generation.temperature' must be a number")

    int_values = {}
    for key in ('max_tokens', 'expected_card_count', 'max_cards'):
        value = data.get(key, getattr(defaults, key))
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'generation.{key}' must be an integer")
        int_values[key] = value

    return GenerationSettings(model=model, temperature=float(temperature), **int_values)


def _parse_billing(data: Any) -> BillingSettings:
    data = _require_dict(data, "billing")
    _reject_unknown(data, {'price_id', 'app_url'}, "billing")

    defaults = BillingSettings()
    values = {}
    for key in ('price_id', 'app_url'):
        value = data.get(key, getattr(defaults, key))
        if not isinstance(value, str):
            raise ValueError(f"'billing.{key}' must be a string")
        values[key] = value
    return BillingSettings(**values)


def _billing_from_env(billing: BillingSettings) -> BillingSettings:
    return BillingSettings(
        price_id=os.getenv("STRIPE_PRICE_ID", billing.price_id),
        app_url=os.getenv("APP_URL", billing.app_url).rstrip("/"),
        secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
    )
