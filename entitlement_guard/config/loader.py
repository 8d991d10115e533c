"""
Configuration management and loading.

Handles engine settings: plan quotas, accounting period, fallback plan and
per-platform content formats.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping

import yaml

from entitlement_guard.core.dispatch import DEFAULT_PLATFORM_FORMATS, PlatformFormat
from entitlement_guard.core.errors import UnknownFeature, UnknownPlan, UnsupportedPlatform
from entitlement_guard.core.periods import AccountingPeriod, CalendarMonthPeriod, parse_period
from entitlement_guard.core.plans import DEFAULT_PLAN_CATALOG, PlanCatalog
from entitlement_guard.storage.models import Feature, Plan, Platform


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration; defaults reproduce the reference behavior."""
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG
    period: AccountingPeriod = field(default_factory=CalendarMonthPeriod)
    fallback_plan: str = Plan.FREE.value
    strip_hashtags: bool = False
    platform_formats: Mapping[Platform, PlatformFormat] = field(
        default_factory=lambda: dict(DEFAULT_PLATFORM_FORMATS)
    )

    def __post_init__(self):
        """Validate the fallback plan exists in the catalog."""
        if self.fallback_plan not in self.catalog.plans():
            raise UnknownPlan(self.fallback_plan)


def load_engine_config(path: str) -> EngineConfig:
    """Load and validate engine configuration from YAML file.

    Strict validation ensures no silent misconfigurations: an unknown plan
    or feature would otherwise turn into a wrong allow or deny at runtime.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Engine config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'plans', 'period', 'fallback_plan', 'strip_hashtags', 'platforms'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    catalog = DEFAULT_PLAN_CATALOG
    if 'plans' in raw_config:
        catalog = _parse_plans(raw_config['plans'])

    period = parse_period(raw_config.get('period', CalendarMonthPeriod.name))

    fallback_plan = raw_config.get('fallback_plan', Plan.FREE.value)
    if not isinstance(fallback_plan, str):
        raise ValueError("'fallback_plan' must be a string")

    strip = raw_config.get('strip_hashtags', False)
    if not isinstance(strip, bool):
        raise ValueError("'strip_hashtags' must be true or false")

    formats = dict(DEFAULT_PLATFORM_FORMATS)
    platforms_data = raw_config.get('platforms', {})
    if not isinstance(platforms_data, dict):
        raise ValueError("'platforms' must be a dictionary")
    for platform_name, format_data in platforms_data.items():
        try:
            platform = Platform(platform_name)
        except ValueError:
            raise UnsupportedPlatform(platform_name) from None
        formats[platform] = _parse_platform_format(format_data, f"platforms.{platform_name}")

    return EngineConfig(
        catalog=catalog,
        period=period,
        fallback_plan=fallback_plan,
        strip_hashtags=strip,
        platform_formats=formats,
    )


def _parse_plans(plans_data) -> PlanCatalog:
    """Parse the plan quota table.

    Every known plan must be present and list every feature.

    Raises:
        ValueError: If the table is incomplete or a quota is invalid
    """
    if not isinstance(plans_data, dict):
        raise ValueError("'plans' must be a dictionary")

    for plan_name in plans_data:
        if plan_name not in {plan.value for plan in Plan}:
            raise UnknownPlan(plan_name)

    missing_plans = {plan.value for plan in Plan} - set(plans_data)
    if missing_plans:
        raise ValueError(f"Missing quotas for plans: {sorted(missing_plans)}")

    quotas: Dict[str, Dict[str, int]] = {}
    for plan_name, limits in plans_data.items():
        if not isinstance(limits, dict):
            raise ValueError(f"Plan '{plan_name}' must be a dictionary")
        for feature_name in limits:
            if feature_name not in {feature.value for feature in Feature}:
                raise UnknownFeature(feature_name)
        quotas[plan_name] = dict(limits)

    return PlanCatalog(quotas)


def _parse_platform_format(data: Dict, path: str) -> PlatformFormat:
    """Parse and validate one platform format override.

    Args:
        data: Platform format data
        path: Path for error messages

    Returns:
        Validated PlatformFormat

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    allowed_keys = {'max_length', 'extract_hashtags', 'body_field'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    max_length = data.get('max_length')
    if max_length is not None:
        if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length <= 0:
            raise ValueError(f"'max_length' in {path} must be a positive integer")

    extract = data.get('extract_hashtags', False)
    if not isinstance(extract, bool):
        raise ValueError(f"'extract_hashtags' in {path} must be true or false")

    body_field = data.get('body_field', 'content')
    if not isinstance(body_field, str) or not body_field:
        raise ValueError(f"'body_field' in {path} must be a non-empty string")

    return PlatformFormat(max_length=max_length, extract_hashtags=extract, body_field=body_field)
