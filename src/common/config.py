# ABOUTME: Loads policy configuration from YAML with environment overrides.
# ABOUTME: Holds reward weights, analytics windows, and LLM provider settings.

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from src.policy.reward import DEFAULT_REWARD_WEIGHTS, RewardWeights

DEFAULT_CONFIG_PATH = Path("configs/policy.yaml")


class ConfigError(ValueError):
    """Raised when a policy config file cannot be interpreted."""


@dataclass
class LLMSettings:
    """Provider settings for the text-generation backend."""

    enabled: bool = False
    provider: str = "openai"  # "openai" or "anthropic"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    max_tokens: int = 700
    temperature: float = 0.3

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        env_var = "ANTHROPIC_API_KEY" if self.provider == "anthropic" else "OPENAI_API_KEY"
        return os.environ.get(env_var)


@dataclass
class PolicyConfig:
    reward_weights: RewardWeights = field(default_factory=lambda: DEFAULT_REWARD_WEIGHTS)
    csi_window: int = 10
    base_escalate_threshold: int = 4
    base_aggregate_threshold: int = 8
    default_strategy: str = "static"
    llm: LLMSettings = field(default_factory=LLMSettings)


def _apply_env(settings: LLMSettings) -> LLMSettings:
    if "USE_LLM_EXPLANATIONS" in os.environ:
        settings.enabled = os.environ["USE_LLM_EXPLANATIONS"].lower() == "true"
    settings.provider = os.environ.get("LLM_PROVIDER", settings.provider)
    settings.model = os.environ.get("LLM_MODEL", settings.model)
    return settings


def config_from_dict(cfg: Dict[str, Any]) -> PolicyConfig:
    """Build a PolicyConfig from a parsed YAML mapping."""
    config = PolicyConfig()

    weights = cfg.get("reward_weights")
    if weights is not None:
        if not isinstance(weights, dict):
            raise ConfigError("reward_weights must be a mapping")
        try:
            config.reward_weights = RewardWeights(**{k: float(v) for k, v in weights.items()})
        except TypeError as exc:
            raise ConfigError(f"Unknown reward weight: {exc}") from exc

    analytics = cfg.get("analytics", {}) or {}
    config.csi_window = int(analytics.get("csi_window", config.csi_window))
    config.base_escalate_threshold = int(analytics.get("base_escalate_threshold", config.base_escalate_threshold))
    config.base_aggregate_threshold = int(analytics.get("base_aggregate_threshold", config.base_aggregate_threshold))

    config.default_strategy = str(cfg.get("default_strategy", config.default_strategy))

    llm_cfg = cfg.get("llm", {}) or {}
    config.llm = LLMSettings(
        enabled=bool(llm_cfg.get("enabled", False)),
        provider=str(llm_cfg.get("provider", "openai")),
        model=str(llm_cfg.get("model", "gpt-4o-mini")),
        api_key=llm_cfg.get("api_key"),
        max_tokens=int(llm_cfg.get("max_tokens", 700)),
        temperature=float(llm_cfg.get("temperature", 0.3)),
    )
    return config


def load_policy_config(config_path: Optional[Path] = None) -> PolicyConfig:
    """
    Load policy config YAML, falling back to defaults when the file is absent.

    Environment variables (USE_LLM_EXPLANATIONS, LLM_PROVIDER, LLM_MODEL)
    override the file's llm section.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not path.exists():
        config = PolicyConfig()
    else:
        with open(path) as f:
            cfg = yaml.safe_load(f) or {}
        if not isinstance(cfg, dict):
            raise ConfigError(f"Policy config at {path} must be a mapping")
        config = config_from_dict(cfg)

    config.llm = _apply_env(config.llm)
    return config
