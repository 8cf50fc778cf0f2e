# ABOUTME: Tests policy config loading from YAML and environment overrides.
# ABOUTME: Uses temporary files so the repository config is never touched.

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from src.common.config import ConfigError, PolicyConfig, config_from_dict, load_policy_config
from src.policy.reward import DEFAULT_REWARD_WEIGHTS


def test_missing_file_gives_defaults(tmp_path):
    with patch.dict(os.environ, {}, clear=True):
        config = load_policy_config(tmp_path / "absent.yaml")
    assert config == PolicyConfig()
    assert config.reward_weights == DEFAULT_REWARD_WEIGHTS
    assert config.llm.enabled is False


def test_load_yaml(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text(
        "default_strategy: diagnostic\n"
        "reward_weights:\n"
        "  independent_success: 0.5\n"
        "analytics:\n"
        "  csi_window: 20\n"
        "  base_escalate_threshold: 5\n"
        "llm:\n"
        "  enabled: true\n"
        "  provider: anthropic\n"
        "  model: claude-3-haiku-20240307\n"
    )
    with patch.dict(os.environ, {}, clear=True):
        config = load_policy_config(path)
    assert config.default_strategy == "diagnostic"
    assert config.reward_weights.independent_success == 0.5
    assert config.reward_weights.error_reduction == 0.25
    assert config.csi_window == 20
    assert config.base_escalate_threshold == 5
    assert config.base_aggregate_threshold == 8
    assert config.llm.enabled is True
    assert config.llm.provider == "anthropic"


def test_environment_overrides(tmp_path):
    env = {"USE_LLM_EXPLANATIONS": "true", "LLM_PROVIDER": "anthropic", "LLM_MODEL": "claude-3-5-haiku-latest"}
    with patch.dict(os.environ, env, clear=True):
        config = load_policy_config(tmp_path / "absent.yaml")
    assert config.llm.enabled is True
    assert config.llm.provider == "anthropic"
    assert config.llm.model == "claude-3-5-haiku-latest"


def test_non_mapping_yaml_rejected(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_policy_config(path)


def test_unknown_reward_weight_rejected():
    with pytest.raises(ConfigError):
        config_from_dict({"reward_weights": {"curiosity": 0.1}})
    with pytest.raises(ConfigError):
        config_from_dict({"reward_weights": [0.1, 0.2]})


def test_repository_config_loads():
    path = Path(__file__).resolve().parents[1] / "configs" / "policy.yaml"
    with patch.dict(os.environ, {}, clear=True):
        config = load_policy_config(path)
    assert config.reward_weights == DEFAULT_REWARD_WEIGHTS
    assert config.csi_window == 10
