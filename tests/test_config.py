"""Tests for runtime configuration"""
import pytest

from asuka.config import RuntimeConfig, _get_env
from asuka.state.memory_policy import ContextMemoryPolicy
from asuka.state.transaction_manager import RetryPolicy


def test_get_env_returns_first_set_key(monkeypatch):
    monkeypatch.delenv("ASUKA_MODEL", raising=False)
    monkeypatch.setenv("ANTHROPIC_MODEL", "claude-haiku")
    assert _get_env("ASUKA_MODEL", "ANTHROPIC_MODEL") == "claude-haiku"

    monkeypatch.setenv("ASUKA_MODEL", "claude-opus")
    assert _get_env("ASUKA_MODEL", "ANTHROPIC_MODEL") == "claude-opus"


def test_get_env_ignores_empty_values(monkeypatch):
    monkeypatch.setenv("ASUKA_CHARACTER", "")
    assert _get_env("ASUKA_CHARACTER", default="npc.toml") == "npc.toml"


def test_defaults():
    config = RuntimeConfig()
    assert config.await_confirmation is False
    assert config.max_reasoning_attempts == 3
    assert config.api_key is None


def test_from_env(monkeypatch):
    monkeypatch.setenv("ASUKA_REASONING_TIMEOUT", "12.5")
    monkeypatch.setenv("ASUKA_MAX_TX_RETRIES", "5")
    monkeypatch.setenv("ASUKA_AWAIT_CONFIRMATION", "yes")
    monkeypatch.setenv("ASUKA_RETRY_ON_REVERT", "false")
    monkeypatch.setenv("STARKNET_RPC_URL", "http://node:9545/rpc")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.delenv("ASUKA_CHAIN_RPC_URL", raising=False)
    monkeypatch.delenv("ASUKA_API_KEY", raising=False)

    config = RuntimeConfig.from_env()

    assert config.reasoning_timeout == 12.5
    assert config.max_transaction_retries == 5
    assert config.await_confirmation is True
    assert config.retry_on_revert is False
    assert config.chain_rpc_url == "http://node:9545/rpc"
    assert config.api_key == "sk-test"
    assert config.poll_interval == RuntimeConfig().poll_interval


def test_from_env_rejects_malformed_numbers(monkeypatch):
    monkeypatch.setenv("ASUKA_POLL_INTERVAL", "often")
    with pytest.raises(ValueError):
        RuntimeConfig.from_env()


def test_policies_mirror_config():
    config = RuntimeConfig(
        poll_interval=0.5,
        confirmation_timeout=10,
        max_transaction_retries=1,
        retry_on_revert=False,
        max_turns=20,
        keep_recent_turns=5,
        max_prompt_tokens=1000,
    )

    retry = config.retry_policy()
    assert isinstance(retry, RetryPolicy)
    assert (retry.poll_interval, retry.confirmation_timeout, retry.max_retries) == (0.5, 10, 1)
    assert retry.retry_on_revert is False

    memory = config.memory_policy()
    assert isinstance(memory, ContextMemoryPolicy)
    assert (memory.max_turns, memory.keep_recent_turns, memory.max_tokens) == (20, 5, 1000)
    assert memory.compression_threshold == 700
