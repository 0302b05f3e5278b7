"""Configuration for the agent runtime."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from asuka.state.memory_policy import ContextMemoryPolicy
from asuka.state.transaction_manager import RetryPolicy


def _get_env(*keys: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first environment variable that is set."""

    for key in keys:
        value = os.getenv(key)
        if value:
            return value
    return default


def _get_bool(*keys: str, default: bool) -> bool:
    value = _get_env(*keys)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass(slots=True)
class RuntimeConfig:
    """Policy parameters for the agent loop and transaction lifecycle."""

    # Reasoning
    reasoning_timeout: float = 30.0
    max_reasoning_attempts: int = 3
    reasoning_retry_delay: float = 1.0
    max_steps: int = 8

    # On-chain actions. False lets the agent keep reasoning while a
    # transaction confirms; True holds it in awaiting_action_result.
    await_confirmation: bool = False
    poll_interval: float = 2.0
    confirmation_timeout: float = 120.0
    max_transaction_retries: int = 3
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 30.0
    retry_on_revert: bool = True
    transaction_retention_seconds: float = 3600.0

    # Memory
    max_turns: int = 200
    keep_recent_turns: int = 50
    max_summary_chars: int = 4000
    max_prompt_tokens: int = 100_000

    bus_history_size: int = 200
    auto_save_snapshots: bool = False
    snapshot_dir: str = "logs/agents"

    # Collaborators
    model: str = "claude-sonnet-4-5-20250929"
    api_key: Optional[str] = None
    chain_rpc_url: str = "http://localhost:5050/rpc"
    character_path: Optional[str] = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            poll_interval=self.poll_interval,
            confirmation_timeout=self.confirmation_timeout,
            max_retries=self.max_transaction_retries,
            backoff_base=self.retry_backoff_base,
            backoff_max=self.retry_backoff_max,
            retry_on_revert=self.retry_on_revert,
        )

    def memory_policy(self) -> ContextMemoryPolicy:
        return ContextMemoryPolicy(
            max_turns=self.max_turns,
            keep_recent_turns=self.keep_recent_turns,
            max_summary_chars=self.max_summary_chars,
            max_tokens=self.max_prompt_tokens,
        )

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        """Load configuration from ``ASUKA_*`` environment variables."""

        defaults = cls()
        return cls(
            reasoning_timeout=float(_get_env("ASUKA_REASONING_TIMEOUT", default=str(defaults.reasoning_timeout))),
            max_reasoning_attempts=int(_get_env("ASUKA_MAX_REASONING_ATTEMPTS", default=str(defaults.max_reasoning_attempts))),
            reasoning_retry_delay=float(_get_env("ASUKA_REASONING_RETRY_DELAY", default=str(defaults.reasoning_retry_delay))),
            max_steps=int(_get_env("ASUKA_MAX_STEPS", default=str(defaults.max_steps))),
            await_confirmation=_get_bool("ASUKA_AWAIT_CONFIRMATION", default=defaults.await_confirmation),
            poll_interval=float(_get_env("ASUKA_POLL_INTERVAL", default=str(defaults.poll_interval))),
            confirmation_timeout=float(_get_env("ASUKA_CONFIRMATION_TIMEOUT", default=str(defaults.confirmation_timeout))),
            max_transaction_retries=int(_get_env("ASUKA_MAX_TX_RETRIES", default=str(defaults.max_transaction_retries))),
            retry_backoff_base=float(_get_env("ASUKA_RETRY_BACKOFF_BASE", default=str(defaults.retry_backoff_base))),
            retry_backoff_max=float(_get_env("ASUKA_RETRY_BACKOFF_MAX", default=str(defaults.retry_backoff_max))),
            retry_on_revert=_get_bool("ASUKA_RETRY_ON_REVERT", default=defaults.retry_on_revert),
            transaction_retention_seconds=float(_get_env("ASUKA_TX_RETENTION_SECONDS", default=str(defaults.transaction_retention_seconds))),
            max_turns=int(_get_env("ASUKA_MAX_TURNS", default=str(defaults.max_turns))),
            keep_recent_turns=int(_get_env("ASUKA_KEEP_RECENT_TURNS", default=str(defaults.keep_recent_turns))),
            max_summary_chars=int(_get_env("ASUKA_MAX_SUMMARY_CHARS", default=str(defaults.max_summary_chars))),
            max_prompt_tokens=int(_get_env("ASUKA_MAX_PROMPT_TOKENS", default=str(defaults.max_prompt_tokens))),
            bus_history_size=int(_get_env("ASUKA_BUS_HISTORY", default=str(defaults.bus_history_size))),
            auto_save_snapshots=_get_bool("ASUKA_AUTO_SAVE_SNAPSHOTS", default=defaults.auto_save_snapshots),
            snapshot_dir=_get_env("ASUKA_SNAPSHOT_DIR", default=defaults.snapshot_dir),
            model=_get_env("ASUKA_MODEL", "ANTHROPIC_MODEL", default=defaults.model),
            api_key=_get_env("ASUKA_API_KEY", "ANTHROPIC_API_KEY"),
            chain_rpc_url=_get_env("ASUKA_CHAIN_RPC_URL", "STARKNET_RPC_URL", default=defaults.chain_rpc_url),
            character_path=_get_env("ASUKA_CHARACTER"),
        )
