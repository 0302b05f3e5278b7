"""Agent decision loop."""

from .runtime import AgentRuntime

__all__ = ["AgentRuntime"]
