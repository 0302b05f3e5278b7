"""Error taxonomy for the agent execution core"""
from typing import Optional


class AsukaError(Exception):
    """Base class for all agent-core errors"""


# Registry / validation

class ActionValidationError(AsukaError):
    """A proposed action failed validation. Never retried; becomes a rejected result."""


class UnknownAction(ActionValidationError):
    def __init__(self, name: str):
        super().__init__(f"Unknown action: {name}")
        self.name = name


class SchemaMismatch(ActionValidationError):
    def __init__(self, name: str, problems: list[str]):
        joined = "; ".join(problems) if problems else "invalid parameters"
        super().__init__(f"Parameters for '{name}' do not match schema: {joined}")
        self.name = name
        self.problems = problems


class DuplicateAction(AsukaError):
    def __init__(self, name: str):
        super().__init__(f"Action '{name}' is already registered")
        self.name = name


# Agent state machine

class InvalidTransition(AsukaError):
    def __init__(self, subject: str, from_state: str, to_state: str, actual: Optional[str] = None):
        message = f"{subject}: cannot transition {from_state} -> {to_state}"
        if actual is not None and actual != from_state:
            message += f" (current state is {actual})"
        super().__init__(message)
        self.subject = subject
        self.from_state = from_state
        self.to_state = to_state
        self.actual = actual


class ConcurrentActionError(AsukaError):
    """Agent already has an in-flight reasoning call or action"""

    def __init__(self, agent_id: str, current: str):
        super().__init__(f"Agent {agent_id} is busy ({current})")
        self.agent_id = agent_id
        self.current = current


class AgentTerminatedError(AsukaError):
    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} has been terminated")
        self.agent_id = agent_id


# Reasoning backend

class BackendError(AsukaError):
    """Reasoning backend failure. Retried up to a bound by the agent loop."""


class BackendUnavailable(BackendError):
    pass


class ReasoningTimeout(BackendError):
    pass


# Chain

class SubmissionError(AsukaError):
    """Chain client rejected a submission outright. Not retried automatically."""


class ConfirmationTimeout(AsukaError):
    pass


class ConfirmationFailure(AsukaError):
    pass
