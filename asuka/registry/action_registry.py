"""Action registry - the catalogue of capabilities agents may invoke"""
import logging
from typing import Any, Optional

from pydantic import BaseModel

from asuka.errors import DuplicateAction, SchemaMismatch, UnknownAction
from asuka.models.actions import ActionInvocation, ActionSpec
from asuka.validation.schema_validator import SchemaValidator


logger = logging.getLogger("asuka.registry")


class ActionRegistry:
    """
    Holds every registered ActionSpec and turns raw reasoning-backend output
    into validated ActionInvocations.

    Registration happens at startup, before any agent activity; afterwards
    the registry is only read.
    """

    def __init__(self):
        self._specs: dict[str, ActionSpec] = {}
        self._models: dict[str, type[BaseModel]] = {}

    def register(self, spec: ActionSpec) -> ActionSpec:
        """Register an action. Raises DuplicateAction or SchemaMismatch."""
        if spec.name in self._specs:
            raise DuplicateAction(spec.name)

        is_valid, error = SchemaValidator.validate_schema(spec.parameters)
        if not is_valid:
            raise SchemaMismatch(spec.name, [error or "invalid schema"])

        self._models[spec.name] = SchemaValidator.compile(spec.name, spec.parameters)
        self._specs[spec.name] = spec
        logger.info("Registered action %s (%s)", spec.name, spec.effect.value)
        return spec

    def get(self, name: str) -> Optional[ActionSpec]:
        return self._specs.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def specs(self) -> list[ActionSpec]:
        return list(self._specs.values())

    def names(self) -> list[str]:
        return list(self._specs)

    def _check(self, name: str, raw_params: Any) -> tuple[ActionSpec, dict[str, Any]]:
        spec = self._specs.get(name)
        if spec is None:
            raise UnknownAction(name)

        is_valid, problems, cleaned = SchemaValidator.check_params(self._models[name], raw_params)
        if not is_valid:
            raise SchemaMismatch(name, problems)
        return spec, cleaned

    def resolve(
        self,
        agent_id: str,
        sequence: int,
        name: str,
        raw_params: Any,
    ) -> ActionInvocation:
        """
        Validate a proposed action and bind it to an agent.

        Raises:
            UnknownAction: no action with that name is registered
            SchemaMismatch: parameters fail the structural check
        """
        spec, cleaned = self._check(name, raw_params)
        return ActionInvocation(
            agent_id=agent_id,
            action=spec.name,
            effect=spec.effect,
            params=cleaned,
            sequence=sequence,
        )

    def validate(self, invocation: ActionInvocation) -> ActionSpec:
        """Re-check an existing invocation against the current registration"""
        spec, _ = self._check(invocation.action, invocation.params)
        if spec.effect != invocation.effect:
            raise SchemaMismatch(
                invocation.action,
                [f"effect class changed from {invocation.effect.value} to {spec.effect.value}"],
            )
        return spec

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Function definitions for binding to a chat model"""
        return [spec.to_tool_definition() for spec in self._specs.values()]
