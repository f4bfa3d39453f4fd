"""
Definition Registry Module

Holds validated workflow definitions keyed by id. Definitions are immutable;
registering an existing id swaps in the new object, and instances created
earlier keep the snapshot they were created with.
"""

from threading import RLock
from typing import Dict, List, Optional

from .errors import NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .models import (
    ActionType, ConditionType, VALID_OPERATORS, WorkflowDefinition,
    is_custom_action_tag
)
from .repository import WorkflowRepository


# Config keys each built-in action cannot run without
REQUIRED_ACTION_CONFIG = {
    ActionType.UPDATE_FIELD: ("field",),
    ActionType.ASSIGN_USER: ("user_id",),
}


def validate_definition(definition: WorkflowDefinition) -> None:
    """
    Check the structural rules of a definition.

    Raises:
        ValidationError: naming the first violation found
    """
    if not definition.id:
        raise ValidationError("Workflow definition must have an id")
    if not definition.states:
        raise ValidationError("Workflow must have at least one state",
                              {"workflow_id": definition.id})

    state_ids = set()
    for state in definition.states:
        if not state.id:
            raise ValidationError("State ids must be non-empty", {"workflow_id": definition.id})
        if state.id in state_ids:
            raise ValidationError(f"Duplicate state id: {state.id}",
                                  {"workflow_id": definition.id, "state_id": state.id})
        state_ids.add(state.id)

    if definition.initial_state not in state_ids:
        raise ValidationError(f"Initial state {definition.initial_state!r} is not a declared state",
                              {"workflow_id": definition.id})

    for final_state in definition.final_states:
        if final_state not in state_ids:
            raise ValidationError(f"Final state {final_state!r} is not a declared state",
                                  {"workflow_id": definition.id})

    if definition.initial_state in definition.final_states:
        raise ValidationError("Initial state cannot also be a final state",
                              {"workflow_id": definition.id})

    transition_ids = set()
    for transition in definition.transitions:
        details = {"workflow_id": definition.id, "transition_id": transition.id}
        if not transition.id:
            raise ValidationError("Transition ids must be non-empty", details)
        if transition.id in transition_ids:
            raise ValidationError(f"Duplicate transition id: {transition.id}", details)
        transition_ids.add(transition.id)

        if transition.from_state not in state_ids:
            raise ValidationError(
                f"Transition {transition.id} starts from unknown state {transition.from_state!r}", details)
        if transition.to_state not in state_ids:
            raise ValidationError(
                f"Transition {transition.id} leads to unknown state {transition.to_state!r}", details)

        for condition in transition.conditions:
            if condition.operator not in VALID_OPERATORS[condition.type]:
                raise ValidationError(
                    f"Operator {condition.operator.value!r} is not valid for "
                    f"{condition.type.value} conditions", details)
            if condition.type == ConditionType.FIELD and not condition.field:
                raise ValidationError(f"Field condition on {transition.id} has no field", details)

        for action in transition.actions:
            action_type = action.action_type
            if action_type is None and not is_custom_action_tag(action.type):
                raise ValidationError(f"Unknown action type: {action.type}",
                                      dict(details, action_id=action.id))
            for key in REQUIRED_ACTION_CONFIG.get(action_type, ()):
                if key not in action.config:
                    raise ValidationError(
                        f"Action {action.id} ({action.type}) requires config key {key!r}",
                        dict(details, action_id=action.id))

    sla_days = definition.settings.sla_days
    if sla_days is not None and (isinstance(sla_days, bool) or not isinstance(sla_days, int) or sla_days <= 0):
        raise ValidationError("sla_days must be a positive integer",
                              {"workflow_id": definition.id, "sla_days": sla_days})


class DefinitionRegistry:
    """Thread-safe store of workflow definitions"""

    def __init__(self, repository: Optional[WorkflowRepository] = None):
        self.repository = repository
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._lock = RLock()
        self.logger = get_logger("talent_workflows.definitions")

    def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Validate, store and persist a definition, replacing any with the same id"""
        validate_definition(definition)

        with self._lock:
            replaced = definition.id in self._definitions
            if self.repository:
                self.repository.save_definition(definition)
            self._definitions[definition.id] = definition

        log_action(self.logger, "info",
                   f"{'Replaced' if replaced else 'Registered'} workflow {definition.name}",
                   user_id=definition.created_by or None, action="register_workflow",
                   workflow_id=definition.id)
        return definition

    def unregister(self, workflow_id: str) -> bool:
        """Remove a definition; returns False when it was not registered"""
        with self._lock:
            definition = self._definitions.pop(workflow_id, None)
            if definition is not None and self.repository:
                self.repository.delete_definition(workflow_id)

        if definition is None:
            self.logger.warning(f"Cannot unregister unknown workflow {workflow_id}")
            return False

        log_action(self.logger, "info", f"Unregistered workflow {definition.name}",
                   action="unregister_workflow", workflow_id=workflow_id)
        return True

    def get(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.find(workflow_id)
        if definition is None:
            raise NotFoundError(f"Workflow {workflow_id} not found", {"workflow_id": workflow_id})
        return definition

    def find(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        with self._lock:
            return self._definitions.get(workflow_id)

    def list(self) -> List[WorkflowDefinition]:
        """All registered definitions sorted by name"""
        with self._lock:
            definitions = list(self._definitions.values())
        return sorted(definitions, key=lambda d: (d.name, d.id))

    def load(self, definitions: List[WorkflowDefinition]) -> int:
        """Restore persisted definitions without writing them back"""
        with self._lock:
            for definition in definitions:
                self._definitions[definition.id] = definition
        self.logger.info(f"Restored {len(definitions)} workflow definitions")
        return len(definitions)

    def __contains__(self, workflow_id: str) -> bool:
        return self.find(workflow_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)
