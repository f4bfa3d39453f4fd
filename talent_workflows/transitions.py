"""
Transition Executor Module

Moves instances between states. A transition runs under the instance's lock
against a working copy: guards are re-checked, the history entry is appended,
completion and SLA flags are updated, built-in actions are applied, and the
copy is committed. External actions are dispatched only after the lock is
released, so a slow webhook never blocks other callers of the same instance.
"""

import uuid
from datetime import datetime
from typing import Callable, List, Optional

from .actions import ActionDispatcher
from .audit import AuditEventType, AuditTrail
from .conditions import ConditionEvaluator
from .definitions import DefinitionRegistry
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .events import EventDispatcher, WorkflowEvent
from .instances import InstanceStore
from .logging_config import get_logger, log_action
from .models import (
    AutomationTrigger, WorkflowDefinition, WorkflowHistoryEntry, WorkflowInstance,
    WorkflowTransition, elapsed_ms, utc_now
)


DISPATCH_BACKGROUND = "background"
DISPATCH_SYNC = "sync"


class TransitionExecutor:
    """Evaluates and executes transitions for stored instances"""

    def __init__(self, registry: DefinitionRegistry, store: InstanceStore,
                 dispatcher: ActionDispatcher,
                 evaluator: Optional[ConditionEvaluator] = None,
                 audit_trail: Optional[AuditTrail] = None,
                 event_dispatcher: Optional[EventDispatcher] = None,
                 dispatch_mode: str = DISPATCH_BACKGROUND,
                 clock: Callable[[], datetime] = utc_now):
        if dispatch_mode not in (DISPATCH_BACKGROUND, DISPATCH_SYNC):
            raise ValueError(f"Unknown action dispatch mode: {dispatch_mode}")
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.evaluator = evaluator or ConditionEvaluator()
        self.audit = audit_trail
        self.events = event_dispatcher
        self.dispatch_mode = dispatch_mode
        self.clock = clock
        self.logger = get_logger("talent_workflows.transitions")

    def definition_for(self, instance: WorkflowInstance) -> WorkflowDefinition:
        """Definition snapshot embedded in the instance, else the registered one"""
        if instance.definition is not None:
            return instance.definition
        return self.registry.get(instance.workflow_id)

    def _available(self, definition: WorkflowDefinition, instance: WorkflowInstance,
                   actor_role: Optional[str], now: datetime) -> List[WorkflowTransition]:
        if definition.is_final(instance.current_state):
            return []
        return [
            t for t in definition.transitions_from(instance.current_state)
            if self.evaluator.evaluate(t.conditions, instance, actor_role, now)
        ]

    def get_available_transitions(self, instance_id: str,
                                  actor_role: Optional[str] = None) -> List[WorkflowTransition]:
        """Transitions out of the current state whose conditions currently hold"""
        instance = self.store.get(instance_id)
        definition = self.definition_for(instance)
        return self._available(definition, instance, actor_role, self.clock())

    def can_transition_to(self, instance_id: str, to_state: str,
                          actor_role: Optional[str] = None) -> bool:
        """True if some available transition leads to ``to_state``"""
        return any(t.to_state == to_state
                   for t in self.get_available_transitions(instance_id, actor_role))

    def get_automation_candidates(self, instance_id: str,
                                  trigger: Optional[AutomationTrigger] = None) -> List[WorkflowTransition]:
        """
        Available transitions flagged as automated.

        The engine never fires these itself; a scheduler or event consumer
        decides when to call execute_transition(..., automated=True).
        """
        if trigger is not None and not isinstance(trigger, AutomationTrigger):
            trigger = AutomationTrigger(trigger)
        return [
            t for t in self.get_available_transitions(instance_id)
            if t.automated and (trigger is None or t.automation_trigger == trigger)
        ]

    def execute_transition(self, instance_id: str, transition_id: str, actor_id: str,
                           actor_name: str, comments: Optional[str] = None,
                           actor_role: Optional[str] = None,
                           automated: bool = False) -> WorkflowInstance:
        """
        Execute a transition on an instance

        Args:
            instance_id: Instance to move
            transition_id: Transition to take
            actor_id: Who performs it, recorded in history
            actor_name: Display name of the actor
            comments: Free-text comment; required when the workflow demands it
            actor_role: Role of the actor, passed to role conditions
            automated: True when a scheduler or rule triggered the transition

        Returns:
            Copy of the committed instance

        Raises:
            NotFoundError: Unknown instance, workflow, or transition
            InvalidTransitionError: Transition not available from the current state
            ValidationError: Comments required but missing
        """
        lock = self.store.lock_for(instance_id)

        with lock:
            working = self.store.get(instance_id)
            definition = self.definition_for(working)

            transition = definition.get_transition(transition_id)
            if transition is None:
                raise NotFoundError(f"Transition {transition_id} not found in workflow {definition.id}",
                                    {"workflow_id": definition.id, "transition_id": transition_id})

            from_state = working.current_state
            if definition.is_final(from_state):
                raise InvalidTransitionError(
                    f"Instance {instance_id} is already in final state {from_state}",
                    {"instance_id": instance_id, "current_state": from_state,
                     "transition_id": transition_id})

            now = self.clock()
            available = self._available(definition, working, actor_role, now)
            if transition.id not in {t.id for t in available}:
                raise InvalidTransitionError(
                    f"Transition {transition_id} is not available from state {from_state}",
                    {"instance_id": instance_id, "current_state": from_state,
                     "transition_id": transition_id})

            if definition.settings.require_comments and not (comments and comments.strip()):
                raise ValidationError("Comments are required for this transition",
                                      {"instance_id": instance_id, "transition_id": transition_id})

            entry = WorkflowHistoryEntry(
                id=str(uuid.uuid4()),
                timestamp=now,
                from_state=from_state,
                to_state=transition.to_state,
                transition_name=transition.label,
                performed_by=actor_id,
                performed_by_name=actor_name,
                comments=comments,
                automated=automated,
                duration=elapsed_ms(working.last_entry.timestamp, now),
                transition_id=transition.id
            )
            working.history.append(entry)
            working.previous_state = from_state
            working.current_state = transition.to_state

            completed = definition.is_final(transition.to_state)
            if completed:
                working.completed_at = now
            if working.sla_deadline is not None:
                working.is_overdue = now > working.sla_deadline

            for action in transition.actions:
                if action.is_builtin:
                    self.dispatcher.apply_builtin(action, working)

            self.store.replace(working)
            audit_error = None
            if self.audit:
                try:
                    self.audit.log_event(
                        AuditEventType.INSTANCE_TRANSITIONED,
                        "workflow_instance",
                        working.id,
                        {"workflow_id": working.workflow_id, "transition_id": transition.id,
                         "from_state": from_state, "to_state": transition.to_state,
                         "duration": entry.duration, "automated": automated,
                         "comments": comments},
                        actor_id
                    )
                except Exception as e:
                    # The transition is committed; a lost audit record is reported, not raised
                    audit_error = f"{type(e).__name__}: {e}"
                    log_action(self.logger, "error",
                               f"Audit record for transition {transition.id} not written: {e}",
                               user_id=actor_id, action=transition.id,
                               workflow_id=working.workflow_id, instance_id=working.id)
            committed = working.snapshot()

        log_action(self.logger, "info", f"Transitioned {from_state} -> {transition.to_state}",
                   user_id=actor_id, action=transition.id,
                   workflow_id=committed.workflow_id, instance_id=committed.id,
                   extra={"duration": entry.duration, "automated": automated})

        if self.events:
            data = {"workflow_id": committed.workflow_id, "transition_id": transition.id,
                    "from_state": from_state, "to_state": transition.to_state,
                    "performed_by": actor_id, "automated": automated,
                    "duration": entry.duration}
            self.events.emit(WorkflowEvent.INSTANCE_TRANSITIONED, "workflow_instance",
                             committed.id, data)
            if completed:
                self.events.emit(WorkflowEvent.INSTANCE_COMPLETED, "workflow_instance",
                                 committed.id, data)
            if audit_error:
                self.events.emit(WorkflowEvent.AUDIT_FAILED, "workflow_instance", committed.id,
                                 {"workflow_id": committed.workflow_id,
                                  "transition_id": transition.id, "error": audit_error})

        external = [action for action in transition.actions if not action.is_builtin]
        if external:
            if self.dispatch_mode == DISPATCH_SYNC:
                self.dispatcher.dispatch_all(external, committed)
            else:
                self.dispatcher.submit(external, committed.snapshot())

        return committed
