"""
Workflow Engine Module

Facade over the registry, instance store, transition executor, action
dispatcher and metrics aggregator. This is the surface the request layer
talks to.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from .actions import ActionDispatcher, ActionHandler, register_default_handlers
from .audit import AuditEventType, AuditTrail
from .conditions import ConditionEvaluator
from .config import WorkflowEngineConfig, get_config
from .definitions import DefinitionRegistry
from .errors import NotFoundError
from .events import EventDispatcher, WorkflowEvent
from .instances import InstanceStore
from .logging_config import get_logger, log_action
from .metrics import MetricsAggregator, is_past_sla
from .models import (
    AutomationTrigger, WorkflowDefinition, WorkflowInstance, WorkflowMetrics,
    WorkflowTransition, utc_now
)
from .repository import WorkflowRepository
from .storage import StorageInterface
from .templates import WorkflowTemplate, get_template_by_id
from .transitions import TransitionExecutor


class WorkflowEngine:
    """Main workflow engine for managing workflow definitions and instances"""

    def __init__(self, storage: StorageInterface,
                 config: Optional[WorkflowEngineConfig] = None,
                 audit_trail: Optional[AuditTrail] = None,
                 event_dispatcher: Optional[EventDispatcher] = None,
                 action_dispatcher: Optional[ActionDispatcher] = None,
                 email_sender: Optional[Callable[[Dict[str, Any]], Any]] = None,
                 http_client: Optional[httpx.Client] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.storage = storage
        self.config = config or get_config()
        self.clock = clock
        self.logger = get_logger("talent_workflows.engine")

        self.events = event_dispatcher or EventDispatcher()
        self.audit = audit_trail
        if self.audit is None and self.config.enable_audit_logging:
            self.audit = AuditTrail(storage)

        if action_dispatcher is None:
            action_dispatcher = ActionDispatcher(
                self.events,
                timeout_seconds=self.config.action_timeout_seconds,
                max_workers=self.config.action_workers
            )
            register_default_handlers(action_dispatcher, storage, email_sender, http_client,
                                      webhook_timeout=self.config.webhook_timeout_seconds)
        self.actions = action_dispatcher

        self.repository = WorkflowRepository(storage)
        self.registry = DefinitionRegistry(self.repository)
        self.store = InstanceStore(self.repository,
                                   system_actor_id=self.config.system_actor_id,
                                   system_actor_name=self.config.system_actor_name)
        self.executor = TransitionExecutor(
            self.registry, self.store, self.actions,
            evaluator=ConditionEvaluator(),
            audit_trail=self.audit,
            event_dispatcher=self.events,
            dispatch_mode=self.config.action_dispatch_mode,
            clock=clock
        )
        self.metrics = MetricsAggregator(self.store, clock)

        if self.config.restore_on_start:
            self.restore()

    # Definition management

    def register_workflow(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Validate and register a definition, replacing any with the same id"""
        self.registry.register(definition)
        if self.audit:
            self.audit.log_event(
                AuditEventType.WORKFLOW_REGISTERED,
                "workflow_definition",
                definition.id,
                {"name": definition.name, "version": definition.version,
                 "entity_type": definition.entity_type},
                definition.created_by or None
            )
        self.events.emit(WorkflowEvent.WORKFLOW_REGISTERED, "workflow_definition", definition.id,
                         {"name": definition.name, "version": definition.version})
        return definition

    def unregister_workflow(self, workflow_id: str) -> bool:
        """Remove a definition; running instances keep their embedded snapshot"""
        removed = self.registry.unregister(workflow_id)
        if removed:
            if self.audit:
                self.audit.log_event(AuditEventType.WORKFLOW_UNREGISTERED,
                                     "workflow_definition", workflow_id)
            self.events.emit(WorkflowEvent.WORKFLOW_UNREGISTERED, "workflow_definition", workflow_id)
        return removed

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self.registry.get(workflow_id)

    def list_workflows(self) -> List[WorkflowDefinition]:
        return self.registry.list()

    def install_template(self, template: Union[WorkflowTemplate, str],
                         created_by: str = "system") -> WorkflowDefinition:
        """Register a built-in template (by object or template id)"""
        if isinstance(template, str):
            template_id = template
            template = get_template_by_id(template_id)
            if template is None:
                raise NotFoundError(f"Template {template_id} not found", {"template_id": template_id})
        return self.register_workflow(template.install(created_by))

    # Instance management

    def create_instance(self, workflow_id: str, entity_type: str, entity_id: str,
                        assigned_to: Optional[str] = None,
                        metadata: Optional[Dict[str, Any]] = None) -> WorkflowInstance:
        """Start a workflow for a business entity"""
        definition = self.registry.get(workflow_id)
        instance = self.store.create(definition, entity_type, entity_id,
                                     assigned_to=assigned_to, metadata=metadata,
                                     now=self.clock())
        if self.audit:
            self.audit.log_event(
                AuditEventType.INSTANCE_CREATED,
                "workflow_instance",
                instance.id,
                {"workflow_id": workflow_id, "entity_type": entity_type,
                 "entity_id": entity_id, "state": instance.current_state},
                assigned_to
            )
        self.events.emit(WorkflowEvent.INSTANCE_CREATED, "workflow_instance", instance.id,
                         {"workflow_id": workflow_id, "entity_type": entity_type,
                          "entity_id": entity_id, "state": instance.current_state})
        return instance

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        return self.store.get(instance_id)

    def get_instances_by_entity(self, entity_type: str, entity_id: str) -> List[WorkflowInstance]:
        return self.store.get_by_entity(entity_type, entity_id)

    def get_overdue_instances(self, now: Optional[datetime] = None) -> List[WorkflowInstance]:
        """Active instances past their SLA deadline; does not modify them"""
        now = now or self.clock()
        return [
            instance for instance in self.store.list()
            if instance.completed_at is None and is_past_sla(instance, now)
        ]

    # Transitions

    def get_available_transitions(self, instance_id: str,
                                  actor_role: Optional[str] = None) -> List[WorkflowTransition]:
        return self.executor.get_available_transitions(instance_id, actor_role)

    def can_transition_to(self, instance_id: str, to_state: str,
                          actor_role: Optional[str] = None) -> bool:
        return self.executor.can_transition_to(instance_id, to_state, actor_role)

    def get_automation_candidates(self, instance_id: str,
                                  trigger: Optional[AutomationTrigger] = None) -> List[WorkflowTransition]:
        return self.executor.get_automation_candidates(instance_id, trigger)

    def execute_transition(self, instance_id: str, transition_id: str, actor_id: str,
                           actor_name: str, comments: Optional[str] = None,
                           actor_role: Optional[str] = None,
                           automated: bool = False) -> WorkflowInstance:
        return self.executor.execute_transition(instance_id, transition_id, actor_id, actor_name,
                                                comments, actor_role, automated)

    # Actions

    def register_action_handler(self, action_type: str, handler: Union[ActionHandler, Callable]) -> None:
        self.actions.register(action_type, handler)

    def wait_for_actions(self, timeout: Optional[float] = None) -> bool:
        """Wait for background action dispatches to finish"""
        return self.actions.wait(timeout)

    # Metrics

    def get_metrics(self, workflow_id: str) -> WorkflowMetrics:
        metrics = self.metrics.get_metrics(workflow_id)
        definition = self.registry.find(workflow_id)
        if definition is not None:
            metrics.workflow_name = definition.name
        return metrics

    def get_all_metrics(self) -> List[WorkflowMetrics]:
        """Metrics for every registered workflow, ordered like list_workflows"""
        return self.metrics.get_all_metrics(self.registry.list())

    # Lifecycle

    def restore(self) -> Dict[str, int]:
        """Reload persisted definitions and instances into memory"""
        definitions = self.registry.load(self.repository.load_definitions())
        instances = self.store.load(self.repository.load_instances())
        log_action(self.logger, "info", "Workflow engine state restored", action="restore",
                   extra={"definitions": definitions, "instances": instances})
        return {"definitions": definitions, "instances": instances}

    def close(self) -> None:
        """Drain background actions and release resources"""
        self.actions.shutdown(wait=True)
        self.storage.close()

    def __enter__(self) -> 'WorkflowEngine':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
