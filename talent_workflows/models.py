"""
Workflow Data Model Module

Definitions (states, guarded transitions, actions, settings) are immutable
once built; instances are the mutable runtime records the engine drives
through those definitions. Every type converts to and from plain dictionaries
for storage.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import copy


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Milliseconds between two datetimes"""
    return int(round((end - start).total_seconds() * 1000))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class ConditionType(Enum):
    """Kinds of transition guards"""
    FIELD = "field"
    ROLE = "role"
    TIME = "time"


class ConditionOperator(Enum):
    """Comparison operators available to guards"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"
    EXISTS = "exists"


# Operators each condition type accepts
VALID_OPERATORS = {
    ConditionType.FIELD: frozenset(ConditionOperator),
    ConditionType.ROLE: frozenset({ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS, ConditionOperator.IN}),
    ConditionType.TIME: frozenset({ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN}),
}


class ActionType(Enum):
    """Action tags known to the engine"""
    UPDATE_FIELD = "update_field"
    ASSIGN_USER = "assign_user"
    EMAIL = "email"
    NOTIFICATION = "notification"
    WEBHOOK = "webhook"
    CREATE_TASK = "create_task"


BUILTIN_ACTION_TYPES = frozenset({ActionType.UPDATE_FIELD, ActionType.ASSIGN_USER})
CUSTOM_ACTION_PREFIX = "custom:"


def is_custom_action_tag(tag: str) -> bool:
    """True for ``custom:<name>`` tags with a non-empty name"""
    return tag.startswith(CUSTOM_ACTION_PREFIX) and len(tag) > len(CUSTOM_ACTION_PREFIX)


class StateType(Enum):
    """Informational role of a state in its workflow"""
    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    FINAL = "final"
    ERROR = "error"


class AutomationTrigger(Enum):
    """What external signal should fire an automated transition"""
    TIME = "time"
    EVENT = "event"
    CONDITION = "condition"


@dataclass(frozen=True)
class WorkflowState:
    """A node of the workflow graph"""
    id: str
    label: str
    color: str = "#94a3b8"
    is_active: bool = True
    description: str = ""
    state_type: StateType = StateType.INTERMEDIATE

    def __post_init__(self):
        if not isinstance(self.state_type, StateType):
            object.__setattr__(self, 'state_type', StateType(self.state_type))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'color': self.color,
            'is_active': self.is_active,
            'description': self.description,
            'state_type': self.state_type.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowState':
        return cls(
            id=data['id'],
            label=data.get('label', data['id']),
            color=data.get('color', "#94a3b8"),
            is_active=data.get('is_active', True),
            description=data.get('description', ""),
            state_type=StateType(data.get('state_type', StateType.INTERMEDIATE.value))
        )


@dataclass(frozen=True)
class WorkflowCondition:
    """Guard predicate evaluated against an instance"""
    type: ConditionType
    operator: ConditionOperator
    field: Optional[str] = None
    value: Any = None
    id: str = ""

    def __post_init__(self):
        if not isinstance(self.type, ConditionType):
            object.__setattr__(self, 'type', ConditionType(self.type))
        if not isinstance(self.operator, ConditionOperator):
            object.__setattr__(self, 'operator', ConditionOperator(self.operator))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'operator': self.operator.value,
            'field': self.field,
            'value': self.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowCondition':
        return cls(
            type=ConditionType(data['type']),
            operator=ConditionOperator(data['operator']),
            field=data.get('field'),
            value=data.get('value'),
            id=data.get('id', "")
        )


@dataclass(frozen=True)
class WorkflowAction:
    """Side effect triggered when a transition executes"""
    id: str
    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.type, ActionType):
            object.__setattr__(self, 'type', self.type.value)

    @property
    def action_type(self) -> Optional[ActionType]:
        """Known action type, or None for custom tags"""
        try:
            return ActionType(self.type)
        except ValueError:
            return None

    @property
    def is_builtin(self) -> bool:
        return self.action_type in BUILTIN_ACTION_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'type': self.type, 'config': copy.deepcopy(self.config)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowAction':
        return cls(id=data['id'], type=data['type'], config=dict(data.get('config') or {}))


@dataclass(frozen=True)
class WorkflowTransition:
    """Directed, optionally guarded, optionally side-effecting edge"""
    id: str
    name: str
    from_state: str
    to_state: str
    label: str = ""
    description: str = ""
    conditions: Tuple[WorkflowCondition, ...] = ()
    actions: Tuple[WorkflowAction, ...] = ()
    requires_approval: bool = False
    approval_roles: Tuple[str, ...] = ()
    automated: bool = False
    automation_trigger: Optional[AutomationTrigger] = None

    def __post_init__(self):
        object.__setattr__(self, 'conditions', tuple(self.conditions))
        object.__setattr__(self, 'actions', tuple(self.actions))
        object.__setattr__(self, 'approval_roles', tuple(self.approval_roles))
        if not self.label:
            object.__setattr__(self, 'label', self.name)
        if self.automation_trigger is not None and not isinstance(self.automation_trigger, AutomationTrigger):
            object.__setattr__(self, 'automation_trigger', AutomationTrigger(self.automation_trigger))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'from_state': self.from_state,
            'to_state': self.to_state,
            'label': self.label,
            'description': self.description,
            'conditions': [c.to_dict() for c in self.conditions],
            'actions': [a.to_dict() for a in self.actions],
            'requires_approval': self.requires_approval,
            'approval_roles': list(self.approval_roles),
            'automated': self.automated,
            'automation_trigger': self.automation_trigger.value if self.automation_trigger else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowTransition':
        trigger = data.get('automation_trigger')
        return cls(
            id=data['id'],
            name=data['name'],
            from_state=data['from_state'],
            to_state=data['to_state'],
            label=data.get('label', ""),
            description=data.get('description', ""),
            conditions=tuple(WorkflowCondition.from_dict(c) for c in data.get('conditions', [])),
            actions=tuple(WorkflowAction.from_dict(a) for a in data.get('actions', [])),
            requires_approval=data.get('requires_approval', False),
            approval_roles=tuple(data.get('approval_roles', [])),
            automated=data.get('automated', False),
            automation_trigger=AutomationTrigger(trigger) if trigger else None
        )


@dataclass(frozen=True)
class WorkflowSettings:
    """Per-definition behaviour switches"""
    allow_skip_states: bool = False  # stored only; the executor never skips states
    require_comments: bool = False
    track_history: bool = True
    notify_on_transition: bool = False
    sla_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allow_skip_states': self.allow_skip_states,
            'require_comments': self.require_comments,
            'track_history': self.track_history,
            'notify_on_transition': self.notify_on_transition,
            'sla_days': self.sla_days
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowSettings':
        return cls(
            allow_skip_states=data.get('allow_skip_states', False),
            require_comments=data.get('require_comments', False),
            track_history=data.get('track_history', True),
            notify_on_transition=data.get('notify_on_transition', False),
            sla_days=data.get('sla_days')
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable template of states, transitions and settings"""
    id: str
    name: str
    entity_type: str
    states: Tuple[WorkflowState, ...]
    transitions: Tuple[WorkflowTransition, ...]
    initial_state: str
    final_states: Tuple[str, ...]
    version: str = "1.0"
    description: str = ""
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    is_active: bool = True
    created_by: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        object.__setattr__(self, 'states', tuple(self.states))
        object.__setattr__(self, 'transitions', tuple(self.transitions))
        object.__setattr__(self, 'final_states', tuple(self.final_states))

    def state_ids(self) -> List[str]:
        return [state.id for state in self.states]

    def get_state(self, state_id: str) -> Optional[WorkflowState]:
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def get_transition(self, transition_id: str) -> Optional[WorkflowTransition]:
        for transition in self.transitions:
            if transition.id == transition_id:
                return transition
        return None

    def transitions_from(self, state_id: str) -> List[WorkflowTransition]:
        """Declared outbound edges of a state, in declaration order"""
        return [t for t in self.transitions if t.from_state == state_id]

    def is_final(self, state_id: str) -> bool:
        return state_id in self.final_states

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'entity_type': self.entity_type,
            'version': self.version,
            'description': self.description,
            'states': [s.to_dict() for s in self.states],
            'transitions': [t.to_dict() for t in self.transitions],
            'initial_state': self.initial_state,
            'final_states': list(self.final_states),
            'settings': self.settings.to_dict(),
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowDefinition':
        return cls(
            id=data['id'],
            name=data['name'],
            entity_type=data['entity_type'],
            version=data.get('version', "1.0"),
            description=data.get('description', ""),
            states=tuple(WorkflowState.from_dict(s) for s in data.get('states', [])),
            transitions=tuple(WorkflowTransition.from_dict(t) for t in data.get('transitions', [])),
            initial_state=data['initial_state'],
            final_states=tuple(data.get('final_states', [])),
            settings=WorkflowSettings.from_dict(data.get('settings') or {}),
            is_active=data.get('is_active', True),
            created_by=data.get('created_by', ""),
            created_at=_parse(data.get('created_at')) or utc_now()
        )


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    """Immutable audit record of one state change"""
    id: str
    timestamp: datetime
    from_state: str
    to_state: str
    transition_name: str
    performed_by: str
    performed_by_name: str
    comments: Optional[str] = None
    automated: bool = False
    duration: Optional[int] = None  # ms spent in from_state; None for the seed entry
    transition_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': _iso(self.timestamp),
            'from_state': self.from_state,
            'to_state': self.to_state,
            'transition_name': self.transition_name,
            'performed_by': self.performed_by,
            'performed_by_name': self.performed_by_name,
            'comments': self.comments,
            'automated': self.automated,
            'duration': self.duration,
            'transition_id': self.transition_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowHistoryEntry':
        return cls(
            id=data['id'],
            timestamp=_parse(data['timestamp']),
            from_state=data['from_state'],
            to_state=data['to_state'],
            transition_name=data['transition_name'],
            performed_by=data['performed_by'],
            performed_by_name=data['performed_by_name'],
            comments=data.get('comments'),
            automated=data.get('automated', False),
            duration=data.get('duration'),
            transition_id=data.get('transition_id')
        )


@dataclass
class WorkflowInstance:
    """One running execution of a definition, bound to one business entity"""
    id: str
    workflow_id: str
    entity_type: str
    entity_id: str
    current_state: str
    started_at: datetime
    history: List[WorkflowHistoryEntry] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    previous_state: Optional[str] = None
    completed_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    sla_deadline: Optional[datetime] = None
    is_overdue: bool = False
    # Definition snapshot resolved at creation; unregistering the workflow
    # or re-registering its id does not change how this instance behaves.
    definition: Optional[WorkflowDefinition] = field(default=None, repr=False, compare=False)

    @property
    def last_entry(self) -> WorkflowHistoryEntry:
        return self.history[-1]

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def time_in_current_state(self, now: Optional[datetime] = None) -> int:
        """Milliseconds since the last recorded state change"""
        return elapsed_ms(self.last_entry.timestamp, now or utc_now())

    def snapshot(self) -> 'WorkflowInstance':
        """Independent copy; history entries and the definition are immutable and shared"""
        return replace(
            self,
            history=list(self.history),
            metadata=copy.deepcopy(self.metadata)
        )

    def to_dict(self, include_definition: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'workflow_id': self.workflow_id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'current_state': self.current_state,
            'previous_state': self.previous_state,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'assigned_to': self.assigned_to,
            'assigned_to_name': self.assigned_to_name,
            'sla_deadline': _iso(self.sla_deadline),
            'is_overdue': self.is_overdue,
            'history': [entry.to_dict() for entry in self.history],
            'metadata': copy.deepcopy(self.metadata)
        }
        if include_definition and self.definition is not None:
            data['definition'] = self.definition.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowInstance':
        definition_data = data.get('definition')
        return cls(
            id=data['id'],
            workflow_id=data['workflow_id'],
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            current_state=data['current_state'],
            previous_state=data.get('previous_state'),
            started_at=_parse(data['started_at']),
            completed_at=_parse(data.get('completed_at')),
            assigned_to=data.get('assigned_to'),
            assigned_to_name=data.get('assigned_to_name'),
            sla_deadline=_parse(data.get('sla_deadline')),
            is_overdue=data.get('is_overdue', False),
            history=[WorkflowHistoryEntry.from_dict(e) for e in data.get('history', [])],
            metadata=dict(data.get('metadata') or {}),
            definition=WorkflowDefinition.from_dict(definition_data) if definition_data else None
        )


@dataclass
class WorkflowMetrics:
    """Operational statistics for one workflow"""
    workflow_id: str
    workflow_name: str = ""
    total_instances: int = 0
    active_instances: int = 0
    completed_instances: int = 0
    average_duration_hours: float = 0.0
    overdue_instances: int = 0
    sla_compliance: float = 100.0  # percent of SLA-tracked instances not overdue
    transition_counts: Dict[str, int] = field(default_factory=dict)
    bottleneck_states: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'workflow_id': self.workflow_id,
            'workflow_name': self.workflow_name,
            'total_instances': self.total_instances,
            'active_instances': self.active_instances,
            'completed_instances': self.completed_instances,
            'average_duration_hours': self.average_duration_hours,
            'overdue_instances': self.overdue_instances,
            'sla_compliance': self.sla_compliance,
            'transition_counts': dict(self.transition_counts),
            'bottleneck_states': [dict(item) for item in self.bottleneck_states]
        }
