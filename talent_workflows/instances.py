"""
Instance Store Module

Owns the live workflow instances. Each instance has its own lock; the store's
index lock only protects the dictionaries and is never held while a
transition runs. Readers always get copies, and writers commit by persisting
a finished working copy and then swapping it in.
"""

import itertools
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .errors import NotFoundError
from .logging_config import get_logger, log_action
from .models import WorkflowDefinition, WorkflowHistoryEntry, WorkflowInstance, utc_now
from .repository import WorkflowRepository


INITIAL_TRANSITION_NAME = "Initial State"


class InstanceStore:
    """Thread-safe store and lifecycle manager for workflow instances"""

    _sequence = itertools.count(1)
    _sequence_lock = threading.Lock()

    def __init__(self, repository: Optional[WorkflowRepository] = None,
                 system_actor_id: str = "system", system_actor_name: str = "System"):
        self.repository = repository
        self.system_actor_id = system_actor_id
        self.system_actor_name = system_actor_name
        self._instances: Dict[str, WorkflowInstance] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._index_lock = threading.Lock()
        self.logger = get_logger("talent_workflows.instances")

    @classmethod
    def _next_sequence(cls) -> int:
        with cls._sequence_lock:
            return next(cls._sequence)

    def new_instance_id(self, entity_type: str, entity_id: str, now: datetime) -> str:
        """Readable id unique within the process even for identical timestamps"""
        epoch_ms = int(now.timestamp() * 1000)
        return f"{entity_type}_{entity_id}_{epoch_ms}_{self._next_sequence()}"

    def create(self, definition: WorkflowDefinition, entity_type: str, entity_id: str,
               assigned_to: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
               now: Optional[datetime] = None) -> WorkflowInstance:
        """
        Start a new instance in the definition's initial state

        Args:
            definition: Definition the instance follows; embedded as a snapshot
            entity_type: Business entity kind, e.g. candidate or timesheet
            entity_id: Business entity id
            assigned_to: Optional owner; the seed entry is always performed by the system actor
            metadata: Initial metadata, copied
            now: Creation time (defaults to current UTC time)

        Returns:
            Copy of the stored instance
        """
        now = now or utc_now()
        instance_id = self.new_instance_id(entity_type, entity_id, now)

        seed = WorkflowHistoryEntry(
            id=str(uuid.uuid4()),
            timestamp=now,
            from_state="",
            to_state=definition.initial_state,
            transition_name=INITIAL_TRANSITION_NAME,
            performed_by=self.system_actor_id,
            performed_by_name=self.system_actor_name,
            automated=True
        )

        sla_deadline = None
        if definition.settings.sla_days:
            sla_deadline = now + timedelta(days=definition.settings.sla_days)

        instance = WorkflowInstance(
            id=instance_id,
            workflow_id=definition.id,
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=definition.initial_state,
            started_at=now,
            history=[seed],
            metadata=dict(metadata or {}),
            assigned_to=assigned_to,
            sla_deadline=sla_deadline,
            definition=definition
        )

        if self.repository:
            self.repository.save_instance(instance)
        with self._index_lock:
            self._instances[instance.id] = instance
            self._locks[instance.id] = threading.Lock()

        log_action(self.logger, "info", f"Created instance in state {instance.current_state}",
                   user_id=assigned_to, action="create_instance",
                   workflow_id=definition.id, instance_id=instance.id,
                   extra={"entity_type": entity_type, "entity_id": entity_id})
        return instance.snapshot()

    def find(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Copy of an instance, or None"""
        with self._index_lock:
            instance = self._instances.get(instance_id)
        return instance.snapshot() if instance else None

    def get(self, instance_id: str) -> WorkflowInstance:
        instance = self.find(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance {instance_id} not found", {"instance_id": instance_id})
        return instance

    def get_by_entity(self, entity_type: str, entity_id: str) -> List[WorkflowInstance]:
        """All instances bound to one business entity, oldest first"""
        with self._index_lock:
            matches = [
                i for i in self._instances.values()
                if i.entity_type == entity_type and i.entity_id == entity_id
            ]
        return [i.snapshot() for i in sorted(matches, key=lambda i: i.started_at)]

    def list(self, workflow_id: Optional[str] = None) -> List[WorkflowInstance]:
        with self._index_lock:
            instances = list(self._instances.values())
        if workflow_id is not None:
            instances = [i for i in instances if i.workflow_id == workflow_id]
        return [i.snapshot() for i in instances]

    def lock_for(self, instance_id: str) -> threading.Lock:
        """Per-instance lock serializing transitions on that instance"""
        with self._index_lock:
            lock = self._locks.get(instance_id)
        if lock is None:
            raise NotFoundError(f"Instance {instance_id} not found", {"instance_id": instance_id})
        return lock

    def replace(self, instance: WorkflowInstance) -> None:
        """Commit a finished working copy; caller must hold the instance lock"""
        if self.repository:
            self.repository.save_instance(instance)
        with self._index_lock:
            self._instances[instance.id] = instance

    def load(self, instances: List[WorkflowInstance]) -> int:
        """Restore persisted instances without writing them back"""
        with self._index_lock:
            for instance in instances:
                self._instances[instance.id] = instance
                self._locks.setdefault(instance.id, threading.Lock())
        self.logger.info(f"Restored {len(instances)} workflow instances")
        return len(instances)

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._instances)
