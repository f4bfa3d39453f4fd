"""
Workflow Repository Module

Persistence provider for definitions and instances on top of a StorageInterface.
"""

from typing import List

from .models import WorkflowDefinition, WorkflowInstance
from .storage import StorageInterface


class WorkflowRepository:
    """Saves and restores workflow definitions and instances"""

    DEFINITIONS_TABLE = "workflow_definitions"
    INSTANCES_TABLE = "workflow_instances"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def save_definition(self, definition: WorkflowDefinition) -> None:
        self.storage.save(self.DEFINITIONS_TABLE, definition.id, definition.to_dict())

    def delete_definition(self, workflow_id: str) -> bool:
        return self.storage.delete(self.DEFINITIONS_TABLE, workflow_id)

    def load_definitions(self) -> List[WorkflowDefinition]:
        return [
            WorkflowDefinition.from_dict(data)
            for data in self.storage.load_all(self.DEFINITIONS_TABLE)
        ]

    def save_instance(self, instance: WorkflowInstance) -> None:
        self.storage.save(self.INSTANCES_TABLE, instance.id, instance.to_dict())

    def load_instances(self) -> List[WorkflowInstance]:
        return [
            WorkflowInstance.from_dict(data)
            for data in self.storage.load_all(self.INSTANCES_TABLE)
        ]
