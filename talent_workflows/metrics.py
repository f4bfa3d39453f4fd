"""
Metrics Aggregator Module

Read-only operational statistics computed from instance snapshots.
"""

from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from .instances import InstanceStore
from .models import WorkflowDefinition, WorkflowInstance, WorkflowMetrics, utc_now


MS_PER_HOUR = 1000 * 60 * 60


def is_past_sla(instance: WorkflowInstance, now: datetime) -> bool:
    """Completed instances are judged at completion time, active ones at ``now``"""
    if instance.sla_deadline is None:
        return False
    reference = instance.completed_at or now
    return reference > instance.sla_deadline


class MetricsAggregator:
    """Computes WorkflowMetrics for one workflow at a time"""

    def __init__(self, store: InstanceStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def get_metrics(self, workflow_id: str, now: Optional[datetime] = None) -> WorkflowMetrics:
        """
        Aggregate statistics for every instance of a workflow

        Args:
            workflow_id: Workflow definition id; unknown ids yield zero counts
            now: Reference time for SLA checks on active instances

        Returns:
            WorkflowMetrics
        """
        now = now or self.clock()
        instances = self.store.list(workflow_id)

        completed = [i for i in instances if i.completed_at is not None]
        active = len(instances) - len(completed)

        average_hours = 0.0
        if completed:
            total_ms = sum(
                (i.completed_at - i.started_at).total_seconds() * 1000 for i in completed
            )
            average_hours = total_ms / len(completed) / MS_PER_HOUR

        tracked = [i for i in instances if i.sla_deadline is not None]
        overdue = sum(1 for i in tracked if is_past_sla(i, now))
        compliance = 100.0
        if tracked:
            compliance = round((len(tracked) - overdue) / len(tracked) * 100, 2)

        return WorkflowMetrics(
            workflow_id=workflow_id,
            total_instances=len(instances),
            active_instances=active,
            completed_instances=len(completed),
            average_duration_hours=average_hours,
            overdue_instances=overdue,
            sla_compliance=compliance,
            transition_counts=self._transition_counts(instances),
            bottleneck_states=self._bottleneck_states(instances)
        )

    def get_all_metrics(self, definitions: Iterable[WorkflowDefinition],
                        now: Optional[datetime] = None) -> List[WorkflowMetrics]:
        """Metrics for each definition, named and measured against one reference time"""
        now = now or self.clock()
        results = []
        for definition in definitions:
            metrics = self.get_metrics(definition.id, now)
            metrics.workflow_name = definition.name
            results.append(metrics)
        return results

    def _transition_counts(self, instances: List[WorkflowInstance]) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for instance in instances:
            for entry in instance.history:
                if entry.transition_id:
                    counts[entry.transition_id] += 1
        return dict(sorted(counts.items()))

    def _bottleneck_states(self, instances: List[WorkflowInstance]) -> List[Dict[str, object]]:
        # Each history duration is time spent in the entry's from_state
        durations: Dict[str, List[int]] = defaultdict(list)
        for instance in instances:
            for entry in instance.history:
                if entry.duration is not None and entry.from_state:
                    durations[entry.from_state].append(entry.duration)

        states = [
            {
                "state": state,
                "average_duration_ms": sum(values) / len(values),
                "average_duration_hours": sum(values) / len(values) / MS_PER_HOUR,
                "exits": len(values)
            }
            for state, values in durations.items()
        ]
        states.sort(key=lambda s: (-s["average_duration_ms"], s["state"]))
        return states
