"""
Metrics and bottleneck analysis over committed history

Read-only: nothing in this module writes through the repositories.
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..exceptions import NotFoundError
from ..models.instance import InstanceStatus, WorkflowExecution, WorkflowInstance
from ..storage.repository import InstanceRepository, TemplateRepository


logger = logging.getLogger(__name__)


@dataclass
class WorkflowMetrics:
    template_id: str
    total_instances: int = 0
    completed_instances: int = 0
    completion_rate: float = 0.0
    # seconds
    avg_completion_time: Optional[float] = None
    status_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "total_instances": self.total_instances,
            "completed_instances": self.completed_instances,
            "completion_rate": self.completion_rate,
            "avg_completion_time": self.avg_completion_time,
            "status_counts": dict(self.status_counts)
        }


@dataclass
class StepDwell:
    step_id: str
    step_name: Optional[str]
    avg_dwell_time: float
    visits: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "avg_dwell_time": self.avg_dwell_time,
            "visits": self.visits
        }


@dataclass
class BottleneckReport:
    template_id: str
    threshold: float
    median_dwell_time: Optional[float] = None
    slow_steps: List[StepDwell] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "threshold": self.threshold,
            "median_dwell_time": self.median_dwell_time,
            "slow_steps": [s.to_dict() for s in self.slow_steps]
        }


def visit_dwell_times(instance: WorkflowInstance, executions: List[WorkflowExecution]) -> List[tuple]:
    """Pair consecutive history rows into ``(step_id, seconds)`` visits.

    A visit starts when the instance started (first row) or when the previous
    row was committed, and ends with the row that left the step. Rows written
    by an auto-advance chain are skipped; those steps never wait on anyone.
    """
    visits = []
    entered_at = instance.started_at
    for execution in sorted(executions, key=lambda e: e.sequence):
        if not execution.metadata.get("auto_advance"):
            dwell = (execution.created_at - entered_at).total_seconds()
            visits.append((execution.step_id, max(dwell, 0.0)))
        entered_at = execution.created_at
    return visits


class MetricsAnalyzer:
    """Aggregates instance outcomes and per-step dwell times"""

    def __init__(
        self,
        template_repository: TemplateRepository,
        instance_repository: InstanceRepository,
        bottleneck_threshold: float = 1.5
    ):
        self.template_repository = template_repository
        self.instance_repository = instance_repository
        self.bottleneck_threshold = bottleneck_threshold

    async def get_metrics(
        self,
        template_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> WorkflowMetrics:
        """Completion statistics for instances started within ``[start, end]``.

        Instances still in progress or finished any other way count towards
        the total but not towards the completion time average.
        """
        await self._require_template(template_id)
        instances = await self.instance_repository.list_instances(
            template_id=template_id, started_from=start, started_to=end
        )

        metrics = WorkflowMetrics(template_id=template_id, total_instances=len(instances))
        for instance in instances:
            key = instance.status.value
            metrics.status_counts[key] = metrics.status_counts.get(key, 0) + 1

        completed = [i for i in instances if i.status == InstanceStatus.COMPLETED]
        metrics.completed_instances = len(completed)
        if instances:
            metrics.completion_rate = len(completed) / len(instances)
        if completed:
            metrics.avg_completion_time = statistics.mean(i.duration for i in completed)
        return metrics

    async def get_bottlenecks(self, template_id: str, threshold: Optional[float] = None) -> BottleneckReport:
        """Steps whose average dwell time exceeds ``threshold`` x the median visit"""
        template = await self._require_template(template_id)
        threshold = self.bottleneck_threshold if threshold is None else threshold
        report = BottleneckReport(template_id=template_id, threshold=threshold)

        instances = await self.instance_repository.list_instances(template_id=template_id)
        if not instances:
            return report

        executions = await self.instance_repository.list_executions([i.id for i in instances])
        by_instance = defaultdict(list)
        for execution in executions:
            by_instance[execution.instance_id].append(execution)

        per_step = defaultdict(list)
        all_visits = []
        for instance in instances:
            for step_id, dwell in visit_dwell_times(instance, by_instance.get(instance.id, [])):
                per_step[step_id].append(dwell)
                all_visits.append(dwell)

        if not all_visits:
            return report

        report.median_dwell_time = statistics.median(all_visits)
        limit = threshold * report.median_dwell_time
        for step_id, dwells in per_step.items():
            average = statistics.mean(dwells)
            if average > limit:
                step = template.get_step(step_id)
                report.slow_steps.append(StepDwell(
                    step_id=step_id,
                    step_name=step.name if step else None,
                    avg_dwell_time=average,
                    visits=len(dwells)
                ))

        report.slow_steps.sort(key=lambda s: s.avg_dwell_time, reverse=True)
        logger.debug(
            f"Bottlenecks for template {template_id}: {len(report.slow_steps)} slow step(s) "
            f"over {len(all_visits)} visits"
        )
        return report

    async def _require_template(self, template_id: str):
        template = await self.template_repository.get_template(template_id)
        if not template:
            raise NotFoundError("Template", template_id)
        return template
