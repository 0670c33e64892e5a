# priority_service/core/monitoring.py
"""
Prometheus metrics for the prioritization engine.

Labels never include user ids; per-user cardinality belongs in the logs.
"""

import time
from typing import Any, Dict

from prometheus_client import Counter, Histogram

INTERACTIONS_RECORDED = Counter(
    'priority_interactions_recorded_total',
    'Total number of task interactions recorded',
    ['task_type']
)

TRAINING_RUNS = Counter(
    'priority_model_training_runs_total',
    'Model training attempts by outcome',
    ['outcome']
)

TRAINING_DURATION = Histogram(
    'priority_model_training_duration_seconds',
    'Time spent training a priority model'
)

TRAINING_DISPATCHES = Counter(
    'priority_training_dispatches_total',
    'Retrain requests published after an interaction write',
    ['mode', 'outcome']
)

SCORING_DURATION = Histogram(
    'priority_scoring_duration_seconds',
    'Time spent scoring a task backlog',
    ['strategy']
)

TASKS_SCORED = Counter(
    'priority_tasks_scored_total',
    'Number of tasks scored',
    ['strategy', 'task_type']
)

SOURCE_FAILURES = Counter(
    'priority_task_source_failures_total',
    'Task source reads that failed and were excluded from aggregation',
    ['source']
)


class RequestMonitor:
    """In-process request statistics reported by the health endpoint"""

    def __init__(self):
        self.requests_total = 0
        self.errors_total = 0
        self.response_times = []
        self.start_time = time.time()

    def record_request(self, response_time: float, status_code: int):
        self.requests_total += 1
        self.response_times.append(response_time)
        if status_code >= 500:
            self.errors_total += 1

        # Keep only last 1000 response times
        if len(self.response_times) > 1000:
            self.response_times = self.response_times[-1000:]

    def get_health_status(self) -> Dict[str, Any]:
        avg_response_time = (
            sum(self.response_times) / len(self.response_times)
            if self.response_times else 0
        )
        error_rate = self.errors_total / max(1, self.requests_total)

        return {
            'status': 'healthy' if error_rate < 0.1 else 'degraded',
            'uptime_seconds': time.time() - self.start_time,
            'requests_total': self.requests_total,
            'errors_total': self.errors_total,
            'error_rate': error_rate,
            'avg_response_time_ms': avg_response_time * 1000
        }
