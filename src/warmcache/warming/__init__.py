"""
Background cache warming.

- idle.py: foreground in-flight counter used as the idle signal
- scheduler.py: priority queue with bounded concurrency
- planner.py: caller-side task generation from context and predictions
"""

from warmcache.warming.idle import InFlightCounter
from warmcache.warming.planner import (
    RouteLayout,
    WarmingContext,
    listing_key,
    plan_context_tasks,
    plan_first_visit_tasks,
    prediction_to_task,
)
from warmcache.warming.scheduler import SchedulerStats, WarmingScheduler

__all__ = [
    "InFlightCounter",
    "RouteLayout",
    "SchedulerStats",
    "WarmingContext",
    "WarmingScheduler",
    "listing_key",
    "plan_context_tasks",
    "plan_first_visit_tasks",
    "prediction_to_task",
]
