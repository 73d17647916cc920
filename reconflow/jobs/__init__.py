"""Background document processing jobs and their event stream."""

from .events import EventBus, Subscription
from .tracker import ProcessingJobTracker, workflow_for

__all__ = ["EventBus", "Subscription", "ProcessingJobTracker", "workflow_for"]
