"""Workflow execution."""

from .engine import WorkflowEngine, ExecutionState, StepListener

__all__ = ["WorkflowEngine", "ExecutionState", "StepListener"]
