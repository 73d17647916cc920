"""Utility modules."""

from .config import get_settings, Settings, RECONCILIATION_RULES, VALIDATION_RULES, JOB_PROGRESS

__all__ = ["get_settings", "Settings", "RECONCILIATION_RULES", "VALIDATION_RULES", "JOB_PROGRESS"]
