"""
EventNexus Autopilot - Monitoring
"""

from .metrics import metrics, AutopilotMetrics

__all__ = ["metrics", "AutopilotMetrics"]
