"""
EventNexus Autopilot - Automation
=================================
Autonomous campaign optimization: evaluate, act, flag, roll back.
"""

from .models import (
    ActionStatus,
    ActionType,
    AutonomousAction,
    AutonomousRule,
    Campaign,
    CampaignStatus,
    OpportunityStatus,
    OpportunityType,
    OptimizationOpportunity,
    PerformanceSnapshot,
    Severity,
)

__all__ = [
    "ActionStatus",
    "ActionType",
    "AutonomousAction",
    "AutonomousRule",
    "Campaign",
    "CampaignStatus",
    "OpportunityStatus",
    "OpportunityType",
    "OptimizationOpportunity",
    "PerformanceSnapshot",
    "Severity",
]
