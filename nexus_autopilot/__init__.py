"""
EventNexus Autopilot
====================
Autonomous campaign optimization: pause losers, scale winners,
promote strong creative and surface opportunities for review.
"""

__version__ = "1.0.0"
