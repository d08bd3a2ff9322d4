"""
EventNexus Autopilot - Core
===========================
Exceptions, logging, retry and settings shared by every component.
"""
