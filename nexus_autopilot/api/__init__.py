"""
EventNexus Autopilot - HTTP API
"""
