"""
EventNexus Autopilot - API Routes
"""
