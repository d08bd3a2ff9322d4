"""
EventNexus Autopilot - Integrations
Backends the engine talks to: campaign storage and social publishing.
"""
