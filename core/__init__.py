"""
Pulse core - draw clock, campaign progress and the rolling price telemetry cache.
"""
