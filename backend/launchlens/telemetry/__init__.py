"""
launchlens telemetry
====================

Sentry is the only backend; every helper is a no-op until SENTRY_DSN is set.

    from launchlens.telemetry import init_observability, capture_exception

    init_observability()  # API app factory and worker entrypoint
"""

from launchlens.telemetry.sentry import (
    init_sentry,
    capture_exception,
    capture_message,
)


def init_observability() -> dict:
    """Initialize error tracking; returns which backends came up, e.g. {"sentry": False}."""
    return {"sentry": init_sentry()}


__all__ = [
    "init_observability",
    "init_sentry",
    "capture_exception",
    "capture_message",
]
