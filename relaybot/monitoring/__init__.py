"""
Monitoring package.

Health checks and the FastAPI app that exposes them.
"""

from .health import HealthChecker, HealthStatus, ComponentHealth, SystemHealth, create_health_app, create_health_server

__all__ = [
    'HealthChecker',
    'HealthStatus',
    'ComponentHealth',
    'SystemHealth',
    'create_health_app',
    'create_health_server'
]
