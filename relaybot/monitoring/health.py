"""
Health Check API Module

Health endpoints for the relay bot:

- Session transport state
- Message channel backlog
- Relay orchestrator activity
- Completion client error rate
- Host resources (CPU, memory, disk)

FastAPI-based, served in-process by uvicorn next to the bot.
"""

import asyncio
import contextlib
import os
import platform
import time
from datetime import datetime
from typing import Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from relaybot import __version__
from relaybot.transport.base import SessionState


class HealthStatus(str, Enum):
    """Health check status levels"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Individual component health information"""
    name: str
    status: HealthStatus
    message: str
    last_checked: datetime
    response_time_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None


class SystemHealth(BaseModel):
    """System-wide health response model"""
    status: HealthStatus
    timestamp: datetime
    uptime_seconds: float
    version: str = __version__
    components: Dict[str, ComponentHealth]
    system_info: Dict[str, Any]


class HealthChecker:
    """
    Aggregates component health for the running relay.

    Components are injected; any that are missing are simply not reported.
    """

    QUEUE_WARNING_RATIO = 0.8
    LLM_FAILURE_WARNING_RATIO = 0.5
    LLM_MIN_REQUESTS = 5

    def __init__(self, transport=None, channel=None, orchestrator=None, completion_client=None):
        self.start_time = time.time()
        self.transport = transport
        self.channel = channel
        self.orchestrator = orchestrator
        self.completion_client = completion_client

    async def get_system_health(self) -> SystemHealth:
        """Get system health status"""
        checks = {
            "system": self._check_system_resources(),
            "transport": self._check_transport(),
            "channel": self._check_channel(),
            "orchestrator": self._check_orchestrator(),
            "llm": self._check_llm(),
        }
        names = list(checks)
        results = await asyncio.gather(*checks.values(), return_exceptions=True)

        components: Dict[str, ComponentHealth] = {}
        for name, result in zip(names, results):
            if isinstance(result, ComponentHealth):
                components[name] = result
            elif isinstance(result, Exception):
                components[name] = ComponentHealth(
                    name=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"Health check failed: {str(result)}",
                    last_checked=datetime.now()
                )

        return SystemHealth(
            status=self._determine_overall_status(components),
            timestamp=datetime.now(),
            uptime_seconds=time.time() - self.start_time,
            components=components,
            system_info=self._get_system_info()
        )

    async def _check_system_resources(self) -> Optional[ComponentHealth]:
        """Check system resource utilization"""
        start_time = time.time()

        cpu_percent = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')

        issues = []
        if cpu_percent > 80.0:
            issues.append(f"High CPU usage: {cpu_percent:.1f}%")
        if memory.percent > 85.0:
            issues.append(f"High memory usage: {memory.percent:.1f}%")
        if disk.percent > 90.0:
            issues.append(f"High disk usage: {disk.percent:.1f}%")

        return ComponentHealth(
            name="system",
            status=HealthStatus.DEGRADED if issues else HealthStatus.HEALTHY,
            message=f"Resource warnings: {', '.join(issues)}" if issues else "System resources within normal limits",
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details={
                "cpu_percent": cpu_percent,
                "memory_percent": memory.percent,
                "disk_percent": disk.percent,
            }
        )

    async def _check_transport(self) -> Optional[ComponentHealth]:
        if self.transport is None:
            return None

        state = self.transport.state
        if state == SessionState.READY:
            status, message = HealthStatus.HEALTHY, "Session ready"
        elif state in (SessionState.CREATED, SessionState.AUTHENTICATING):
            status, message = HealthStatus.DEGRADED, f"Session {state.value}"
        else:
            status, message = HealthStatus.UNHEALTHY, f"Session {state.value}"

        return ComponentHealth(
            name="transport",
            status=status,
            message=message,
            last_checked=datetime.now(),
            details=self.transport.get_stats()
        )

    async def _check_channel(self) -> Optional[ComponentHealth]:
        if self.channel is None:
            return None

        stats = self.channel.get_stats()
        if not stats["running"]:
            status, message = HealthStatus.UNHEALTHY, "Message channel stopped"
        elif stats["queue_size"] >= stats["max_queue_size"] * self.QUEUE_WARNING_RATIO:
            status, message = HealthStatus.DEGRADED, f"Message backlog: {stats['queue_size']}"
        else:
            status, message = HealthStatus.HEALTHY, "Message channel accepting messages"

        return ComponentHealth(
            name="channel",
            status=status,
            message=message,
            last_checked=datetime.now(),
            details=stats
        )

    async def _check_orchestrator(self) -> Optional[ComponentHealth]:
        if self.orchestrator is None:
            return None

        stats = self.orchestrator.get_stats()
        running = stats.get("running", False)
        return ComponentHealth(
            name="orchestrator",
            status=HealthStatus.HEALTHY if running else HealthStatus.UNHEALTHY,
            message="Relay consumer running" if running else "Relay consumer not running",
            last_checked=datetime.now(),
            details=stats
        )

    async def _check_llm(self) -> Optional[ComponentHealth]:
        if self.completion_client is None:
            return None

        stats = self.completion_client.get_stats()
        total = stats.get("total_requests", 0)
        failed = stats.get("failed_requests", 0)

        if total >= self.LLM_MIN_REQUESTS and failed / total >= self.LLM_FAILURE_WARNING_RATIO:
            status = HealthStatus.DEGRADED
            message = f"High completion failure rate: {failed}/{total}"
        else:
            status = HealthStatus.HEALTHY
            message = "Completion client operational"

        # Never expose credentials
        return ComponentHealth(
            name="llm",
            status=status,
            message=message,
            last_checked=datetime.now(),
            details=stats
        )

    def _determine_overall_status(self, components: Dict[str, ComponentHealth]) -> HealthStatus:
        """Determine overall system health from component statuses"""
        if not components:
            return HealthStatus.UNHEALTHY

        statuses = [comp.status for comp in components.values()]

        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            return HealthStatus.DEGRADED
        else:
            return HealthStatus.HEALTHY

    def _get_system_info(self) -> Dict[str, Any]:
        """Get basic system information"""
        return {
            "python_version": platform.python_version(),
            "platform": platform.system(),
            "pid": os.getpid(),
            "cpu_count": psutil.cpu_count(),
        }


def create_health_app(health_checker: HealthChecker) -> FastAPI:
    """Build the FastAPI application serving health endpoints."""
    app = FastAPI(
        title="Relay Bot - Health Check API",
        description="Health monitoring endpoints for the WhatsApp AI relay bot",
        version=__version__,
    )
    app.state.health_checker = health_checker

    @app.get("/health", response_model=SystemHealth)
    async def health_check(request: Request):
        """Full system health including every component."""
        try:
            return await request.app.state.health_checker.get_system_health()
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")

    @app.get("/health/simple")
    async def simple_health(request: Request):
        """
        Simple health check for load balancers

        Returns 200 OK if system is healthy, 503 if degraded/unhealthy
        """
        try:
            health_status = await request.app.state.health_checker.get_system_health()
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")

        if health_status.status != HealthStatus.HEALTHY:
            raise HTTPException(
                status_code=503,
                detail=f"System status: {health_status.status.value}"
            )
        return {"status": "healthy", "timestamp": health_status.timestamp}

    @app.get("/status")
    async def system_status(request: Request):
        """Operational counters without running the resource checks."""
        checker = request.app.state.health_checker
        return {
            "version": __version__,
            "uptime_seconds": time.time() - checker.start_time,
            "transport": checker.transport.get_stats() if checker.transport else None,
            "channel": checker.channel.get_stats() if checker.channel else None,
            "orchestrator": checker.orchestrator.get_stats() if checker.orchestrator else None,
            "llm": checker.completion_client.get_stats() if checker.completion_client else None,
        }

    return app


class HealthServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the bot process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def create_health_server(app: FastAPI, host: str, port: int) -> HealthServer:
    config = uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
    return HealthServer(config)
