"""
API route modules for the telemetry service.

- cron: Scheduler trigger running one telemetry batch
- sites: Site, equipment and reading access
- health: Liveness and configuration check
"""

from __future__ import annotations

from .cron import router as cron_router
from .health import router as health_router
from .sites import router as sites_router

__all__ = [
    "cron_router",
    "health_router",
    "sites_router",
]
