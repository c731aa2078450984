from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import configure_logging
from .routes import cron_router, health_router, sites_router


def create_app() -> FastAPI:
    """
    Instantiate the FastAPI application and register routers.

    Registers:
    - cron: Scheduler trigger (``GET /api/cron/telemetry``)
    - sites: Sites, equipment, readings and connectivity status
    - health: Database and configuration check

    Returns:
        FastAPI: Configured application instance.

    Example:
        ```python
        app = create_app()
        uvicorn.run(app, host="0.0.0.0", port=8000)

        # Or use the pre-created instance
        from sim_site_telemetry.api.app import app
        ```
    """
    configure_logging()
    app = FastAPI(
        title="Site Telemetry Simulator API",
        version="0.1.0",
        description="Scheduled generation of battery, solar, grid and load telemetry for energy sites.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(cron_router)
    app.include_router(sites_router)
    app.include_router(health_router)

    return app


app = create_app()
