from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import logging

from pm_engine.core.config import settings
from pm_engine.core.container import ServiceContainer, build_services
from pm_engine.core.firebase_init import get_firebase_status
from pm_engine.core.scheduler import start_scheduler, stop_scheduler
from pm_engine.routers import escalations, pm

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    app = FastAPI(
        title="CMMS PM Engine",
        description="Preventive maintenance scheduling, compliance and escalation",
        version="1.0.0"
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        """Build the services once and start the periodic jobs"""
        logger.info("🚀 FastAPI startup event triggered")
        if app.state.services is None:
            app.state.services = build_services(settings)
        start_scheduler(app.state.services)

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("⛔ FastAPI shutdown event triggered")
        if app.state.services is not None:
            stop_scheduler(app.state.services)

    @app.get("/health")
    async def health_check():
        services = app.state.services
        automation = services.automation_service.get_status() if services else None
        return {
            "status": "healthy",
            "store_backend": settings.STORE_BACKEND,
            "firebase": get_firebase_status(),
            "pm_automation_running": automation.is_running if automation else False,
        }

    app.include_router(pm.router)
    app.include_router(escalations.router)
    logger.info("✅ Routers loaded: /pm, /escalations")
    return app


app = create_app()
