from __future__ import annotations

import logging

from fastapi import FastAPI

from . import db
from .api.recurring_payments import router as recurring_payments_api, system_router as system_api
from .core import config
from .services.cron_service import CronService
from .services.logging_service import configure_logging

logger = logging.getLogger(__name__)


def create_app(enable_cron: bool = config.CRON_ENABLED) -> FastAPI:
    app = FastAPI(title="Bookkeeper Recurring Payments", version="0.1.0")

    app.include_router(recurring_payments_api)
    app.include_router(system_api)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # --- lifecycle: init DB and start/stop cron ---
    @app.on_event("startup")
    def _on_startup() -> None:
        try:
            db.initialise_database()
        except Exception:
            logger.exception("Database initialization failed")
        if not enable_cron:
            logger.info("CronService disabled (CRON_ENABLED=0)")
            return
        try:
            cron = CronService()
            cron.start()
            app.state.cron = cron
        except Exception:
            logger.exception("CronService failed to start")

    @app.on_event("shutdown")
    def _on_shutdown() -> None:
        cron = getattr(app.state, "cron", None)
        if cron is not None:
            try:
                cron.stop()
            except Exception:
                logger.exception("CronService shutdown error")

    return app


configure_logging(config.LOG_DIR, production=config.IS_PRODUCTION)
app = create_app()
