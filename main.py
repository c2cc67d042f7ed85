import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth import auth_router
from config import get_settings
from database import init_db
from errors import register_error_handlers
from logging_config import configure_logging, install_request_logging
from reports import report_router
from router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    init_db()

    app = FastAPI(title="Expense Tracker API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_request_logging(app)
    register_error_handlers(app)

    app.include_router(auth_router, prefix="/api/auth", tags=["authentication"])
    app.include_router(router, prefix="/api", tags=["expenses"])
    app.include_router(report_router, prefix="/api/reports", tags=["reports"])

    @app.get("/")
    def home():
        return {"success": True, "message": "Welcome to Expense Tracker API"}

    @app.get("/api/health")
    def health():
        return {
            "status": "OK",
            "message": "Expense Tracker API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    logger.info("Expense Tracker API ready", extra={"component": "app"})
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=4000)
