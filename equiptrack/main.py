import os

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as me_router
from .routes.admin import router as admin_router
from .routes.sites import router as sites_router
from .routes.equipment_types import router as equipment_types_router
from .routes.equipment import router as equipment_router
from .routes.sign_outs import router as sign_outs_router
from .routes.usage import router as usage_router
from .routes.calibration_records import router as calibration_records_router
from .routes.equipment_requests import router as equipment_requests_router
from .routes.equipment_tested import router as equipment_tested_router


logger = structlog.get_logger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Malformed input is reported as 400 like every other validation failure
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Routers
    app.include_router(me_router)
    app.include_router(admin_router)
    app.include_router(sites_router)
    app.include_router(equipment_types_router)
    app.include_router(equipment_router)
    app.include_router(sign_outs_router)
    app.include_router(usage_router)
    app.include_router(calibration_records_router)
    app.include_router(equipment_requests_router)
    app.include_router(equipment_tested_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("database_tables_ready", tables=len(Base.metadata.tables))

    return app


app = create_app()
