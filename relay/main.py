import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relay.api.v1.router import api_v1_router
from relay.core.config import settings, validate_settings_for_production
from relay.core.exceptions import RelayError
from relay.core.logging import setup_logging
from relay.core.metrics import PrometheusMiddleware, metrics_response
from relay.core.sentry import init_sentry
from relay.gateway.gateway import RelayGateway

# Configure logging before anything else
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    init_sentry()
    logger.info("Starting Hugging Face relay...")
    app.state.gateway.start()

    yield

    # Shutdown
    await app.state.gateway.shutdown()
    logger.info("Hugging Face relay shut down")


async def _relay_error_handler(request: Request, exc: RelayError):
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Log unhandled exceptions with their traceback
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to process request", "message": f"{type(exc).__name__}: {exc}"},
    )


def create_app(gateway: RelayGateway | None = None) -> FastAPI:
    app = FastAPI(
        title="Hugging Face Relay",
        description="Multi-backend text generation relay with failover and response normalization",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.app_debug else None,
        redoc_url="/api/redoc" if settings.app_debug else None,
    )

    app.state.gateway = gateway or RelayGateway.from_settings(settings)

    app.add_exception_handler(RelayError, _relay_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # Request metrics
    app.add_middleware(PrometheusMiddleware)

    # CORS — parse allowed_origins from settings (comma-separated)
    _origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_credentials=_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_v1_router)

    @app.get("/")
    async def root():
        return {"status": "Hugging Face relay is running"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_response()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("relay.main:app", host=settings.app_host, port=settings.app_port)
