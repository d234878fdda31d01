"""FastAPI application factory.

Run with: uvicorn earshot.main:app
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from earshot import __version__
from earshot.api.exception_handlers import register_exception_handlers
from earshot.api.routers import api_router, health_router
from earshot.config import Settings, get_settings
from earshot.infrastructure.lifecycle import make_lifespan
from earshot.infrastructure.observability.middleware import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI app. Tests pass their own settings, production reads the env."""
    app_settings = settings or get_settings()

    app = FastAPI(
        title=app_settings.app_name,
        version=__version__,
        debug=app_settings.debug,
        lifespan=make_lifespan(app_settings),
    )

    if app_settings.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")
    app.include_router(health_router, prefix="/health", tags=["Health"])

    return app


app = create_app()
