from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .routers import admin, auth, brands, dashboard, models, navigation, reference, system, vehicles
from .supabase_client import BackendError
from .utils.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    app = FastAPI(title=settings.APP_NAME, redirect_slashes=False)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError):
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": exc.message, "kind": exc.kind.value},
        )

    app.include_router(auth.router, prefix=settings.API_PREFIX)
    app.include_router(navigation.router, prefix=settings.API_PREFIX)
    app.include_router(dashboard.router, prefix=settings.API_PREFIX)
    app.include_router(vehicles.router, prefix=settings.API_PREFIX)
    app.include_router(reference.router, prefix=settings.API_PREFIX)
    app.include_router(admin.router, prefix=settings.API_PREFIX)
    app.include_router(brands.router, prefix=settings.API_PREFIX)
    app.include_router(models.router, prefix=settings.API_PREFIX)
    app.include_router(system.router, prefix=settings.API_PREFIX)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
