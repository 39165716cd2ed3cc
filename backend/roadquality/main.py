from contextlib import asynccontextmanager

from fastapi import FastAPI

from roadquality.core.config import settings
from roadquality.core.logging_setup import configure_logging
from roadquality.core.observability import setup_observability
from roadquality.core.runtime import Runtime, build_runtime
from roadquality.routes.conditions import router as conditions_router
from roadquality.routes.ingest import router as ingest_router

configure_logging(settings.LOG_LEVEL)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime(settings)
        app.state.runtime.start()
        try:
            yield
        finally:
            app.state.runtime.stop()

    app = FastAPI(title="Road Quality", lifespan=lifespan)
    app.state.runtime = runtime
    setup_observability(app, settings)

    app.include_router(ingest_router)
    app.include_router(conditions_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
