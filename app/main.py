from fastapi import FastAPI

from app.rolegate.api import api_router
from app.rolegate.core.config import settings
from app.rolegate.core.errors import setup_exception_handlers
from app.rolegate.core.logging import configure_logging
from app.rolegate.middleware.observability import ObservabilityMiddleware
from app.rolegate.middleware.principal import PrincipalContextMiddleware
from app.rolegate.middleware.trace import TraceIdMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(PrincipalContextMiddleware)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
