from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from microloans import __version__
from microloans.api.v1 import api_router
from microloans.core.errors import register_exception_handlers
from microloans.core.limiter import limiter
from microloans.core.logging import configure_logging
from microloans.core.response_envelope import register_response_envelope
from microloans.core.settings import settings
from microloans.events import register_event_handlers
from microloans.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Microloans Loan Engine", version=__version__)
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
