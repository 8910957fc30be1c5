import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings
from .core.db import AsyncSessionLocal
from .core.responses import context_error_handler, http_exception_handler
from .onboarding import router as onboarding_router
from .routes_context import router as context_router
from .tenancy.context import ContextError
from .tenancy.resolver import TieBreak
from .tenancy.sessions import SessionContextRegistry


settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Vallaroo Business Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(ContextError, context_error_handler)

app.include_router(context_router)
app.include_router(onboarding_router)


@app.on_event("startup")
async def on_startup():
    app.state.context_registry = SessionContextRegistry.from_session_factory(
        AsyncSessionLocal,
        tie_break=TieBreak(settings.context_tie_break),
        close_timeout=settings.preference_write_timeout_seconds,
        idle_ttl=settings.context_idle_ttl_seconds,
    )
    logger.info(f"Context registry ready (tie_break={settings.context_tie_break})")


@app.on_event("shutdown")
async def on_shutdown():
    # Flush pending preference writes of every signed-in user
    await app.state.context_registry.close_all()


@app.get("/health")
async def health():
    return {"status": "ok"}
