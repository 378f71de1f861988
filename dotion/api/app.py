"""
FastAPI Application for Dotion.

Main entry point for the HTTP API.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .. import __version__
from ..auth.oauth import GoogleOAuthClient
from ..auth.session import current_time_ms
from ..core.config import DotionConfig, EnvSettings, check_config, get_config, get_env_settings
from ..core.errors import DotionError
from ..core.llm import ChatCompletionClient
from ..system.controller import AppController, get_app_controller
from ..tools.calendar import CalendarGateway
from ..tools.executor import ToolExecutor
from .models import HealthResponse
from .routes import get_all_routers


# ============================================================================
# Rate Limiting
# ============================================================================

class RateLimiter:
    """Simple in-memory rate limiter."""

    def __init__(self, requests_per_minute: int = 120, clock: Callable[[], float] = time.time):
        self.requests_per_minute = requests_per_minute
        self.clock = clock
        self._requests: Dict[str, List[float]] = {}  # ip -> timestamps
        self._last_prune = 0.0

    def is_allowed(self, client_ip: str) -> bool:
        """Check if request is allowed."""
        now = self.clock()
        minute_ago = now - 60
        self._prune(now, minute_ago)

        recent = [ts for ts in self._requests.get(client_ip, []) if ts > minute_ago]
        if len(recent) >= self.requests_per_minute:
            self._requests[client_ip] = recent
            return False

        recent.append(now)
        self._requests[client_ip] = recent
        return True

    def _prune(self, now: float, minute_ago: float) -> None:
        # At most once a minute, drop clients with no request in the window
        if now - self._last_prune < 60:
            return
        self._last_prune = now
        stale = [ip for ip, stamps in self._requests.items() if not stamps or stamps[-1] <= minute_ago]
        for ip in stale:
            del self._requests[ip]


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    app_config: Optional[DotionConfig] = None,
    settings: Optional[EnvSettings] = None,
    llm_client: Optional[ChatCompletionClient] = None,
    oauth_client: Optional[GoogleOAuthClient] = None,
    app_controller: Optional[AppController] = None,
    calendar_service_factory: Optional[Callable[[str], Any]] = None,
    clock: Callable[[], float] = current_time_ms,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_config: Structured configuration (default: config/settings.yaml).
        settings: Environment settings (default: read from the environment).
        llm_client: Chat completion client (default: built from settings).
        oauth_client: Google OAuth client (default: built from settings).
        app_controller: Desktop controller (default: platform controller when
            desktop control is enabled).
        calendar_service_factory: Builds a Calendar API resource for an access
            token (default: googleapiclient discovery).
        clock: Current time in epoch milliseconds, for session expiry.

    Returns:
        Configured FastAPI application.
    """
    app_config = app_config or get_config()
    settings = settings or get_env_settings()
    debug = app_config.general.debug

    if llm_client is None:
        llm_client = ChatCompletionClient(
            api_key=settings.openai_api_key,
            model=app_config.llm.model,
            base_url=app_config.llm.base_url,
            temperature=app_config.llm.temperature,
            timeout=app_config.llm.timeout,
        )

    if oauth_client is None:
        oauth_client = GoogleOAuthClient(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            scopes=app_config.auth.scopes,
        )

    if app_controller is None and app_config.desktop.enabled:
        app_controller = get_app_controller(app_config.desktop.allowed_apps)

    def gateway_factory(access_token: str) -> CalendarGateway:
        service = calendar_service_factory(access_token) if calendar_service_factory else None
        return CalendarGateway(
            access_token=access_token,
            calendar_id=settings.require_calendar_id(),
            timezone=settings.google_timezone,
            service=service,
            max_results=app_config.calendar.max_results,
            week_start=app_config.calendar.week_start,
        )

    secure_cookies = app_config.auth.secure_cookies
    if secure_cookies is None:
        secure_cookies = settings.is_production

    rate_limiter = RateLimiter(requests_per_minute=app_config.server.requests_per_minute)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting Dotion API...")
        missing = check_config(settings)
        if missing:
            logger.warning(f"Missing configuration: {', '.join(missing)}")
        yield
        logger.info("Shutting down Dotion API...")

    app = FastAPI(
        title="Dotion API",
        description="Calendar chat assistant: streaming chat with Google Calendar tools.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.app_config = app_config
    app.state.settings = settings
    app.state.llm_client = llm_client
    app.state.oauth_client = oauth_client
    app.state.app_controller = app_controller
    app.state.gateway_factory = gateway_factory
    app.state.executor = ToolExecutor(gateway_factory, app_controller)
    app.state.secure_cookies = secure_cookies
    app.state.clock = clock

    # ========================================================================
    # Middleware
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_and_rate_limit(request: Request, call_next):
        """Log requests and apply rate limiting."""
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        if request.url.path.startswith("/api/docs") or request.url.path.startswith("/api/redoc"):
            return await call_next(request)

        if not rate_limiter.is_allowed(client_ip):
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "Too many requests", "detail": "Rate limit exceeded"},
            )

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        logger.debug(
            f"{request.method} {request.url.path} - {response.status_code} - {process_time:.1f}ms"
        )
        response.headers["X-Process-Time"] = f"{process_time:.1f}ms"
        return response

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(DotionError)
    async def dotion_error_handler(request: Request, exc: DotionError):
        """Typed errors map onto their HTTP status."""
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies and query parameters are a 400."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "detail": str(exc.errors()) if debug else None},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.opt(exception=exc).error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "detail": str(exc) if debug else "An unexpected error occurred",
            },
        )

    # ========================================================================
    # Routes
    # ========================================================================

    @app.get("/api/health", tags=["Health"], response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service="dotion",
            version=__version__,
            missing_config=check_config(settings),
        )

    for router in get_all_routers():
        app.include_router(router, prefix="/api")

    return app


# ============================================================================
# Run Server
# ============================================================================

async def run_api_server(
    app_config: Optional[DotionConfig] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """
    Run the API server.

    Args:
        app_config: Structured configuration (default: config/settings.yaml).
        host: Host to bind to (default: server.host from settings).
        port: Port to bind to (default: server.port from settings).
    """
    import uvicorn

    app = create_app(app_config=app_config)
    server_config = app.state.app_config.server

    config = uvicorn.Config(
        app=app,
        host=host or server_config.host,
        port=port or server_config.port,
        log_level="info",
    )

    server = uvicorn.Server(config)
    await server.serve()
