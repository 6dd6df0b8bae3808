"""
FastAPI Backend-for-Frontend Application Factory
================================================

This is the main entry point for the gateway that sits between the browser
client, the OAuth2/OIDC identity provider and the backend API gateway. Bearer
tokens are held server-side; the browser only ever holds a signed, HTTP-only
session cookie.

Architecture:
    Browser → BFF (this service) → Backend API Gateway
                  ↕
           Identity Provider

Routers:
    - /auth/*     : login redirect, callback (code exchange), logout
    - /session/me : profile of the signed-in user
    - /proxy/*    : authenticated passthrough to the backend gateway
    - /health     : health check endpoint

Running the Service:
    Development:
        uvicorn bff_gateway.main:app --reload --port 8081

    Production:
        BFF_PORT=8081 SESSION_STORE_URL=redis://redis:6379/0 bff-gateway
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth.flow import OAuth2FlowController
from .auth.idp import IdentityProviderClient
from .auth.routes import auth_router
from .auth.tokens import TokenLifecycleManager
from .config import Settings, get_settings, validate_configuration
from .errors import BFFError
from .models import ErrorResponse, HealthResponse
from .proxy.client import AuthenticatedProxy
from .proxy.routes import proxy_router
from .session.cookie import SessionCookieSigner
from .session.routes import session_router
from .session.store import SessionStore, build_session_store

SERVICE_NAME = "bff-gateway"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


class AppState:
    """
    Application state container.

    Holds the components shared by all requests. Built by the lifespan from
    one ``Settings`` value and torn down on shutdown.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.cookies = SessionCookieSigner(settings)
        self.store: Optional[SessionStore] = None
        self.idp_client: Optional[httpx.AsyncClient] = None
        self.gateway_client: Optional[httpx.AsyncClient] = None
        self.flow: Optional[OAuth2FlowController] = None
        self.tokens: Optional[TokenLifecycleManager] = None
        self.proxy: Optional[AuthenticatedProxy] = None

    async def start(
        self,
        store: Optional[SessionStore] = None,
        idp_transport: Optional[httpx.AsyncBaseTransport] = None,
        gateway_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = self.settings

        self.store = store or build_session_store(settings)
        self.idp_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.IDP_TIMEOUT_SECONDS),
            transport=idp_transport,
        )
        self.gateway_client = httpx.AsyncClient(
            base_url=settings.gateway_url_str,
            timeout=httpx.Timeout(settings.GATEWAY_TIMEOUT_SECONDS),
            transport=gateway_transport,
        )

        idp = IdentityProviderClient(settings, self.idp_client)
        self.flow = OAuth2FlowController(settings, self.store, idp)
        self.tokens = TokenLifecycleManager(
            self.store,
            idp,
            skew_seconds=settings.TOKEN_REFRESH_SKEW_SECONDS,
        )
        self.proxy = AuthenticatedProxy(self.tokens, self.gateway_client)

    async def stop(self) -> None:
        logger = logging.getLogger("bff_gateway.main")
        for client in (self.idp_client, self.gateway_client):
            if client is not None:
                await client.aclose()
        if self.store is not None:
            try:
                await self.store.close()
            except Exception as e:
                logger.error(f"Error closing session store: {e}")
        self.flow = self.tokens = self.proxy = None


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SessionStore] = None,
    idp_transport: Optional[httpx.AsyncBaseTransport] = None,
    gateway_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (session store, HTTP clients, components)
        - CORS middleware (when ALLOWED_ORIGINS is set)
        - Route handlers
        - Exception handlers

    Args:
        settings: Configuration; loaded from the environment when omitted
        store: Session store override (defaults from SESSION_STORE_URL)
        idp_transport: httpx transport for identity provider calls
        gateway_transport: httpx transport for backend gateway calls

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    app_state = AppState(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: validate configuration, create store, clients and components.
        Shutdown: close HTTP clients and the session store.
        """
        setup_logging(settings.LOG_LEVEL)
        logger = logging.getLogger("bff_gateway.main")

        report = validate_configuration(settings)
        for warning in report["warnings"]:
            logger.warning(f"Configuration warning: {warning}")
        for error in report["errors"]:
            logger.error(f"Configuration error: {error}")

        await app_state.start(store, idp_transport, gateway_transport)

        logger.info(
            "BFF gateway started",
            extra={
                "service": SERVICE_NAME,
                "version": __version__,
                "idp_base_url": settings.idp_base_url_str,
                "gateway_url": settings.gateway_url_str,
                "session_store": app_state.store.backend_name,
            },
        )

        yield

        logger.info("Shutting down BFF gateway")
        await app_state.stop()
        logger.info("BFF gateway shutdown complete")

    app = FastAPI(
        title="BFF Gateway",
        description="Backend-for-Frontend holding OAuth2 tokens server-side and proxying to the API gateway",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.app_state = app_state

    # Configure CORS
    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.include_router(session_router)
    app.include_router(proxy_router)

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Returns:
            Service status and the session store backend in use
        """
        backend = app_state.store.backend_name if app_state.store else "uninitialized"
        return HealthResponse(
            status="ok" if app_state.store else "starting",
            service=SERVICE_NAME,
            version=__version__,
            session_store=backend,
        )

    # Root endpoint
    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        """
        Root endpoint with service information.

        Returns:
            dict: Service metadata and available endpoints
        """
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "login": "/auth/login",
                "logout": "/auth/logout",
                "profile": "/session/me",
                "proxy": "/proxy",
            },
        }

    @app.exception_handler(BFFError)
    async def bff_error_handler(request: Request, exc: BFFError) -> JSONResponse:
        """Render the typed gateway errors as {"error", "message"}."""
        logging.getLogger("bff_gateway.main").info(
            f"Request failed with {exc.code}",
            extra={"path": request.url.path, "method": request.method, "status_code": exc.status_code},
        )
        body = ErrorResponse(error=exc.code, message=exc.message)
        headers = {"WWW-Authenticate": "Cookie"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(exclude_none=True),
            headers=headers,
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("bff_gateway.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )

        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))

    return app


# Create app instance for uvicorn
app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "bff_gateway.main:app",
        host=settings.BFF_HOST,
        port=settings.BFF_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
