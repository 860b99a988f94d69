"""
Application composition root.

create_app() builds every collaborator of the request pipeline once and
wires them together. Nothing in the pipeline is a module-level singleton,
so tests can build several isolated apps in one process.

Middleware execution order (outermost first):
    CORS -> AuthenticationMiddleware -> RefreshMiddleware
         -> SubscriptionGuardMiddleware -> route handler

Starlette executes middleware in REVERSE registration order, so they are
registered innermost first below.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from stockroom.api.routes import account, auth, billing, health, workspace
from stockroom.auth.cookies import CookiePolicy
from stockroom.auth.directory import PrincipalDirectory, UserDirectory
from stockroom.auth.middleware import AuthenticationMiddleware, RefreshMiddleware
from stockroom.auth.tokens import TokenService
from stockroom.billing.guard import SubscriptionGuardMiddleware
from stockroom.billing.play import PlayStoreVerifier, PurchaseVerifier
from stockroom.billing.resolver import SubscriptionStatusResolver
from stockroom.billing.sources import (
    BillingRecordSource,
    HttpBillingRecordSource,
    SqlBillingRecordSource,
)
from stockroom.config.access_policy import AccessPolicy, load_access_policy
from stockroom.config.settings import Settings, get_settings
from stockroom.database.session import create_control_plane_engine, create_session_factory
from stockroom.errors import StockroomError, stockroom_error_handler
from stockroom.tenancy.context import get_current_tenant
from stockroom.tenancy.provisioning import TenantProvisioningService
from stockroom.tenancy.router import DataSourceRegistry, DataSourceRouter

logger = logging.getLogger(__name__)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "tenant_id": get_current_tenant() or "unknown",
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
        },
    )


def _default_billing_source(settings: Settings, session_factory: sessionmaker) -> BillingRecordSource:
    if settings.billing_api_url:
        logger.info("Using remote billing service", extra={"url": settings.billing_api_url})
        return HttpBillingRecordSource(
            settings.billing_api_url,
            timeout=settings.billing_lookup_timeout_seconds,
        )
    return SqlBillingRecordSource(session_factory)


def _default_purchase_verifier(settings: Settings) -> Optional[PurchaseVerifier]:
    if not settings.play_api_token:
        logger.info("PLAY_API_TOKEN not set, Play purchase verification disabled")
        return None
    return PlayStoreVerifier(settings.play_api_token, settings.play_api_url)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    registry: Optional[DataSourceRegistry] = None,
    directory: Optional[PrincipalDirectory] = None,
    billing_source: Optional[BillingRecordSource] = None,
    purchase_verifier: Optional[PurchaseVerifier] = None,
    policy: Optional[AccessPolicy] = None,
    clock: Optional[Callable[[], datetime]] = None,
    provision_on_startup: bool = False,
) -> FastAPI:
    """
    Build the Stockroom API.

    Args:
        settings: Runtime settings (defaults to the environment)
        session_factory: Control-plane sessions (defaults to DATABASE_URL)
        registry: Tenant data source registry (a new one by default)
        directory: Principal lookup (defaults to the users table)
        billing_source: Billing record lookup (HTTP if BILLING_API_URL is
            set, otherwise the tenants table)
        purchase_verifier: Play purchase verification (defaults to the Play
            Developer API when PLAY_API_TOKEN is set)
        policy: Subscription guard allowlist (defaults to the YAML policy)
        clock: Source of "now" for tokens and billing (tests)
        provision_on_startup: Register every tenant store during startup

    Raises:
        ValueError: If settings are invalid or no database is available
    """
    settings = settings or get_settings()
    settings.validate()

    if session_factory is None:
        if not settings.database_url:
            raise ValueError("DATABASE_URL environment variable is required")
        session_factory = create_session_factory(
            create_control_plane_engine(
                settings.database_url,
                connect_timeout=settings.database_connect_timeout_seconds,
                statement_timeout_ms=settings.database_statement_timeout_ms,
            )
        )

    registry = registry if registry is not None else DataSourceRegistry()
    directory = directory or UserDirectory(session_factory)
    policy = policy or load_access_policy(settings.access_policy_path)

    clock_kwargs = {"clock": clock} if clock is not None else {}
    token_service = TokenService(
        settings.jwt_secret,
        access_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
        **clock_kwargs,
    )
    cookies = CookiePolicy(
        access_max_age=settings.access_token_ttl_seconds,
        refresh_max_age=settings.refresh_token_ttl_seconds,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        domain=settings.cookie_domain,
    )
    resolver = SubscriptionStatusResolver(
        billing_source or _default_billing_source(settings, session_factory),
        timeout_seconds=settings.billing_lookup_timeout_seconds,
        **clock_kwargs,
    )
    provisioning = TenantProvisioningService(registry, settings.tenant_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting Stockroom API")
        if provision_on_startup:
            provisioning.load_registered_tenants(session_factory)
        yield
        logger.info("Shutting down Stockroom API")
        registry.dispose_all()

    app = FastAPI(
        title="Stockroom API",
        description="Multi-tenant inventory backend with subscription-gated access",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.token_service = token_service
    app.state.cookie_policy = cookies
    app.state.principal_directory = directory
    app.state.subscription_resolver = resolver
    app.state.data_source_registry = registry
    app.state.data_source_router = DataSourceRouter(registry)
    app.state.tenant_provisioning = provisioning
    app.state.purchase_verifier = purchase_verifier or _default_purchase_verifier(settings)
    app.state.clock = clock

    # Registered innermost first (see module docstring)
    app.add_middleware(SubscriptionGuardMiddleware, resolver=resolver, policy=policy)
    app.add_middleware(
        RefreshMiddleware,
        token_service=token_service,
        directory=directory,
        cookies=cookies,
    )
    app.add_middleware(
        AuthenticationMiddleware,
        token_service=token_service,
        directory=directory,
        cookies=cookies,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StockroomError, stockroom_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(billing.router)
    app.include_router(account.router)
    app.include_router(workspace.router)

    return app
