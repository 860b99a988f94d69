"""
Authentication middleware for cookie-carried tokens.

This module provides:
- AuthenticationMiddleware: validates the access token and establishes identity
- RefreshMiddleware: silently rotates tokens from the refresh cookie
- FastAPI dependencies for route-level authentication

Request Flow:
1. AuthenticationMiddleware reads the AccessToken cookie (or Bearer header)
2. Token validated by TokenService; subject loaded via the PrincipalDirectory
3. Outcome recorded on request.state.auth (Authenticated / Unauthenticated)
4. RefreshMiddleware runs only if no identity was established; a valid
   RefreshToken cookie mints a new pair, identity is established for the
   current request and both cookies are rewritten on the response
5. Route handlers access the Principal via dependency injection

An invalid or missing token is NOT rejected here. Public and allowlisted
routes must work anonymously, so the reject decision is left to
require_principal. Unexpected errors while establishing identity are
different: they fail closed with 401 and the request goes no further.
When the token subject is disabled or deleted, that 401 also expires both
token cookies, and login and logout are served anonymously instead.

Usage:

    # Registration order is reverse of execution order
    app.add_middleware(RefreshMiddleware, token_service=..., directory=..., cookies=...)
    app.add_middleware(AuthenticationMiddleware, token_service=..., directory=..., cookies=...)

    @router.get("/protected")
    async def protected_route(principal: Principal = Depends(require_principal)):
        return {"user": principal.subject}
"""

import logging
from typing import Callable, Iterable, Optional

from fastapi import status
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from stockroom.auth.cookies import CookiePolicy
from stockroom.auth.directory import PrincipalDirectory, PrincipalLookupError
from stockroom.auth.principal import (
    ANONYMOUS,
    Authenticated,
    Principal,
    Unauthenticated,
    UnauthenticatedReason,
    get_auth_outcome,
)
from stockroom.auth.tokens import TokenService, TokenType
from stockroom.errors import AuthenticationFailedError

logger = logging.getLogger(__name__)

# Routes that manage cookies themselves. Silent refresh would overwrite
# their cookies, and stale credentials must not block them.
DEFAULT_REFRESH_EXEMPT_PATHS = frozenset({"/auth/login", "/auth/logout"})


def _mask(subject: Optional[str]) -> Optional[str]:
    if subject and len(subject) > 20:
        return subject[:20] + "..."
    return subject


def unauthorized_response(cookies: Optional[CookiePolicy] = None) -> JSONResponse:
    """
    401 returned when identity could not be established safely.

    When cookies is given both token cookies are expired, so a browser
    holding credentials for a disabled or deleted user stops sending them.
    """
    response = JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error": "unauthorized",
            "message": "authentication_failed",
        },
        headers={"WWW-Authenticate": "Bearer"},
    )
    if cookies is not None:
        cookies.clear_tokens(response)
    return response


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Establishes caller identity from the access token.

    Records request.state.auth for every request. Never rejects for a
    missing or invalid token; returns 401 only when an unexpected error
    occurs while establishing identity.
    """

    def __init__(
        self,
        app: ASGIApp,
        token_service: TokenService,
        directory: PrincipalDirectory,
        cookies: CookiePolicy,
        accept_bearer: bool = True,
        anonymous_paths: Optional[Iterable[str]] = None,
    ):
        """
        Initialize middleware.

        Args:
            app: ASGI application
            token_service: Validates access tokens
            directory: Loads the Principal for a token subject
            cookies: Cookie names and attributes
            accept_bearer: Also accept "Authorization: Bearer" for API clients
            anonymous_paths: Paths served anonymously when the token subject
                cannot be loaded (defaults to login and logout)
        """
        super().__init__(app)
        self._tokens = token_service
        self._directory = directory
        self._cookies = cookies
        self._accept_bearer = accept_bearer
        self._anonymous_paths = frozenset(
            anonymous_paths if anonymous_paths is not None else DEFAULT_REFRESH_EXEMPT_PATHS
        )

    def _extract_token(self, request: Request) -> Optional[str]:
        """
        Extract the access token from the request.

        Checks in order:
        1. AccessToken cookie
        2. Authorization header (Bearer token), if enabled
        """
        token = self._cookies.read_access_token(request)
        if token:
            return token

        if self._accept_bearer:
            auth_header = request.headers.get("Authorization")
            if auth_header and auth_header.startswith("Bearer "):
                return auth_header[7:].strip() or None

        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        # Default: no identity
        request.state.auth = ANONYMOUS

        if request.method == "OPTIONS":
            return await call_next(request)

        token = self._extract_token(request)
        if not token:
            return await call_next(request)

        try:
            result = self._tokens.validate(token, TokenType.ACCESS)
            if not result.valid:
                request.state.auth = Unauthenticated(UnauthenticatedReason.INVALID_TOKEN)
                logger.debug("Access token rejected", extra={"path": path})
                return await call_next(request)

            principal = await run_in_threadpool(self._directory.load, result.subject)

        except PrincipalLookupError as e:
            request.state.auth = Unauthenticated(UnauthenticatedReason.CLEARED)
            logger.warning(
                "Authenticated subject could not be loaded",
                extra={"path": path, "subject": _mask(e.subject), "reason": e.reason},
            )
            if path in self._anonymous_paths:
                # Stale credentials must not lock the user out of login and logout
                return await call_next(request)
            return unauthorized_response(self._cookies)

        except Exception as e:
            request.state.auth = Unauthenticated(UnauthenticatedReason.CLEARED)
            logger.error(
                f"Unexpected authentication error: {type(e).__name__}",
                extra={"path": path},
                exc_info=True,
            )
            return unauthorized_response()

        request.state.auth = Authenticated(principal)
        logger.debug(
            "Authenticated request",
            extra={
                "path": path,
                "subject": _mask(principal.subject),
                "tenant_id": principal.tenant_id,
            },
        )
        return await call_next(request)


class RefreshMiddleware(BaseHTTPMiddleware):
    """
    Silent re-authentication from the refresh token.

    Runs after AuthenticationMiddleware and acts only when no identity was
    established. A valid RefreshToken cookie produces exactly one new
    TokenPair per request; the current request proceeds authenticated and
    both cookies are rewritten on the way out.

    The used refresh token is only overwritten in the browser; it is not
    revoked server-side and remains valid until it expires.
    """

    def __init__(
        self,
        app: ASGIApp,
        token_service: TokenService,
        directory: PrincipalDirectory,
        cookies: CookiePolicy,
        exempt_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self._tokens = token_service
        self._directory = directory
        self._cookies = cookies
        self._exempt_paths = frozenset(
            exempt_paths if exempt_paths is not None else DEFAULT_REFRESH_EXEMPT_PATHS
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or path in self._exempt_paths:
            return await call_next(request)

        if get_auth_outcome(request).is_authenticated:
            return await call_next(request)

        refresh_token = self._cookies.read_refresh_token(request)
        if not refresh_token:
            return await call_next(request)

        try:
            result = self._tokens.validate(refresh_token, TokenType.REFRESH)
            if not result.valid:
                logger.debug("Refresh token rejected", extra={"path": path})
                return await call_next(request)

            principal = await run_in_threadpool(self._directory.load, result.subject)
            rotated = self._tokens.issue(principal.subject)

        except PrincipalLookupError as e:
            request.state.auth = Unauthenticated(UnauthenticatedReason.CLEARED)
            logger.warning(
                "Refresh subject could not be loaded",
                extra={"path": path, "subject": _mask(e.subject), "reason": e.reason},
            )
            return unauthorized_response(self._cookies)

        except Exception as e:
            request.state.auth = Unauthenticated(UnauthenticatedReason.CLEARED)
            logger.error(
                f"Unexpected error during silent refresh: {type(e).__name__}",
                extra={"path": path},
                exc_info=True,
            )
            return unauthorized_response()

        request.state.auth = Authenticated(principal, rotated_tokens=rotated)
        logger.info(
            "Silently refreshed tokens",
            extra={"path": path, "subject": _mask(principal.subject)},
        )

        response = await call_next(request)
        self._cookies.write_tokens(response, rotated)
        return response


# =============================================================================
# FastAPI Dependencies
# =============================================================================


def get_optional_principal(request: Request) -> Optional[Principal]:
    """
    FastAPI dependency returning the caller's Principal or None.

    Usage:
        @router.get("/public")
        async def public_route(principal = Depends(get_optional_principal)):
            ...
    """
    outcome = get_auth_outcome(request)
    if isinstance(outcome, Authenticated):
        return outcome.principal
    return None


def require_principal(request: Request) -> Principal:
    """
    FastAPI dependency that requires authentication.

    Raises AuthenticationFailedError (401) if the request has no identity.
    """
    principal = get_optional_principal(request)
    if principal is None:
        raise AuthenticationFailedError("authentication_required")
    return principal
