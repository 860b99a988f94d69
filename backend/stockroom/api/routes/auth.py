"""
Company registration, login, explicit token refresh and logout.

Tokens are returned in the body for API clients and set as HttpOnly cookies
for the browser. Every successful call issues exactly one TokenPair.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from stockroom.api.dependencies import (
    get_app_settings,
    get_cookie_policy,
    get_principal_directory,
    get_tenant_onboarding,
    get_token_service,
)
from stockroom.auth.cookies import CookiePolicy
from stockroom.auth.directory import PrincipalDirectory, PrincipalLookupError
from stockroom.auth.passwords import verify_password
from stockroom.auth.principal import Authenticated, get_auth_outcome
from stockroom.auth.tokens import TokenService, TokenType
from stockroom.config.settings import Settings
from stockroom.database.session import get_db_session
from stockroom.errors import AuthenticationFailedError
from stockroom.models.user import User
from stockroom.tenancy.onboarding import TenantOnboardingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    """Refresh token in the body; the RefreshToken cookie is used when omitted."""
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


class TokenPairResponse(BaseModel):
    accessToken: str
    refreshToken: str
    accessExpiresAt: str
    refreshExpiresAt: str


class LogoutResponse(BaseModel):
    success: bool = True


class RegisterRequest(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255, alias="companyName")
    username: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=8)

    model_config = ConfigDict(populate_by_name=True)


class RegisterResponse(BaseModel):
    tenantId: str
    username: str
    trialEnd: str


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    settings: Settings = Depends(get_app_settings),
    onboarding: TenantOnboardingService = Depends(get_tenant_onboarding),
):
    """
    Register a company and its first (admin) user.

    The company starts a TRIAL_DAYS trial and gets its data store
    provisioned immediately. 409 if the username, email or company name is
    taken.
    """
    registration = onboarding.register_company(
        company_name=body.company_name,
        username=body.username,
        email=body.email,
        password=body.password,
        trial_days=settings.trial_days,
    )
    return RegisterResponse(
        tenantId=registration.tenant_id,
        username=registration.username,
        trialEnd=registration.trial_end.isoformat(),
    )


@router.post("/login", response_model=TokenPairResponse)
def login(
    body: LoginRequest,
    response: Response,
    db: Session = Depends(get_db_session),
    tokens: TokenService = Depends(get_token_service),
    cookies: CookiePolicy = Depends(get_cookie_policy),
):
    """
    Authenticate with username and password.

    Unknown user and wrong password are indistinguishable (401). A user who
    has not confirmed their email gets 403.
    """
    user = db.query(User).filter(User.username == body.username).first()
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login failed", extra={"username": body.username[:20]})
        raise AuthenticationFailedError("invalid_credentials")

    if not user.enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="account_disabled",
        )

    pair = tokens.issue(user.username)
    cookies.write_tokens(response, pair)

    logger.info("User logged in", extra={"username": user.username[:20], "tenant_id": user.tenant_id})
    return pair.to_dict()


@router.post("/refresh", response_model=TokenPairResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    tokens: TokenService = Depends(get_token_service),
    cookies: CookiePolicy = Depends(get_cookie_policy),
    directory: PrincipalDirectory = Depends(get_principal_directory),
):
    """
    Rotate the token pair explicitly.

    If the refresh middleware already rotated tokens for this request the
    same pair is returned (its cookies are written by the middleware), so a
    single call never mints two pairs.
    """
    outcome = get_auth_outcome(request)
    if isinstance(outcome, Authenticated) and outcome.rotated_tokens is not None:
        return outcome.rotated_tokens.to_dict()

    refresh_token = (body.refresh_token if body else None) or cookies.read_refresh_token(request)
    result = tokens.validate(refresh_token, TokenType.REFRESH)
    if not result.valid:
        raise AuthenticationFailedError("invalid_refresh_token")

    try:
        principal = await run_in_threadpool(directory.load, result.subject)
    except PrincipalLookupError as e:
        logger.warning("Refresh for unavailable subject", extra={"reason": e.reason})
        raise AuthenticationFailedError("invalid_refresh_token")

    pair = tokens.issue(principal.subject)
    cookies.write_tokens(response, pair)
    return pair.to_dict()


@router.post("/logout", response_model=LogoutResponse)
def logout(response: Response, cookies: CookiePolicy = Depends(get_cookie_policy)):
    """Expire both token cookies. Issued tokens stay valid until they expire."""
    cookies.clear_tokens(response)
    return LogoutResponse()
