"""
Cookie transport for access and refresh tokens.

Both cookies are HttpOnly, Secure and scoped to "/". Their Max-Age matches
the lifetime of the token they carry. Cross-origin deployments (SPA on a
different domain) need SameSite=None, which browsers only accept together
with Secure.
"""

from dataclasses import dataclass
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from stockroom.auth.tokens import TokenPair

ACCESS_COOKIE_NAME = "AccessToken"
REFRESH_COOKIE_NAME = "RefreshToken"


@dataclass(frozen=True)
class CookiePolicy:
    """How token cookies are written."""

    access_max_age: int
    refresh_max_age: int
    secure: bool = True
    samesite: str = "none"
    domain: Optional[str] = None
    access_cookie_name: str = ACCESS_COOKIE_NAME
    refresh_cookie_name: str = REFRESH_COOKIE_NAME

    def read_access_token(self, request: Request) -> Optional[str]:
        return request.cookies.get(self.access_cookie_name) or None

    def read_refresh_token(self, request: Request) -> Optional[str]:
        return request.cookies.get(self.refresh_cookie_name) or None

    def _set(self, response: Response, name: str, value: str, max_age: int) -> None:
        response.set_cookie(
            key=name,
            value=value,
            max_age=max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def write_tokens(self, response: Response, tokens: TokenPair) -> None:
        """Attach both tokens of a pair to the response as cookies."""
        self._set(response, self.access_cookie_name, tokens.access_token, self.access_max_age)
        self._set(response, self.refresh_cookie_name, tokens.refresh_token, self.refresh_max_age)

    def clear_tokens(self, response: Response) -> None:
        """Expire both token cookies (logout)."""
        for name in (self.access_cookie_name, self.refresh_cookie_name):
            response.delete_cookie(
                key=name,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )
