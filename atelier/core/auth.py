"""
Who is calling the chat API.

Three modes, picked from settings and flags:
  * FF_USE_AUTH0=false          -> everyone is the local dev user
  * AUTH0_DOMAIN set            -> RS256 tokens checked against the tenant JWKS
  * otherwise JWT_SECRET set    -> tokens signed with the shared secret
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from jose import JWTError, jwt

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

# Auth0 login actions put profile fields under this prefix
CLAIM_NAMESPACE = "https://atelier.app/"
JWKS_TTL_SECONDS = 600


class AuthError(PermissionError):
    """Request could not be tied to a user."""


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: str = ""
    name: str = ""
    role: str = "member"


DEV_USER = AuthenticatedUser(user_id="dev-user", email="dev@local", name="Dev User", role="admin")


# ── Key sources ───────────────────────────────────────────────────

class JwksCache:
    """Signing keys of one Auth0 tenant, refetched every JWKS_TTL_SECONDS."""

    def __init__(self, ttl: float = JWKS_TTL_SECONDS):
        self.ttl = ttl
        self._keys: dict[str, dict] = {}
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def key_for(self, domain: str, kid: Optional[str]) -> dict:
        async with self._lock:
            if not self._keys or time.monotonic() - self._fetched_at > self.ttl:
                await self._refresh(domain)
        key = self._keys.get(kid or "")
        if key is None:
            raise AuthError("Token signed with an unknown key")
        return key

    async def _refresh(self, domain: str):
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(f"https://{domain}/.well-known/jwks.json")
            resp.raise_for_status()
        self._keys = {
            k["kid"]: {f: k[f] for f in ("kty", "kid", "use", "n", "e") if f in k}
            for k in resp.json().get("keys", [])
        }
        self._fetched_at = time.monotonic()
        logger.info("Loaded %d signing keys from %s", len(self._keys), domain)


_jwks = JwksCache()


# ── Token checks ──────────────────────────────────────────────────

def _claim(claims: dict, name: str, default=""):
    return claims.get(name, claims.get(f"{CLAIM_NAMESPACE}{name}", default))


def user_from_claims(claims: dict) -> AuthenticatedUser:
    subject = claims.get("sub") or claims.get("id")
    if not subject:
        raise AuthError("Token has no subject")
    return AuthenticatedUser(
        user_id=str(subject),
        email=_claim(claims, "email"),
        name=_claim(claims, "name"),
        role=_claim(claims, "role", "member"),
    )


async def _decode(token: str) -> dict:
    settings = get_settings()
    if settings.auth0_domain:
        header = jwt.get_unverified_header(token)
        key = await _jwks.key_for(settings.auth0_domain, header.get("kid"))
        return jwt.decode(
            token,
            key,
            algorithms=[settings.auth0_algorithm],
            audience=settings.auth0_audience,
            issuer=f"https://{settings.auth0_domain}/",
        )
    if settings.jwt_secret:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    raise AuthError("Auth is enabled but neither AUTH0_DOMAIN nor JWT_SECRET is configured")


def bearer_token(authorization: str) -> str:
    scheme, _, token = (authorization or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Expected 'Authorization: Bearer <token>'")
    return token.strip()


async def get_current_user(authorization: str = "") -> AuthenticatedUser:
    if not get_flags().use_auth0:
        return DEV_USER

    token = bearer_token(authorization)
    try:
        claims = await _decode(token)
    except JWTError as e:
        raise AuthError(f"Invalid token: {e}") from e
    except httpx.HTTPError as e:
        logger.error("JWKS fetch failed: %s", e)
        raise AuthError("Could not verify token right now") from e
    return user_from_claims(claims)
