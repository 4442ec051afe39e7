"""
Request authentication for the SIPB API.

A login is either a bearer token issued by the identity provider and checked
against its JWKS, or, in local development, a fixed principal configured in
settings. Which SIPB user the principal maps to, and so its role, is decided in
``api.rbac``; a token only has to identify the person.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

import jwt
from django.conf import settings
from jwt import InvalidTokenError, PyJWKClient, PyJWKClientError
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed

logger = logging.getLogger(__name__)

DEV_USER_HEADER = "HTTP_X_SIPB_DEV_USER"


@dataclass
class Principal:
    user_id: Optional[str]
    username: Optional[str]
    roles: list[str]
    permissions: list[str] = field(default_factory=list)
    email: Optional[str] = None
    is_authenticated: bool = True


_jwks_clients: dict[str, PyJWKClient] = {}


def _jwks_client() -> PyJWKClient:
    url = settings.AUTH_JWKS_URL
    if not url:
        raise AuthenticationFailed("JWKS URL is not configured.")
    if url not in _jwks_clients:
        _jwks_clients[url] = PyJWKClient(url, cache_keys=True)
    return _jwks_clients[url]


def decode_token(token: str) -> dict:
    """Verify signature, expiry, issuer and audience; return the claims."""
    try:
        alg = jwt.get_unverified_header(token).get("alg")
        if not alg or alg not in settings.AUTH_ALGORITHMS:
            raise AuthenticationFailed("Token signing algorithm is not accepted.")
        key = _jwks_client().get_signing_key_from_jwt(token).key
        claims = jwt.decode(
            token,
            key,
            algorithms=[alg],
            issuer=settings.AUTH_ISSUER or None,
            audience=settings.AUTH_AUDIENCE or None,
            leeway=settings.AUTH_LEEWAY_SECONDS,
            options={
                "verify_iss": bool(settings.AUTH_ISSUER),
                "verify_aud": bool(settings.AUTH_AUDIENCE),
            },
        )
    except (PyJWKClientError, InvalidTokenError) as exc:
        logger.warning("token_rejected reason=%s", exc)
        raise AuthenticationFailed("Invalid bearer token.") from exc
    if not isinstance(claims, dict):
        raise AuthenticationFailed("Invalid bearer token.")
    return claims


def claim(claims: Mapping[str, Any], path: str) -> Any:
    """Look up a claim by dotted path, e.g. ``realm_access.roles``."""
    value: Any = claims
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(part) for part in value]
    return [str(value)]


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def principal_from_claims(claims: Mapping[str, Any]) -> Principal:
    user_id = _optional_str(claim(claims, settings.AUTH_USER_ID_CLAIM))
    if user_id is None:
        raise AuthenticationFailed("Token does not identify a user.")
    return Principal(
        user_id=user_id,
        username=_optional_str(claim(claims, settings.AUTH_USERNAME_CLAIM))
        if settings.AUTH_USERNAME_CLAIM
        else None,
        email=_optional_str(claims.get("email")),
        roles=_as_list(claim(claims, settings.AUTH_ROLES_CLAIM)) if settings.AUTH_ROLES_CLAIM else [],
    )


def _dev_principal(request) -> Principal:
    # The dev login page switches users by sending one of /auth/dev-users/.
    selected = request.META.get(DEV_USER_HEADER, "").strip()
    user_id = selected or str(settings.DEV_AUTH_USER_ID)
    return Principal(
        user_id=user_id,
        username=user_id,
        roles=list(settings.DEV_AUTH_ROLES),
        permissions=list(settings.DEV_AUTH_PERMISSIONS),
    )


class SipbAuthentication(BaseAuthentication):
    """
    Bearer token authentication, with a development fallback.

    With ``DEV_AUTH_ENABLED`` every request is the configured dev user (or the
    one named in the ``X-SIPB-Dev-User`` header). With ``AUTH_ENABLED`` a
    verified bearer token is required. With neither, requests stay anonymous.
    """

    def authenticate(self, request) -> Optional[Tuple[Principal, None]]:
        if settings.DEV_AUTH_ENABLED:
            return _dev_principal(request), None
        if not settings.AUTH_ENABLED:
            return None

        scheme, _, token = get_authorization_header(request).decode("latin-1").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationFailed("Missing bearer token.")
        return principal_from_claims(decode_token(token.strip())), None

    def authenticate_header(self, request) -> str:
        return "Bearer"
