import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Settings, settings
from db import get_db
from models import AdminUser

logger = logging.getLogger(__name__)

# claim names probed in order for the caller's email / object id
EMAIL_CLAIMS = ("preferred_username", "email", "upn")
OBJECT_ID_CLAIMS = ("oid", "sub")


@dataclass
class Identity:
    """Caller identity derived from a verified bearer token."""
    email: Optional[str] = None
    oid: Optional[str] = None
    claims: dict[str, Any] = field(default_factory=dict)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _string_claim(claims: dict, names) -> Optional[str]:
    for name in names:
        value = claims.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def has_scope(claims: dict, required: str) -> bool:
    """True if `required` appears in the space-separated `scp` claim or the `roles` list."""
    scp = claims.get("scp")
    if isinstance(scp, str) and required in scp.split(" "):
        return True
    roles = claims.get("roles")
    return isinstance(roles, list) and required in roles


class TokenVerifier:
    """FastAPI dependency validating Azure AD bearer tokens.

    Signing keys come from the tenant's JWKS endpoint through PyJWKClient,
    which caches them and refetches when a token names an unseen `kid`.
    Every verification failure surfaces as the same 401; the cause is only
    logged.

    Args:
        config (Settings): tenant/client/audience/scope configuration.
        jwks_client: object exposing `get_signing_key_from_jwt(token)`;
            built from `config.jwks_url` when omitted.
    """

    algorithms = ["RS256"]

    def __init__(self, config: Settings, jwks_client=None):
        self.config = config
        if jwks_client is None and config.jwks_url:
            jwks_client = jwt.PyJWKClient(config.jwks_url, cache_keys=True, timeout=config.jwks_timeout)
        self.jwks_client = jwks_client
        if not config.issuer:
            logger.warning("AZURE_TENANT_ID is not set. Token validation will fail until configured.")

    def decode(self, token: str) -> dict:
        """Verify signature, expiry, issuer and audience; return the claims.

        Raises:
            jwt.PyJWTError: on any verification problem, including key-set fetch failures.
        """
        if not self.config.issuer or self.jwks_client is None:
            raise jwt.InvalidTokenError("AZURE_TENANT_ID not configured")
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        except (ValueError, AttributeError, OSError) as e:
            # unparseable or non-object key-set bodies, socket errors PyJWKClient does not wrap
            raise jwt.PyJWKClientError(f"unable to read signing keys: {type(e).__name__}: {e}") from e
        audiences = self.config.audiences
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=self.algorithms,
            issuer=self.config.issuer,
            audience=audiences or None,
            options={"require": ["exp", "iss"], "verify_aud": bool(audiences)},
        )

    def __call__(self, request: Request, authorization: Optional[str] = Header(default=None)) -> Identity:
        if not authorization or not authorization.startswith("Bearer "):
            raise _unauthorized("missing token")
        token = authorization[len("Bearer "):].strip()
        if not token:
            raise _unauthorized("missing token")

        try:
            claims = self.decode(token)
        except jwt.PyJWTError as e:
            logger.warning("token verification failed: %s: %s", type(e).__name__, e)
            raise _unauthorized("invalid token")

        email = _string_claim(claims, EMAIL_CLAIMS)
        oid = _string_claim(claims, OBJECT_ID_CLAIMS)
        if not email and not oid:
            logger.warning("verified token carries neither email nor object id claims")
            raise _unauthorized("email/oid not found in token")

        required = self.config.required_scope
        if required and not has_scope(claims, required):
            raise HTTPException(status_code=403, detail="insufficient_scope_or_role")

        identity = Identity(email=email, oid=oid, claims=claims)
        request.state.auth = identity
        return identity


verify_token = TokenVerifier(settings)


def find_admin(db: Session, identity: Identity) -> Optional[AdminUser]:
    """Object id match wins; email is only consulted when no object id row exists."""
    user = None
    if identity.oid:
        user = db.execute(select(AdminUser).where(AdminUser.azure_id == identity.oid)).scalar_one_or_none()
    if user is None and identity.email:
        user = db.execute(select(AdminUser).where(AdminUser.email == identity.email)).scalar_one_or_none()
    return user


def require_admin(request: Request, identity: Identity = Depends(verify_token), db: Session = Depends(get_db)) -> AdminUser:
    if not identity or (not identity.email and not identity.oid):
        raise _unauthorized("not authenticated")
    user = find_admin(db, identity)
    # missing, non-admin and inactive all look the same to the caller
    if not user or not user.is_admin or not user.active:
        raise HTTPException(status_code=403, detail="forbidden")
    request.state.user = user
    return user
