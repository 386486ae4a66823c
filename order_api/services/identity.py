"""
Identity Extractor.

The entry gateway validates tokens and forwards what it learned as headers:
verified claims as a JSON object, or the API key that authorised the call.
That is resolved once per request into a tagged AuthContext; everything
downstream works with the NormalizedIdentity.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union

from pydantic import BaseModel

from shared.errors import AuthenticationError

API_KEY_EMAIL = "api-key-user@example.com"
API_KEY_DISPLAY_NAME = "API Key User"


@dataclass(frozen=True)
class ClaimsContext:
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApiKeyContext:
    api_key: str


@dataclass(frozen=True)
class AnonymousContext:
    pass


AuthContext = Union[ClaimsContext, ApiKeyContext, AnonymousContext]


class AuthMethod(str, Enum):
    CLAIMS = "claims"
    API_KEY = "api-key"
    NONE = "none"


class NormalizedIdentity(BaseModel):
    user_id: str
    email: str
    display_name: str
    auth_method: AuthMethod


class UserInfo(NormalizedIdentity):
    email_verified: bool | None = None
    auth_time: datetime | None = None
    token_issued: datetime | None = None
    token_expires: datetime | None = None


def resolve_auth_context(
    headers: Mapping[str, str],
    claims_header: str = "X-Auth-Claims",
    api_key_header: str = "X-Api-Key",
) -> AuthContext:
    raw_claims = headers.get(claims_header)
    if raw_claims:
        try:
            claims = json.loads(raw_claims)
        except ValueError as exc:
            raise AuthenticationError("Malformed identity claims") from exc
        if not isinstance(claims, dict) or not claims.get("sub"):
            raise AuthenticationError("Identity claims must include a subject")
        return ClaimsContext(claims=claims)

    api_key = headers.get(api_key_header)
    if api_key:
        return ApiKeyContext(api_key=api_key)

    return AnonymousContext()


def extract_identity(context: AuthContext) -> NormalizedIdentity:
    if isinstance(context, ClaimsContext):
        claims = context.claims
        email = claims.get("email") or ""
        return NormalizedIdentity(
            user_id=str(claims["sub"]),
            email=email,
            display_name=claims.get("name") or email,
            auth_method=AuthMethod.CLAIMS,
        )
    if isinstance(context, ApiKeyContext):
        return NormalizedIdentity(
            user_id=context.api_key,
            email=API_KEY_EMAIL,
            display_name=API_KEY_DISPLAY_NAME,
            auth_method=AuthMethod.API_KEY,
        )
    # Anonymous callers are rejected by the gateway; defined for completeness.
    return NormalizedIdentity(
        user_id="anonymous",
        email="anonymous@example.com",
        display_name="Anonymous",
        auth_method=AuthMethod.NONE,
    )


def _epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def get_user_info(context: AuthContext) -> UserInfo:
    if isinstance(context, AnonymousContext):
        raise AuthenticationError("Unauthorized")

    identity = extract_identity(context)
    if not isinstance(context, ClaimsContext):
        return UserInfo(**identity.model_dump())

    claims = context.claims
    verified = claims.get("email_verified")
    return UserInfo(
        **identity.model_dump(),
        email_verified=None if verified is None else str(verified).lower() == "true",
        auth_time=_epoch(claims.get("auth_time")),
        token_issued=_epoch(claims.get("iat")),
        token_expires=_epoch(claims.get("exp")),
    )
