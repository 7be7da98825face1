"""Service-account credentials for the remote store.

The store client owns a ``Credential`` value and swaps it for a new one when
``credential_expired`` says so. Building the signed assertion and reading the
token response are pure functions of their inputs.
"""

import json
from dataclasses import dataclass
from pathlib import Path

import jwt

TOKEN_LIFETIME_SECONDS = 3600
REFRESH_MARGIN_SECONDS = 60
SCOPES = (
    "https://www.googleapis.com/auth/firebase.database "
    "https://www.googleapis.com/auth/userinfo.email"
)
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


@dataclass(frozen=True)
class ServiceKey:
    email: str
    private_key: str
    token_uri: str

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceKey":
        missing = [
            f for f in ("client_email", "private_key", "token_uri") if not data.get(f)
        ]
        if missing:
            raise ValueError(f"Service key is missing fields: {', '.join(missing)}")
        return cls(
            email=data["client_email"],
            private_key=data["private_key"],
            token_uri=data["token_uri"],
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ServiceKey":
        with open(path) as f:
            return cls.from_dict(json.load(f))


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float  # unix timestamp

    @classmethod
    def from_token_response(cls, payload: dict, now: float) -> "Credential":
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise ValueError("Token response has no access_token")
        lifetime = payload.get("expires_in", TOKEN_LIFETIME_SECONDS)
        return cls(token=token, expires_at=now + float(lifetime))


def credential_expired(
    credential: Credential | None,
    now: float,
    margin: float = REFRESH_MARGIN_SECONDS,
) -> bool:
    if credential is None:
        return True
    return credential.expires_at - margin <= now


def build_assertion(key: ServiceKey, now: float) -> str:
    """Sign the RS256 JWT exchanged for an OAuth2 access token."""
    issued_at = int(now)
    claims = {
        "iss": key.email,
        "sub": key.email,
        "scope": SCOPES,
        "aud": key.token_uri,
        "iat": issued_at,
        "exp": issued_at + TOKEN_LIFETIME_SECONDS,
    }
    return jwt.encode(claims, key.private_key, algorithm="RS256")
