"""Session tokens, password checks and code generation."""

import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from fieldpost.core.config import Settings
from fieldpost.core.errors import ConfigurationError
from fieldpost.models import Role

logger = logging.getLogger(__name__)

SESSION_TOKEN_TYPE = "session"
DASHBOARD_TOKEN_TYPE = "dashboard"
INSECURE_DEFAULT_SECRET = "change-me-in-production"

_BCRYPT_PREFIX = re.compile(r"^\$2[aby]\$")
# bcrypt only hashes the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


class SessionClaims(BaseModel):
    """Unverified session claims, as supplied by a caller or read from a token."""

    email: str
    role: Role
    submission_id: str | None = None


@dataclass(frozen=True)
class VerifiedSession:
    """Session whose signature and expiry were checked by SessionCodec.verify."""

    email: str
    role: Role
    submission_id: str | None = None
    expires_at: datetime | None = None


class SessionCodec:
    """Creates and verifies signed, expiring session tokens (HS256 JWT)."""

    def __init__(
        self,
        secret_key: str,
        *,
        algorithm: str = "HS256",
        session_ttl: timedelta = timedelta(days=7),
        dashboard_ttl: timedelta = timedelta(hours=8),
    ):
        if not secret_key:
            raise ConfigurationError(code="MISSING_SESSION_SECRET")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.session_ttl = session_ttl
        self.dashboard_ttl = dashboard_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionCodec":
        if settings.is_production and settings.secret_key == INSECURE_DEFAULT_SECRET:
            logger.critical("SECRET_KEY is not set in production")
            raise ConfigurationError(code="MISSING_SESSION_SECRET")
        return cls(
            settings.secret_key,
            algorithm=settings.algorithm,
            session_ttl=timedelta(hours=settings.session_expire_hours),
            dashboard_ttl=timedelta(hours=settings.dashboard_session_expire_hours),
        )

    def _encode(self, payload: dict, token_type: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {**payload, "typ": token_type, "iat": now, "exp": now + ttl}
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def _decode(self, token: str | None, token_type: str) -> dict | None:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            return None
        if payload.get("typ") != token_type:
            return None
        return payload

    def create(self, claims: SessionClaims) -> str:
        """Sign a session token for the given claims."""
        return self._encode(claims.model_dump(mode="json"), SESSION_TOKEN_TYPE, self.session_ttl)

    def verify(self, token: str | None) -> VerifiedSession | None:
        """Return the session for a valid token, otherwise None.

        Tampered, expired, malformed and wrong-type tokens are indistinguishable
        to the caller.
        """
        payload = self._decode(token, SESSION_TOKEN_TYPE)
        if payload is None:
            return None
        try:
            claims = SessionClaims.model_validate(payload)
        except ValidationError:
            return None
        return VerifiedSession(
            email=claims.email,
            role=claims.role,
            submission_id=claims.submission_id,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def create_dashboard(self) -> str:
        """Sign a dashboard token (shared-secret access, not tied to a role)."""
        return self._encode({"sub": "dashboard"}, DASHBOARD_TOKEN_TYPE, self.dashboard_ttl)

    def verify_dashboard(self, token: str | None) -> bool:
        return self._decode(token, DASHBOARD_TOKEN_TYPE) is not None


def is_bcrypt_hash(value: str) -> bool:
    """Check for a recognised bcrypt version prefix ($2a$, $2b$, $2y$)."""
    return bool(_BCRYPT_PREFIX.match(value))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Compare a password against a bcrypt hash in constant time."""
    if not is_bcrypt_hash(hashed_password):
        raise ConfigurationError(code="INVALID_PASSWORD_HASH_FORMAT")
    password = plain_password.encode("utf-8")
    if len(password) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(password, hashed_password.encode("utf-8"))
    except ValueError as e:
        raise ConfigurationError(code="INVALID_PASSWORD_HASH_FORMAT") from e


def constant_time_equals(supplied: str, expected: str) -> bool:
    """Compare two secrets without leaking where they differ."""
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def generate_auth_code() -> str:
    """Opaque, URL-safe one-time code."""
    return secrets.token_urlsafe(32)
