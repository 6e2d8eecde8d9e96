"""Authentication and authorization guards.

Every submission endpoint goes through exactly one of ``require_auth``,
``require_role`` or ``check_submission_access``. The guards return either a
``VerifiedSession`` or a ``Denial``; callers must branch on the result.
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from slowapi.util import get_remote_address

from fieldpost.core.errors import AuthenticationRequired, AuthorizationDenied, FieldPostError
from fieldpost.core.identity import RoleDirectory
from fieldpost.core.security import SessionCodec, VerifiedSession
from fieldpost.models import Role

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("fieldpost.audit")

SESSION_COOKIE = "session"
DASHBOARD_COOKIE = "dashboard_session"


@dataclass(frozen=True)
class Denial:
    """Explicit rejection from a guard."""

    error: FieldPostError

    @property
    def status_code(self) -> int:
        return self.error.status_code


GuardResult = VerifiedSession | Denial


@dataclass(frozen=True)
class AccessRule:
    """Who may act on a submission besides (optionally) its owner."""

    roles: frozenset[Role] = frozenset()
    allow_owner: bool = True

    @classmethod
    def from_flags(cls, allow_pro: bool, allow_leader: bool) -> "AccessRule":
        roles = set()
        if allow_pro:
            roles.add(Role.PRO)
        if allow_leader:
            roles.add(Role.LEADER)
        return cls(roles=frozenset(roles))

    def permits(self, session: VerifiedSession, owner_email: str) -> bool:
        if self.allow_owner and session.email == owner_email:
            return True
        return session.role in self.roles


OWNER_ONLY = AccessRule()
OWNER_OR_REVIEWERS = AccessRule(roles=frozenset({Role.PRO, Role.LEADER}))


def has_role(session: VerifiedSession, role: Role) -> bool:
    """Exact role match. PRO and LEADER do not imply each other."""
    return session.role == role


def client_ip(request: Request) -> str:
    """Peer address of the connection.

    Forwarding headers are only honoured once a trusted proxy has rewritten the
    peer (see ``forwarded_allow_ips``); a client-supplied X-Forwarded-For is ignored.
    """
    return get_remote_address(request)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return None


def _authentication_required() -> Denial:
    return Denial(AuthenticationRequired(headers={"X-Auth-Required": "true"}))


class AccessGuard:
    """Resolves the caller's session and applies role and ownership rules."""

    def __init__(self, codec: SessionCodec, directory: RoleDirectory):
        self.codec = codec
        self.directory = directory

    def current_session(self, request: Request) -> VerifiedSession | None:
        """Verify the session token and re-check role membership.

        A token whose email is no longer allow-listed for its role is treated
        as no session at all.
        """
        token = request.cookies.get(SESSION_COOKIE) or _bearer_token(request)
        session = self.codec.verify(token)
        if session is None:
            return None
        if not self.directory.validate_email_for_role(session.email, session.role):
            logger.warning(
                "Session rejected: %s no longer allowed for role %s",
                session.email,
                session.role.value,
            )
            return None
        return session

    def _unauthenticated(self, request: Request) -> Denial:
        audit_logger.warning(
            "Authentication required but not provided - IP: %s - Path: %s",
            client_ip(request),
            request.url.path,
        )
        return _authentication_required()

    def require_auth(self, request: Request) -> GuardResult:
        session = self.current_session(request)
        if session is None:
            return self._unauthenticated(request)
        return session

    def require_role(self, request: Request, role: Role) -> GuardResult:
        session = self.current_session(request)
        if session is None:
            return self._unauthenticated(request)

        if not has_role(session, role):
            audit_logger.warning(
                "Authorization failed - User: %s (%s) - Required role: %s - IP: %s - Path: %s",
                session.email,
                session.role.value,
                role.value,
                client_ip(request),
                request.url.path,
            )
            return Denial(
                AuthorizationDenied(
                    "Insufficient permissions",
                    code="INSUFFICIENT_ROLE",
                    headers={"X-Authorization-Failed": "true"},
                )
            )
        return session

    def check_submission_access(
        self,
        request: Request,
        owner_email: str,
        rule: AccessRule = OWNER_OR_REVIEWERS,
    ) -> GuardResult:
        session = self.current_session(request)
        if session is None:
            return self._unauthenticated(request)

        if rule.permits(session, owner_email):
            return session

        audit_logger.warning(
            "IDOR attempt blocked - User: %s (%s) - Owner: %s - IP: %s - Path: %s",
            session.email,
            session.role.value,
            owner_email,
            client_ip(request),
            request.url.path,
        )
        return Denial(AuthorizationDenied(headers={"X-Access-Denied": "true"}))

    def has_dashboard_access(self, request: Request) -> bool:
        return self.codec.verify_dashboard(request.cookies.get(DASHBOARD_COOKIE))
