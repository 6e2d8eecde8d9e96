"""Role membership loaded from configuration."""

from dataclasses import dataclass

from fieldpost.core.config import Settings
from fieldpost.core.errors import ConfigurationError
from fieldpost.models import Role


def parse_email_list(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated allow-list, dropping blanks."""
    if not raw:
        return ()
    return tuple(entry.strip() for entry in raw.split(",") if entry.strip())


@dataclass(frozen=True)
class RoleDirectory:
    """Allow-listed emails per role, parsed once at startup."""

    team_members: tuple[str, ...] = ()
    leaders: tuple[str, ...] = ()
    pro: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoleDirectory":
        return cls(
            team_members=parse_email_list(settings.approved_team_emails),
            leaders=parse_email_list(settings.team_leader_email),
            pro=settings.pro_email.strip() or None,
        )

    def validate_email_for_role(self, email: str, role: Role) -> bool:
        """Exact match against the allow-list for ``role``.

        The supplied email is compared as-is: surrounding whitespace is not
        trimmed, so ``" pro@example.com "`` never matches.
        """
        if role == Role.PRO:
            return self.pro is not None and email == self.pro
        if role == Role.LEADER:
            return email in self.leaders
        if role == Role.TEAM_MEMBER:
            return email in self.team_members
        return False

    def require_pro_email(self) -> str:
        if not self.pro:
            raise ConfigurationError(code="MISSING_PRO_EMAIL")
        return self.pro

    def require_leader_emails(self) -> tuple[str, ...]:
        if not self.leaders:
            raise ConfigurationError(code="MISSING_LEADER_EMAIL")
        return self.leaders
