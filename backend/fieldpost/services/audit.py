"""Audit logging service."""

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldpost.core.security import VerifiedSession
from fieldpost.models import AuditLog, utcnow

audit_logger = logging.getLogger("fieldpost.audit")


class AuditService:
    """Records security and workflow events.

    Recording is best-effort: a failed write is logged and never fails the
    request that triggered it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        event: str,
        *,
        actor: VerifiedSession | None = None,
        actor_email: str | None = None,
        actor_role: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        ip_address: str | None = None,
        success: bool = True,
        **details: Any,
    ) -> AuditLog | None:
        """Log an audit event.

        Args:
            event: Dotted event name (e.g., auth.code_validated, submission.posted)
            actor: Session of the user performing the action, if any
            actor_email: Email when there is no session (e.g., failed login)
            actor_role: Role when there is no session
            resource_type: Type of resource (e.g., "submission")
            resource_id: ID of the affected resource
            ip_address: Client IP address
            success: Whether the action succeeded
            details: Extra context, JSON serialized

        Returns:
            Created AuditLog entry, or None if it could not be stored
        """
        if actor is not None:
            actor_email = actor.email
            actor_role = actor.role.value

        audit_logger.info(
            "%s actor=%s role=%s resource=%s:%s ip=%s success=%s %s",
            event,
            actor_email,
            actor_role,
            resource_type,
            resource_id,
            ip_address,
            success,
            details or "",
        )

        entry = AuditLog(
            timestamp=utcnow(),
            event=event,
            actor_email=actor_email,
            actor_role=actor_role,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
            success=success,
            details=json.dumps(details, default=str) if details else None,
        )
        try:
            self.session.add(entry)
            await self.session.commit()
            await self.session.refresh(entry)
        except SQLAlchemyError:
            audit_logger.exception("Failed to store audit event %s", event)
            await self.session.rollback()
            return None
        return entry

    async def log_status_changed(
        self,
        actor: VerifiedSession,
        submission_id: str,
        old_status: str,
        new_status: str,
        ip_address: str | None = None,
        **details: Any,
    ) -> AuditLog | None:
        """Log a submission status change."""
        return await self.record(
            "submission.status_changed",
            actor=actor,
            resource_type="submission",
            resource_id=submission_id,
            ip_address=ip_address,
            old_status=old_status,
            new_status=new_status,
            **details,
        )

    async def log_auth_attempt(
        self,
        *,
        method: str,
        success: bool,
        email: str | None,
        role: str | None,
        ip_address: str,
        reason: str | None = None,
        **details: Any,
    ) -> AuditLog | None:
        """Log an authentication attempt."""
        return await self.record(
            f"auth.{method}",
            actor_email=email,
            actor_role=role,
            ip_address=ip_address,
            success=success,
            reason=reason,
            **details,
        )
