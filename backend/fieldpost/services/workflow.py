"""Submission lifecycle state machine.

Every transition is a compare-and-swap on ``status``: the UPDATE only matches
while the submission is still in the source state, so two concurrent requests
can never both move it. The actor's role is checked here against the
transition table as well as by the route guard.
"""

import logging
from dataclasses import dataclass, field
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from fieldpost.core.authz import OWNER_ONLY, OWNER_OR_REVIEWERS, AccessRule
from fieldpost.core.errors import (
    AuthorizationDenied,
    InvalidTransition,
    NotFound,
    PersistenceError,
    ValidationFailed,
)
from fieldpost.core.identity import RoleDirectory
from fieldpost.core.security import VerifiedSession
from fieldpost.models import Feedback, LeaderApproval, Role, Submission, SubmissionStatus, utcnow
from fieldpost.services.audit import AuditService
from fieldpost.services.auth_codes import AuthCodeService
from fieldpost.services.drafting import PostGenerator
from fieldpost.services.notifications import NotificationKind, Notifier
from fieldpost.services.photo_storage import PhotoStore, PhotoUpload
from fieldpost.services.social import SocialPublisher, SocialPublishError
from fieldpost.services.validation import (
    sanitize_for_ai,
    validate_feedback_length,
    validate_notes_length,
)

logger = logging.getLogger(__name__)

PRO_ONLY = AccessRule(roles=frozenset({Role.PRO}), allow_owner=False)
LEADER_ONLY = AccessRule(roles=frozenset({Role.LEADER}), allow_owner=False)


@dataclass(frozen=True)
class Transition:
    name: str
    source: SubmissionStatus
    target: SubmissionStatus
    rule: AccessRule


MARK_READY = Transition("mark_ready", SubmissionStatus.DRAFT, SubmissionStatus.AWAITING_PRO, OWNER_ONLY)
SEND_FOR_APPROVAL = Transition(
    "send_for_approval", SubmissionStatus.AWAITING_PRO, SubmissionStatus.AWAITING_LEADER, PRO_ONLY
)
APPROVE = Transition(
    "approve", SubmissionStatus.AWAITING_LEADER, SubmissionStatus.AWAITING_PRO_TO_POST, LEADER_ONLY
)
REJECT = Transition("reject", SubmissionStatus.AWAITING_LEADER, SubmissionStatus.REJECTED, LEADER_ONLY)
PUBLISH = Transition("publish", SubmissionStatus.AWAITING_PRO_TO_POST, SubmissionStatus.POSTED, PRO_ONLY)

TRANSITIONS: dict[str, Transition] = {
    t.name: t for t in (MARK_READY, SEND_FOR_APPROVAL, APPROVE, REJECT, PUBLISH)
}

# PATCH whitelist; everything in PROTECTED_FIELDS is rejected outright
EDITABLE_FIELDS = frozenset({"final_post_text", "edited_by_pro"})
PROTECTED_FIELDS = frozenset(
    {
        "id",
        "submitted_by_email",
        "photo_paths",
        "created_at",
        "updated_at",
        "posted_to_facebook",
        "posted_to_instagram",
        "facebook_post_id",
        "instagram_post_id",
        "posted_at",
    }
)
STATUS_EDITORS = frozenset({Role.PRO, Role.LEADER})


@dataclass
class PublishOutcome:
    """Per-platform result of publishing. ``errors`` is keyed by platform."""

    submission: Submission
    facebook_post_id: str | None = None
    instagram_post_id: str | None = None
    errors: dict[str, str] = field(default_factory=dict)


class SubmissionWorkflow:
    """Creates submissions and moves them through the approval chain."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        directory: RoleDirectory,
        auth_codes: AuthCodeService,
        notifier: Notifier,
        publisher: SocialPublisher,
        generator: PostGenerator,
        photo_store: PhotoStore,
        audit: AuditService,
    ):
        self.session = session
        self.directory = directory
        self.auth_codes = auth_codes
        self.notifier = notifier
        self.publisher = publisher
        self.generator = generator
        self.photo_store = photo_store
        self.audit = audit

    # Reads

    async def get(self, submission_id: str, *, with_history: bool = False) -> Submission:
        query = select(Submission).where(Submission.id == submission_id)
        if with_history:
            query = query.options(
                selectinload(Submission.feedback),
                selectinload(Submission.leader_approvals),
            )
        result = await self.session.execute(query)
        submission = result.scalar_one_or_none()
        if submission is None:
            raise NotFound("Submission not found")
        return submission

    async def list_for(
        self, actor: VerifiedSession, status: SubmissionStatus | None = None
    ) -> list[Submission]:
        """Team members see their own submissions; PRO and leaders see all."""
        query = select(Submission)
        if actor.role not in OWNER_OR_REVIEWERS.roles:
            query = query.where(Submission.submitted_by_email == actor.email)
        if status is not None:
            query = query.where(Submission.status == status)
        result = await self.session.execute(query.order_by(Submission.created_at.desc()))
        return list(result.scalars().all())

    async def search(
        self, status: SubmissionStatus | None = None, text: str | None = None
    ) -> list[Submission]:
        """Unscoped listing for the dashboard."""
        query = select(Submission)
        if status is not None:
            query = query.where(Submission.status == status)
        if text:
            pattern = f"%{text.lower()}%"
            query = query.where(
                or_(
                    func.lower(Submission.notes).like(pattern),
                    func.lower(Submission.final_post_text).like(pattern),
                    func.lower(Submission.submitted_by_email).like(pattern),
                )
            )
        result = await self.session.execute(query.order_by(Submission.created_at.desc()))
        return list(result.scalars().all())

    # Helpers

    def _authorize(self, actor: VerifiedSession, rule: AccessRule, submission: Submission, action: str) -> None:
        if not rule.permits(actor, submission.submitted_by_email):
            logger.warning(
                "Workflow denied %s on %s for %s (%s)",
                action,
                submission.id,
                actor.email,
                actor.role.value,
            )
            raise AuthorizationDenied(headers={"X-Access-Denied": "true"})

    async def _commit(self, action: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.exception("Failed to commit %s", action)
            await self.session.rollback()
            raise PersistenceError() from e

    async def _swap_status(
        self,
        submission_id: str,
        source: SubmissionStatus,
        target: SubmissionStatus,
        **values: Any,
    ) -> None:
        """Move ``source`` -> ``target`` atomically; the caller commits."""
        result = await self.session.execute(
            update(Submission)
            .where(Submission.id == submission_id, Submission.status == source)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise InvalidTransition()

    async def _transition(
        self,
        actor: VerifiedSession,
        transition: Transition,
        submission_id: str,
        ip_address: str | None,
        **values: Any,
    ) -> Submission:
        submission = await self.get(submission_id)
        self._authorize(actor, transition.rule, submission, transition.name)
        if submission.status != transition.source:
            raise InvalidTransition()

        await self._swap_status(submission_id, transition.source, transition.target, **values)
        await self._commit(transition.name)
        await self.session.refresh(submission)

        await self.audit.log_status_changed(
            actor,
            submission_id,
            transition.source.value,
            transition.target.value,
            ip_address,
            action=transition.name,
        )
        return submission

    async def _notify_pro(
        self, kind: NotificationKind, submission_id: str, comment: str | None = None
    ) -> None:
        pro_email = self.directory.require_pro_email()
        code = await self.auth_codes.create_auth_code(pro_email, Role.PRO)
        await self.notifier.send(
            pro_email, kind, code, role=Role.PRO, submission_id=submission_id, comment=comment
        )

    # Lifecycle

    async def create(
        self,
        actor: VerifiedSession,
        notes: str,
        photos: list[PhotoUpload],
        ip_address: str | None = None,
    ) -> Submission:
        """Validate and sanitize notes, draft a post, store photos, persist.

        Nothing is stored if drafting fails.
        """
        validate_notes_length(notes)
        for photo in photos:
            photo.validate()

        clean_notes = sanitize_for_ai(notes)
        if not clean_notes:
            raise ValidationFailed("Notes cannot be empty", code="NOTES_REQUIRED")

        draft = await self.generator.generate_post(clean_notes)
        photo_urls = await self.photo_store.save(photos)

        submission = Submission(
            notes=clean_notes,
            photo_paths=photo_urls,
            submitted_by_email=actor.email,
            status=SubmissionStatus.DRAFT,
            final_post_text=draft,
        )
        self.session.add(submission)
        await self._commit("create")
        await self.session.refresh(submission)

        await self.audit.record(
            "submission.created",
            actor=actor,
            resource_type="submission",
            resource_id=submission.id,
            ip_address=ip_address,
            photo_count=len(photo_urls),
        )
        return submission

    async def mark_ready(
        self, actor: VerifiedSession, submission_id: str, ip_address: str | None = None
    ) -> Submission:
        self.directory.require_pro_email()
        submission = await self._transition(actor, MARK_READY, submission_id, ip_address)
        await self._notify_pro(NotificationKind.PRO_REVIEW, submission_id)
        return submission

    async def send_for_approval(
        self,
        actor: VerifiedSession,
        submission_id: str,
        edited_post_text: str | None = None,
        ip_address: str | None = None,
    ) -> Submission:
        leaders = self.directory.require_leader_emails()
        values = {"edited_by_pro": edited_post_text} if edited_post_text else {}
        submission = await self._transition(
            actor, SEND_FOR_APPROVAL, submission_id, ip_address, **values
        )

        for leader_email in leaders:
            code = await self.auth_codes.create_auth_code(leader_email, Role.LEADER, submission_id)
            await self.notifier.send(
                leader_email,
                NotificationKind.LEADER_APPROVAL,
                code,
                role=Role.LEADER,
                submission_id=submission_id,
            )
        return submission

    async def record_decision(
        self,
        actor: VerifiedSession,
        submission_id: str,
        approved: bool,
        comment: str | None = None,
        ip_address: str | None = None,
    ) -> Submission:
        """Approve or reject, appending a LeaderApproval in the same transaction."""
        self.directory.require_pro_email()
        transition = APPROVE if approved else REJECT
        submission = await self.get(submission_id)
        self._authorize(actor, transition.rule, submission, transition.name)
        if submission.status != transition.source:
            raise InvalidTransition()

        await self._swap_status(submission_id, transition.source, transition.target)
        self.session.add(
            LeaderApproval(
                submission_id=submission_id,
                approved=approved,
                comment=comment or None,
                decided_by_email=actor.email,
            )
        )
        await self._commit(transition.name)
        await self.session.refresh(submission)

        await self.audit.log_status_changed(
            actor,
            submission_id,
            transition.source.value,
            transition.target.value,
            ip_address,
            action=transition.name,
            comment=comment,
        )

        if approved:
            await self._notify_pro(NotificationKind.POST_APPROVED, submission_id)
        else:
            await self._notify_pro(NotificationKind.POST_REJECTED, submission_id, comment=comment)
        return submission

    async def _attempt(
        self,
        platform: str,
        submission_id: str,
        outcome: PublishOutcome,
        post: Callable[[], Awaitable[str]],
    ) -> str | None:
        """Run one platform call, recording any failure in ``outcome.errors``."""
        try:
            return await post()
        except SocialPublishError as e:
            logger.error("%s publish failed for %s: %s", platform, submission_id, e)
            outcome.errors[platform] = e.message
        except Exception:
            logger.exception("Unexpected error publishing %s to %s", submission_id, platform)
            outcome.errors[platform] = f"Unexpected error posting to {platform}"
        return None

    async def publish(
        self, actor: VerifiedSession, submission_id: str, ip_address: str | None = None
    ) -> PublishOutcome:
        """Post to Facebook, and to Instagram when there is a photo.

        The submission is claimed (moved to ``posted``) before any platform call
        so it cannot be published twice. Platform failures never undo the claim:
        failed platforms keep a null post ID and are reported in ``errors``.
        """
        submission = await self.get(submission_id)
        self._authorize(actor, PUBLISH.rule, submission, PUBLISH.name)
        if submission.status != PUBLISH.source:
            raise InvalidTransition()
        if not submission.final_post_text:
            raise ValidationFailed("No post text available", code="NO_POST_TEXT")

        await self._swap_status(submission_id, PUBLISH.source, PUBLISH.target)
        await self._commit(PUBLISH.name)

        text = submission.edited_by_pro or submission.final_post_text
        photo_urls = list(submission.photo_paths or [])
        outcome = PublishOutcome(submission=submission)

        outcome.facebook_post_id = await self._attempt(
            "facebook", submission_id, outcome, lambda: self.publisher.post_to_facebook(text, photo_urls)
        )
        if photo_urls:
            outcome.instagram_post_id = await self._attempt(
                "instagram", submission_id, outcome, lambda: self.publisher.post_to_instagram(text, photo_urls[0])
            )

        now = utcnow()
        await self.session.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .values(
                posted_to_facebook=outcome.facebook_post_id is not None,
                posted_to_instagram=outcome.instagram_post_id is not None,
                facebook_post_id=outcome.facebook_post_id,
                instagram_post_id=outcome.instagram_post_id,
                posted_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._commit("publish_results")
        await self.session.refresh(submission)

        if outcome.facebook_post_id is None and outcome.instagram_post_id is None:
            logger.error("Publishing %s reached no platform: %s", submission_id, outcome.errors)
            await self.audit.record(
                "submission.publish_failed",
                actor=actor,
                resource_type="submission",
                resource_id=submission_id,
                ip_address=ip_address,
                success=False,
                errors=outcome.errors,
            )

        await self.audit.log_status_changed(
            actor,
            submission_id,
            PUBLISH.source.value,
            PUBLISH.target.value,
            ip_address,
            action=PUBLISH.name,
            facebook_post_id=outcome.facebook_post_id,
            instagram_post_id=outcome.instagram_post_id,
            errors=outcome.errors or None,
        )
        return outcome

    async def regenerate(
        self,
        actor: VerifiedSession,
        submission_id: str,
        feedback: str | None = None,
        ip_address: str | None = None,
    ) -> Submission:
        """Redraft the post, recording feedback as the next version."""
        validate_feedback_length(feedback)
        submission = await self.get(submission_id)
        self._authorize(actor, OWNER_OR_REVIEWERS, submission, "regenerate")

        clean_feedback = sanitize_for_ai(feedback) if feedback else None
        new_text = await self.generator.generate_post(
            submission.notes, submission.final_post_text, clean_feedback
        )

        version = None
        if feedback:
            latest = await self.session.execute(
                select(func.max(Feedback.version_number)).where(Feedback.submission_id == submission_id)
            )
            version = (latest.scalar_one_or_none() or 0) + 1
            self.session.add(
                Feedback(submission_id=submission_id, feedback_text=feedback, version_number=version)
            )

        submission.final_post_text = new_text
        submission.updated_at = utcnow()
        self.session.add(submission)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise InvalidTransition(
                "Submission was modified concurrently", code="CONCURRENT_UPDATE"
            ) from e
        except SQLAlchemyError as e:
            logger.exception("Failed to commit regenerate")
            await self.session.rollback()
            raise PersistenceError() from e
        await self.session.refresh(submission)

        await self.audit.record(
            "submission.regenerated",
            actor=actor,
            resource_type="submission",
            resource_id=submission_id,
            ip_address=ip_address,
            feedback_version=version,
        )
        return submission

    async def update_fields(
        self,
        actor: VerifiedSession,
        submission_id: str,
        changes: dict[str, Any],
        ip_address: str | None = None,
    ) -> Submission:
        """Apply a PATCH body.

        Protected fields and (for team members) ``status`` are rejected with
        403; unknown fields are ignored.
        """
        submission = await self.get(submission_id)
        self._authorize(actor, OWNER_OR_REVIEWERS, submission, "update")

        forbidden = sorted(PROTECTED_FIELDS.intersection(changes))
        if forbidden:
            logger.warning(
                "Protected field update blocked on %s by %s: %s", submission_id, actor.email, forbidden
            )
            raise AuthorizationDenied(
                "Cannot modify protected fields", code="PROTECTED_FIELD"
            )

        updates: dict[str, Any] = {}
        for name in EDITABLE_FIELDS.intersection(changes):
            value = changes[name]
            if value is not None and not isinstance(value, str):
                raise ValidationFailed(f"{name} must be a string")
            updates[name] = value

        old_status = submission.status
        if "status" in changes:
            if actor.role not in STATUS_EDITORS:
                logger.warning("Status change blocked on %s by %s", submission_id, actor.email)
                raise AuthorizationDenied(
                    "Only PRO and leaders can change status", code="STATUS_CHANGE_FORBIDDEN"
                )
            try:
                updates["status"] = SubmissionStatus(changes["status"])
            except ValueError as e:
                raise ValidationFailed("Invalid status", code="INVALID_STATUS") from e

        if not updates:
            raise ValidationFailed("No updatable fields provided", code="NO_UPDATABLE_FIELDS")

        for name, value in updates.items():
            setattr(submission, name, value)
        submission.updated_at = utcnow()
        self.session.add(submission)
        await self._commit("update")
        await self.session.refresh(submission)

        if "status" in updates and updates["status"] != old_status:
            await self.audit.log_status_changed(
                actor, submission_id, old_status.value, updates["status"].value, ip_address, action="update"
            )
        else:
            await self.audit.record(
                "submission.updated",
                actor=actor,
                resource_type="submission",
                resource_id=submission_id,
                ip_address=ip_address,
                fields=sorted(updates),
            )
        return submission

    async def delete(self, submission_id: str, ip_address: str | None = None) -> None:
        """Remove a submission and its history (dashboard only)."""
        submission = await self.get(submission_id, with_history=True)
        await self.session.delete(submission)
        await self._commit("delete")
        await self.audit.record(
            "submission.deleted",
            actor_role="dashboard",
            resource_type="submission",
            resource_id=submission_id,
            ip_address=ip_address,
        )
