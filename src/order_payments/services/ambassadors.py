"""Ambassador program lifecycle: applications, review and referral codes.

A user applies once. An administrator approves the application, which turns
the user into an ambassador with a generated AMB-XXX-NNNN code, or rejects
it. An approved ambassador can later be revoked by rejecting the same
application; a rejected application disqualifies the user's code from
checkout and from commission recording.
"""

from __future__ import annotations

import logging
import re
import secrets
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from order_payments.models import AmbassadorApplication, ApplicationStatus, User
from order_payments.models.base import utcnow

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10

# Custom codes: 3-20 uppercase letters, digits, hyphens or underscores
CUSTOM_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,20}$")

DEFAULT_COMMISSION_RATE_BP = 500

_PENDING = ApplicationStatus.PENDING.value
_APPROVED = ApplicationStatus.APPROVED.value
_REJECTED = ApplicationStatus.REJECTED.value


class AmbassadorError(Exception):
    """Base error for ambassador program operations."""


class ApplicationNotFound(AmbassadorError):
    pass


class DuplicateApplication(AmbassadorError):
    """The user already has an application on file."""


class ApplicationReviewError(AmbassadorError):
    """The application is not in a state that allows the requested review."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot move application from {from_status} to {to_status}")


class NotAnAmbassador(AmbassadorError):
    pass


class InvalidCustomCode(AmbassadorError):
    """The requested code does not match CUSTOM_CODE_PATTERN."""


class ReferralCodeUnavailable(AmbassadorError):
    """The requested code belongs to another user."""


# REJECTED from APPROVED revokes an active ambassador
APPLICATION_TRANSITIONS: dict[str, list[str]] = {
    _PENDING: [_APPROVED, _REJECTED],
    _APPROVED: [_REJECTED],
    _REJECTED: [],
}


def generate_ambassador_code(name: str | None) -> str:
    """AMB-<first three letters of the name>-<4 digits>.

    Non-alphanumeric characters are dropped; names with none left use USR.
    """
    prefix = re.sub(r"[^A-Z0-9]", "", (name or "").upper())[:3] or "USR"
    return f"AMB-{prefix}-{secrets.randbelow(10000):04d}"


class AmbassadorService:
    """Applications, reviews and code changes. Each operation commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def apply(self, user_id: UUID, notes: str | None = None) -> AmbassadorApplication:
        """Submit an application for review.

        Raises:
            AmbassadorError: Unknown user or already an ambassador.
            DuplicateApplication: The user already applied.
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise AmbassadorError(f"Unknown user {user_id}")
        if user.is_ambassador:
            raise AmbassadorError(f"User {user_id} is already an ambassador")

        existing = await self.session.execute(
            select(AmbassadorApplication.id).where(AmbassadorApplication.user_id == user_id)
        )
        if existing.first() is not None:
            raise DuplicateApplication(f"User {user_id} has already submitted an application")

        application = AmbassadorApplication(user_id=user_id, status=_PENDING, notes=notes)
        self.session.add(application)
        await self.session.commit()
        logger.info("Ambassador application %s submitted by user %s", application.id, user_id)
        return application

    async def get_application(self, application_id: UUID) -> AmbassadorApplication:
        application = await self.session.get(AmbassadorApplication, application_id)
        if application is None:
            raise ApplicationNotFound(f"Application {application_id} not found")
        return application

    async def pending_applications(self) -> list[AmbassadorApplication]:
        """Applications awaiting review, newest first."""
        result = await self.session.execute(
            select(AmbassadorApplication)
            .where(AmbassadorApplication.status == _PENDING)
            .order_by(AmbassadorApplication.created_at.desc())
        )
        return list(result.scalars())

    async def _transition(
        self,
        application: AmbassadorApplication,
        to_status: str,
        reviewed_by: str | None,
        review_notes: str | None,
    ) -> str:
        current = application.status
        if to_status not in APPLICATION_TRANSITIONS.get(current, []):
            raise ApplicationReviewError(current, to_status)

        result = await self.session.execute(
            update(AmbassadorApplication)
            .where(
                AmbassadorApplication.id == application.id,
                AmbassadorApplication.status == current,
            )
            .values(
                status=to_status,
                reviewed_by=reviewed_by,
                reviewed_at=utcnow(),
                review_notes=review_notes,
            )
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) != 1:
            await self.session.rollback()
            raise ApplicationReviewError(current, to_status)
        return current

    async def approve(self, application_id: UUID, reviewed_by: str | None = None) -> User:
        """Approve a pending application and issue the user's referral code.

        A code collision rolls back and retries with a fresh code.

        Raises:
            ApplicationNotFound: No such application.
            ApplicationReviewError: The application was already reviewed.
        """
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            application = await self.get_application(application_id)
            user_id = application.user_id
            await self._transition(application, _APPROVED, reviewed_by, None)

            user = await self.session.get(User, user_id)
            code = user.ambassador_code or generate_ambassador_code(user.name)
            user.is_ambassador = True
            user.ambassador_code = code
            if user.commission_rate_bp is None:
                user.commission_rate_bp = DEFAULT_COMMISSION_RATE_BP
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                if attempt == MAX_CODE_ATTEMPTS:
                    raise
                logger.warning("Ambassador code collision, retrying (attempt %d)", attempt)
                continue
            await self.session.refresh(application)

            logger.info(
                "Ambassador application %s approved by %s, user %s code %s",
                application_id,
                reviewed_by or "unknown",
                user_id,
                code,
            )
            return user

        raise AssertionError("unreachable")

    async def reject(
        self,
        application_id: UUID,
        reviewed_by: str | None = None,
        reason: str | None = None,
    ) -> AmbassadorApplication:
        """Reject a pending application or revoke an approved one.

        A revoked ambassador keeps their code reserved and their earnings
        history, but the code no longer validates.
        """
        application = await self.get_application(application_id)
        user_id = application.user_id
        previous = await self._transition(application, _REJECTED, reviewed_by, reason)

        if previous == _APPROVED:
            user = await self.session.get(User, user_id)
            user.is_ambassador = False
        await self.session.commit()
        await self.session.refresh(application)

        if previous == _APPROVED:
            logger.warning("Ambassador %s revoked by %s", user_id, reviewed_by or "unknown")
        else:
            logger.info(
                "Ambassador application %s rejected by %s", application_id, reviewed_by or "unknown"
            )
        return application

    async def update_custom_code(self, user_id: UUID, code: str) -> User:
        """Replace an ambassador's referral code.

        Raises:
            NotAnAmbassador: The user is not an active ambassador.
            InvalidCustomCode: Bad format.
            ReferralCodeUnavailable: Already in use.
        """
        new_code = (code or "").strip().upper()
        if not CUSTOM_CODE_PATTERN.match(new_code):
            raise InvalidCustomCode(
                "Code must be 3-20 characters of A-Z, 0-9, hyphen or underscore"
            )

        user = await self.session.get(User, user_id)
        if user is None or not user.is_ambassador:
            raise NotAnAmbassador(f"User {user_id} is not an ambassador")
        if user.ambassador_code == new_code:
            return user

        taken = await self.session.execute(
            select(User.id).where(User.ambassador_code == new_code, User.id != user_id)
        )
        if taken.first() is not None:
            raise ReferralCodeUnavailable(f"Code {new_code} is already taken")

        old_code = user.ambassador_code
        user.ambassador_code = new_code
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ReferralCodeUnavailable(f"Code {new_code} is already taken") from e

        logger.info("Ambassador %s code changed %s -> %s", user_id, old_code, new_code)
        return user
