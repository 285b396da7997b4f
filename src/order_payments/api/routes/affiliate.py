"""Referral codes, ambassador program lifecycle and earnings endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from order_payments.api.dependencies import Commissions, CustomerId, DbSession, UserId
from order_payments.api.schemas import (
    AmbassadorResponse,
    ApplicationCreate,
    ApplicationResponse,
    ApplicationReview,
    CustomCodeUpdate,
    EarningsResponse,
    ErrorResponse,
    ReferralCodeResponse,
    ReferralResponse,
)
from order_payments.services.ambassadors import (
    AmbassadorError,
    AmbassadorService,
    ApplicationNotFound,
    ApplicationReviewError,
    DuplicateApplication,
    NotAnAmbassador,
    ReferralCodeUnavailable,
)

router = APIRouter(tags=["affiliate"])


@router.get("/referrals/validate/{code}", response_model=ReferralCodeResponse)
async def validate_referral_code(
    db: DbSession,
    engine: Commissions,
    code: Annotated[str, Path(max_length=40)],
) -> ReferralCodeResponse:
    """Tell checkout whether a referral code can be used."""
    result = await engine.validate_referral_code(db, code)
    return ReferralCodeResponse(
        valid=result.valid,
        ambassador_id=result.ambassador_id,
        ambassador_name=result.ambassador_name,
        discount_percent=result.discount_percent,
        error=result.error,
    )


@router.get("/ambassadors/{ambassador_id}/referrals", response_model=list[ReferralResponse])
async def list_referrals(
    db: DbSession,
    engine: Commissions,
    ambassador_id: Annotated[UUID, Path()],
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ReferralResponse]:
    referrals = await engine.referrals_by_ambassador(db, ambassador_id, limit, offset)
    return [ReferralResponse.model_validate(r) for r in referrals]


@router.get("/ambassadors/{ambassador_id}/earnings", response_model=EarningsResponse)
async def get_earnings(
    db: DbSession,
    engine: Commissions,
    ambassador_id: Annotated[UUID, Path()],
) -> EarningsResponse:
    """Total, pending and available commission for an ambassador."""
    summary = await engine.earnings_summary(db, ambassador_id)
    return EarningsResponse.model_validate(summary)


def _ambassador_http_error(e: AmbassadorError) -> HTTPException:
    if isinstance(e, ApplicationNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, (DuplicateApplication, ApplicationReviewError, ReferralCodeUnavailable)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, NotAnAmbassador):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(e))


_LIFECYCLE_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post(
    "/ambassadors/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_LIFECYCLE_ERRORS,
)
async def submit_application(
    db: DbSession,
    customer_id: CustomerId,
    payload: ApplicationCreate,
) -> ApplicationResponse:
    """Apply to the ambassador program. One application per user."""
    try:
        application = await AmbassadorService(db).apply(customer_id, payload.notes)
    except AmbassadorError as e:
        raise _ambassador_http_error(e)
    return ApplicationResponse.model_validate(application)


@router.get("/ambassadors/applications", response_model=list[ApplicationResponse])
async def list_pending_applications(db: DbSession, user_id: UserId) -> list[ApplicationResponse]:
    applications = await AmbassadorService(db).pending_applications()
    return [ApplicationResponse.model_validate(a) for a in applications]


@router.post(
    "/ambassadors/applications/{application_id}/approve",
    response_model=AmbassadorResponse,
    responses=_LIFECYCLE_ERRORS,
)
async def approve_application(
    db: DbSession,
    user_id: UserId,
    application_id: Annotated[UUID, Path()],
) -> AmbassadorResponse:
    """Approve a pending application and issue the ambassador's code."""
    try:
        ambassador = await AmbassadorService(db).approve(application_id, reviewed_by=user_id)
    except AmbassadorError as e:
        raise _ambassador_http_error(e)
    return AmbassadorResponse.model_validate(ambassador)


@router.post(
    "/ambassadors/applications/{application_id}/reject",
    response_model=ApplicationResponse,
    responses=_LIFECYCLE_ERRORS,
)
async def reject_application(
    db: DbSession,
    user_id: UserId,
    application_id: Annotated[UUID, Path()],
    payload: ApplicationReview | None = None,
) -> ApplicationResponse:
    """Reject a pending application, or revoke an approved ambassador."""
    try:
        application = await AmbassadorService(db).reject(
            application_id,
            reviewed_by=user_id,
            reason=payload.reason if payload else None,
        )
    except AmbassadorError as e:
        raise _ambassador_http_error(e)
    return ApplicationResponse.model_validate(application)


@router.patch(
    "/ambassadors/custom-code",
    response_model=AmbassadorResponse,
    responses=_LIFECYCLE_ERRORS,
)
async def update_custom_code(
    db: DbSession,
    customer_id: CustomerId,
    payload: CustomCodeUpdate,
) -> AmbassadorResponse:
    """Replace the calling ambassador's referral code."""
    try:
        ambassador = await AmbassadorService(db).update_custom_code(customer_id, payload.code)
    except AmbassadorError as e:
        raise _ambassador_http_error(e)
    return AmbassadorResponse.model_validate(ambassador)
