"""Business settings administration."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from order_payments.api.dependencies import Store, UserId
from order_payments.api.schemas import (
    ErrorResponse,
    SettingResponse,
    SettingsBatchResponse,
    SettingsBatchUpdate,
    SettingsListResponse,
    SettingUpdate,
)
from order_payments.services.settings_store import SettingNotFoundError, SettingValueError

router = APIRouter(prefix="/settings", tags=["settings"])

SettingKey = Annotated[str, Path(min_length=1, max_length=64)]


async def _entry(store: Store, key: str) -> SettingResponse:
    for entry in await store.list_all():
        if entry.key == key:
            return SettingResponse.model_validate(entry)
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown setting: {key}")


@router.get("", response_model=SettingsListResponse)
async def list_settings(store: Store) -> SettingsListResponse:
    entries = await store.list_all()
    return SettingsListResponse(
        items=[SettingResponse.model_validate(e) for e in entries],
        degraded=store.degraded,
    )


@router.put(
    "/{key}",
    response_model=SettingResponse,
    responses={400: {"model": ErrorResponse}},
)
async def update_setting(
    store: Store,
    user_id: UserId,
    key: SettingKey,
    payload: SettingUpdate,
) -> SettingResponse:
    try:
        await store.update(key, payload.value, updated_by=user_id, description=payload.description)
    except SettingValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await _entry(store, key)


@router.put(
    "",
    response_model=SettingsBatchResponse,
    responses={400: {"model": ErrorResponse}},
)
async def batch_update_settings(
    store: Store,
    user_id: UserId,
    payload: SettingsBatchUpdate,
) -> SettingsBatchResponse:
    """Update several settings at once; nothing is written if any value is invalid."""
    try:
        updated = await store.batch_update(payload.settings, updated_by=user_id)
    except SettingValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return SettingsBatchResponse(updated=updated)


@router.post(
    "/{key}/reset",
    response_model=SettingResponse,
    responses={404: {"model": ErrorResponse}},
)
async def reset_setting(store: Store, user_id: UserId, key: SettingKey) -> SettingResponse:
    try:
        await store.reset(key, updated_by=user_id)
    except SettingNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return await _entry(store, key)
