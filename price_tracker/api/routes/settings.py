"""Crawler settings API endpoints."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from price_tracker.api.deps import get_settings_store
from price_tracker.db.repository import SettingsStore
from price_tracker.detect.change_detector import (
    NOTIFY_ON_SALE_KEY,
    PRICE_DROP_KEY,
    PRICE_INCREASE_KEY,
    RATE_LIMIT_KEY,
)

router = APIRouter(prefix="/api/settings", tags=["settings"])

_NUMERIC_KEYS = (PRICE_DROP_KEY, PRICE_INCREASE_KEY, RATE_LIMIT_KEY)


class CrawlerSettingResponse(BaseModel):
    key: str
    value: str
    description: Optional[str]
    updated_at: datetime

    class Config:
        from_attributes = True


class CrawlerSettingUpdate(BaseModel):
    key: str
    value: str
    description: Optional[str] = None


def _validate(update: CrawlerSettingUpdate) -> None:
    if update.key in _NUMERIC_KEYS:
        try:
            number = Decimal(update.value.strip())
        except InvalidOperation:
            raise HTTPException(status_code=422, detail=f"{update.key} must be a number")
        if not number.is_finite():
            raise HTTPException(status_code=422, detail=f"{update.key} must be a finite number")
        if number < 0:
            raise HTTPException(status_code=422, detail=f"{update.key} must not be negative")
    elif update.key == NOTIFY_ON_SALE_KEY and update.value not in ("true", "false"):
        raise HTTPException(status_code=422, detail=f"{update.key} must be 'true' or 'false'")


@router.get("", response_model=List[CrawlerSettingResponse])
async def list_settings(store: SettingsStore = Depends(get_settings_store)):
    return await store.list()


@router.put("", response_model=CrawlerSettingResponse)
async def update_setting(
    update: CrawlerSettingUpdate,
    store: SettingsStore = Depends(get_settings_store),
):
    """Create or update a crawler setting; read at the start of the next crawl."""
    _validate(update)
    return await store.upsert(update.key, update.value.strip(), update.description)
