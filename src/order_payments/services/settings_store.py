"""Database-backed business settings with an in-memory cache.

Reads are served from a dict that is replaced wholesale on every write, so
readers never observe a half-applied update. Writes are serialized by an
asyncio.Lock. When the database is unreachable the store serves the
compiled-in defaults and reports itself as degraded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_payments.models import SystemSetting
from order_payments.models.base import utcnow

logger = logging.getLogger(__name__)


class SettingNotFoundError(KeyError):
    """Raised for a key that has neither a stored value nor a default."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"Unknown setting: {self.key}"


class SettingValueError(ValueError):
    """Raised when a stored or submitted value has the wrong shape."""


# key -> (default value, description)
DEFAULT_SETTINGS: dict[str, tuple[str, str]] = {
    "commission_rate_bp": ("500", "Ambassador commission rate in basis points"),
    "customer_discount_percent": ("5", "Discount shown to customers using a referral code"),
    "commission_hold_days": ("14", "Days before a commission becomes available"),
    "max_file_size_mb": ("5", "Maximum upload size in megabytes"),
    "max_bulk_order_qty": ("10000", "Maximum total quantity in one order"),
    "min_order_amount_cents": ("1000", "Minimum order total in cents"),
    "payment_timeout_minutes": ("30", "Minutes before an unpaid checkout expires"),
    "refund_window_days": ("14", "Days after delivery during which refunds are accepted"),
}

# Every default above is an integer
INTEGER_SETTINGS = frozenset(DEFAULT_SETTINGS)

# Upper bounds; the lower bound of every integer setting is 0
INTEGER_MAXIMUMS: dict[str, int] = {
    "commission_rate_bp": 10000,
    "customer_discount_percent": 100,
}


@dataclass(frozen=True)
class SettingEntry:
    """A setting as shown to administrators."""

    key: str
    value: str
    description: str | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None
    is_default: bool = False


def _coerce(key: str, value: Any) -> str:
    if value is None:
        raise SettingValueError(f"Setting {key} cannot be null")
    text = str(value).strip()
    if key in INTEGER_SETTINGS:
        try:
            number = int(text)
        except ValueError as e:
            raise SettingValueError(f"Setting {key} must be an integer, got {value!r}") from e
        if number < 0:
            raise SettingValueError(f"Setting {key} must not be negative")
        maximum = INTEGER_MAXIMUMS.get(key)
        if maximum is not None and number > maximum:
            raise SettingValueError(f"Setting {key} cannot exceed {maximum}")
        return str(number)
    return text


class SettingsStore:
    """Business settings, loaded once and cached.

    Args:
        session_factory: Factory producing AsyncSession instances. Each
            operation opens and closes its own session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._cache: dict[str, str] = {}
        self._loaded = False
        self._degraded = False
        self._lock = asyncio.Lock()

    @property
    def degraded(self) -> bool:
        """True while serving defaults because the database failed."""
        return self._degraded

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def init(self) -> None:
        """Load settings, persisting any missing defaults. Never raises."""
        async with self._lock:
            await self._load()

    async def refresh(self) -> None:
        await self.init()

    async def _load(self) -> None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(SystemSetting))
                rows = {row.key: row.value for row in result.scalars()}

                missing = [key for key in DEFAULT_SETTINGS if key not in rows]
                for key in missing:
                    value, description = DEFAULT_SETTINGS[key]
                    session.add(SystemSetting(key=key, value=value, description=description))
                    rows[key] = value
                if missing:
                    await session.commit()
                    logger.info("Initialized %d default settings", len(missing))
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Settings unavailable, using defaults: %s", e)
            self._cache = {key: value for key, (value, _) in DEFAULT_SETTINGS.items()}
            self._degraded = True
        else:
            self._cache = rows
            self._degraded = False
        self._loaded = True

    async def get(self, key: str) -> str:
        """Return the current value for key.

        Raises:
            SettingNotFoundError: If the key is neither stored nor defaulted.
        """
        if not self._loaded:
            await self.init()
        value = self._cache.get(key)
        if value is not None:
            return value
        default = DEFAULT_SETTINGS.get(key)
        if default is None:
            raise SettingNotFoundError(key)
        return default[0]

    async def get_int(self, key: str) -> int:
        value = await self.get(key)
        try:
            return int(value)
        except ValueError as e:
            raise SettingValueError(f"Setting {key} is not an integer: {value!r}") from e

    async def commission_rate_bp(self) -> int:
        return await self.get_int("commission_rate_bp")

    async def commission_hold_days(self) -> int:
        return await self.get_int("commission_hold_days")

    async def customer_discount_percent(self) -> int:
        return await self.get_int("customer_discount_percent")

    async def min_order_amount_cents(self) -> int:
        return await self.get_int("min_order_amount_cents")

    async def max_bulk_order_qty(self) -> int:
        return await self.get_int("max_bulk_order_qty")

    async def update(
        self,
        key: str,
        value: Any,
        updated_by: str | None = None,
        description: str | None = None,
    ) -> str:
        """Persist a value and publish it to readers.

        Returns:
            The stored (normalized) value.
        """
        stored = _coerce(key, value)
        await self._write({key: stored}, updated_by, {key: description} if description else {})
        logger.info("Setting %s updated by %s", key, updated_by or "unknown")
        return stored

    async def batch_update(
        self,
        items: Mapping[str, Any] | Iterable[tuple[str, Any]],
        updated_by: str | None = None,
    ) -> dict[str, str]:
        """Update several settings in one transaction. All values are checked first."""
        pairs = items.items() if isinstance(items, Mapping) else items
        values = {key: _coerce(key, value) for key, value in pairs}
        if not values:
            return {}
        await self._write(values, updated_by, {})
        logger.info("Settings %s updated by %s", ", ".join(sorted(values)), updated_by or "unknown")
        return values

    async def reset(self, key: str, updated_by: str | None = None) -> str:
        """Restore the compiled-in default for key."""
        default = DEFAULT_SETTINGS.get(key)
        if default is None:
            raise SettingNotFoundError(key)
        await self._write({key: default[0]}, updated_by, {key: default[1]})
        logger.info("Setting %s reset to default by %s", key, updated_by or "unknown")
        return default[0]

    async def _write(
        self,
        values: dict[str, str],
        updated_by: str | None,
        descriptions: dict[str, str],
    ) -> None:
        async with self._lock:
            async with self._session_factory() as session:
                for key, value in values.items():
                    row = await session.get(SystemSetting, key)
                    if row is None:
                        default = DEFAULT_SETTINGS.get(key)
                        row = SystemSetting(
                            key=key,
                            value=value,
                            description=descriptions.get(key) or (default[1] if default else None),
                            updated_by=updated_by,
                        )
                        session.add(row)
                    else:
                        row.value = value
                        row.updated_by = updated_by
                        row.updated_at = utcnow()
                        if key in descriptions:
                            row.description = descriptions[key]
                await session.commit()

            if not self._loaded:
                await self._load()
            cache = dict(self._cache)
            cache.update(values)
            self._cache = cache

    async def list_all(self) -> list[SettingEntry]:
        """All settings with their metadata, defaults included."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(SystemSetting).order_by(SystemSetting.key))
                rows = list(result.scalars())
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Settings unavailable, listing cached values: %s", e)
            if not self._loaded:
                await self.init()
            return [
                SettingEntry(
                    key=key,
                    value=value,
                    description=DEFAULT_SETTINGS.get(key, (None, None))[1],
                    is_default=DEFAULT_SETTINGS.get(key, (None,))[0] == value,
                )
                for key, value in sorted(self._cache.items())
            ]

        entries = {
            row.key: SettingEntry(
                key=row.key,
                value=row.value,
                description=row.description,
                updated_by=row.updated_by,
                updated_at=row.updated_at,
                is_default=DEFAULT_SETTINGS.get(row.key, (None,))[0] == row.value,
            )
            for row in rows
        }
        for key, (value, description) in DEFAULT_SETTINGS.items():
            entries.setdefault(
                key, SettingEntry(key=key, value=value, description=description, is_default=True)
            )
        return [entries[key] for key in sorted(entries)]

    def clear_cache(self) -> None:
        """Drop cached values; the next read reloads from the database."""
        self._cache = {}
        self._loaded = False
