"""
Settings gateway: the single parsed representation of engine configuration.

Settings live in the ``settings`` table (one JSON document per section),
are validated with pydantic, and every accepted change is pushed to
subscribers (idle watchdog, reminder scheduler, status surface) so it takes
effect on their next tick without a restart.
"""

import asyncio
import json
import logging
from datetime import time
from typing import Annotated, Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConstraintError
from .store import SessionStore

logger = logging.getLogger("punchclock.settings")

Weekday = Annotated[int, Field(ge=0, le=6)]  # datetime.weekday(): Monday=0 .. Sunday=6


class ReminderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    interval_minutes: int = Field(default=30, gt=0)
    active_start: time = time(9, 0)
    active_end: time = time(18, 0)
    active_weekdays: set[Weekday] = Field(default_factory=lambda: {0, 1, 2, 3, 4})


class IdleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    timeout_minutes: int = Field(default=5, gt=0)


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reminder: ReminderConfig = Field(default_factory=ReminderConfig)
    idle: IdleConfig = Field(default_factory=IdleConfig)
    show_timer_in_tray: bool = True


SettingsListener = Callable[[Settings, Settings], Any]


def _deep_merge(base: dict, patch: dict) -> dict:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsGateway:
    def __init__(self, store: SessionStore):
        self.store = store
        self._current = Settings()
        self._listeners: list[SettingsListener] = []
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Settings:
        return self._current

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register listener(old, new); returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def load(self) -> Settings:
        raw = await self.store.read_settings()
        data = {}
        for key, value in raw.items():
            try:
                data[key] = json.loads(value)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring unreadable setting '{key}'")
        try:
            self._current = Settings.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Stored settings invalid, using defaults: {e.error_count()} error(s)")
            self._current = Settings()
        logger.info("Settings loaded")
        return self._current

    async def update(self, partial: dict) -> Settings:
        """Merge partial into the current settings, validate, persist, then notify listeners."""
        async with self._lock:
            old = self._current
            merged = _deep_merge(old.model_dump(mode="json"), partial or {})
            try:
                new = Settings.model_validate(merged)
            except ValidationError as e:
                raise ConstraintError(f"Invalid settings: {e}") from e

            dumped = new.model_dump(mode="json")
            await self.store.write_settings({key: json.dumps(value) for key, value in dumped.items()})
            self._current = new
            logger.info(f"Settings updated: {sorted(partial or {})}")

            for listener in list(self._listeners):
                try:
                    result = listener(old, new)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception("Settings listener failed")
            return new
