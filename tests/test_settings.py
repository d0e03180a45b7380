"""Tests for SettingsGateway: validation, persistence and change propagation."""

import json
from datetime import time

import pytest

from punchclock.errors import ConstraintError
from punchclock.settings import Settings, SettingsGateway


class TestDefaults:
    def test_defaults(self):
        settings = Settings()
        assert settings.reminder.enabled is False
        assert settings.reminder.interval_minutes == 30
        assert settings.reminder.active_weekdays == {0, 1, 2, 3, 4}
        assert settings.idle.timeout_minutes == 5
        assert settings.show_timer_in_tray is True


class TestUpdate:
    async def test_partial_update_is_deep_merged(self, settings):
        new = await settings.update({"reminder": {"enabled": True}})
        assert new.reminder.enabled is True
        assert new.reminder.interval_minutes == 30
        assert settings.current is new

    async def test_update_is_persisted(self, settings, store):
        await settings.update({"idle": {"enabled": True, "timeout_minutes": 15}, "reminder": {"active_start": "22:30"}})
        reloaded = SettingsGateway(store)
        await reloaded.load()
        assert reloaded.current.idle.timeout_minutes == 15
        assert reloaded.current.reminder.active_start == time(22, 30)

    @pytest.mark.parametrize("partial", [
        {"reminder": {"interval_minutes": 0}},
        {"idle": {"timeout_minutes": -1}},
        {"reminder": {"active_weekdays": [0, 7]}},
        {"reminder": {"active_start": "25:00"}},
        {"unknown": True},
    ])
    async def test_invalid_partial_is_rejected(self, settings, partial):
        before = settings.current
        with pytest.raises(ConstraintError):
            await settings.update(partial)
        assert settings.current is before


class TestListeners:
    async def test_listeners_get_old_and_new(self, settings):
        calls = []

        async def on_change(old, new):
            calls.append((old.idle.enabled, new.idle.enabled))

        settings.subscribe(on_change)
        await settings.update({"idle": {"enabled": True}})
        assert calls == [(False, True)]

    async def test_failing_listener_does_not_block_update(self, settings):
        def broken(old, new):
            raise RuntimeError("boom")

        settings.subscribe(broken)
        new = await settings.update({"show_timer_in_tray": False})
        assert settings.current is new

    async def test_unsubscribe(self, settings):
        calls = []
        unsubscribe = settings.subscribe(lambda old, new: calls.append(new))
        unsubscribe()
        await settings.update({"show_timer_in_tray": False})
        assert calls == []


class TestLoad:
    async def test_unreadable_rows_fall_back_to_defaults(self, store):
        await store.write_settings({"reminder": "{not json", "idle": json.dumps({"timeout_minutes": -3})})
        gateway = SettingsGateway(store)
        loaded = await gateway.load()
        assert loaded == Settings()
