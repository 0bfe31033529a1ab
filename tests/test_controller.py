"""
Tests for ModeController: mode transitions, capture sub-states and the
per-key dispatch table.
"""

import time
from unittest.mock import MagicMock

import pytest

from keyclick.controller import EventKind, Mode, ModeController
from keyclick.errors import InvalidModeError, ProfileNotFoundError, ProfileParseError, UnknownTargetError
from keyclick.keyboard import GlobalKeyListener, KeyEvent
from keyclick.mouse import ClickWorker
from keyclick.registry import TargetRegistry


@pytest.fixture
def events(controller):
    received = []
    controller.add_listener(received.append)
    return received


@pytest.fixture
def two_targets(controller, registry):
    """Target 1 at (100,100) bound to 'a', target 2 at (300,150) bound to 'b'."""
    one = controller.add_target((100, 100))
    two = controller.add_target((300, 150))
    registry.assign_key(one, "a")
    registry.assign_key(two, "b")
    return one, two


class TestModes:

    def test_starts_in_edit(self, controller):
        assert controller.mode is Mode.EDIT

    def test_mode_change_notifies_overlay(self, controller, events):
        controller.set_mode(Mode.PLAY)
        change = [e for e in events if e.kind is EventKind.MODE_CHANGED][-1]
        assert change.data["old"] is Mode.EDIT
        assert change.data["new"] is Mode.PLAY
        assert change.data["overlay_visible"] is False

    def test_setting_same_mode_is_silent(self, controller, events):
        controller.set_mode(Mode.EDIT)
        assert events == []

    def test_toggle(self, controller):
        assert controller.toggle_mode() is Mode.PLAY
        assert controller.toggle_mode() is Mode.EDIT

    def test_play_drops_pending_captures(self, controller, events):
        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)
        controller.request_spawn_capture()

        controller.set_mode(Mode.PLAY)

        assert controller.awaiting_assignment is None
        assert controller.awaiting_spawn_capture is False
        kinds = [e.kind for e in events]
        assert EventKind.ASSIGNMENT_CANCELLED in kinds
        assert EventKind.SPAWN_CAPTURE_CANCELLED in kinds

    def test_mode_accepts_its_value(self, controller):
        controller.set_mode("play")
        assert controller.mode is Mode.PLAY

    def test_unknown_mode_is_rejected(self, controller, events):
        with pytest.raises(ValueError):
            controller.set_mode("bogus")
        assert controller.mode is Mode.EDIT
        assert events == []


class TestPlayDispatch:

    def test_bound_key_clicks_target_center(self, controller, clicker, press, two_targets):
        """Key B in play mode clicks (320, 170) once and is consumed."""
        controller.set_mode(Mode.PLAY)

        event = press("b")

        assert event.consumed is True
        clicker.click.assert_called_once_with(320, 170, restore_cursor=False, button="left")

    def test_unbound_key_passes_through(self, controller, clicker, press, two_targets):
        controller.set_mode(Mode.PLAY)
        event = press("z")
        assert event.consumed is False
        clicker.click.assert_not_called()

    def test_canvas_origin_is_added(self, registry, clicker):
        controller = ModeController(registry, clicker, canvas_origin=(-1920, 0), target_size=(40, 40))
        target_id = controller.add_target((100, 100))
        registry.assign_key(target_id, "a")
        controller.set_mode(Mode.PLAY)

        controller.handle_key_event(KeyEvent("a"))

        clicker.click.assert_called_once_with(-1800, 120, restore_cursor=False, button="left")

    def test_edit_play_edit_disables_clicks(self, controller, clicker, press, two_targets):
        controller.set_mode(Mode.PLAY)
        controller.set_mode(Mode.EDIT)

        event = press("a")

        assert event.consumed is False
        clicker.click.assert_not_called()

    def test_click_options_are_forwarded(self, controller, clicker, press, two_targets):
        controller.restore_cursor = True
        controller.click_button = "right"
        controller.set_mode(Mode.PLAY)
        press("a")
        clicker.click.assert_called_once_with(120, 120, restore_cursor=True, button="right")


class TestAssignment:

    def test_captures_next_key(self, controller, registry, press, events):
        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)

        event = press("q")

        assert event.consumed is True
        assert registry.get(target_id).assigned_key == "q"
        assert controller.awaiting_assignment is None
        assigned = [e for e in events if e.kind is EventKind.KEY_ASSIGNED][-1]
        assert assigned.data == {"target_id": target_id, "key": "q", "displaced_id": None}

    def test_capture_displaces_other_owner(self, controller, registry, press, two_targets):
        one, two = two_targets
        controller.request_assign_key(two)

        event = press("a")

        assert event.consumed is True
        assert registry.get(one).assigned_key is None
        assert registry.get(two).assigned_key == "a"
        assert registry.lookup_by_key("a") == two

    def test_only_next_key_is_captured(self, controller, registry, press):
        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)
        press("q")
        event = press("w")
        assert event.consumed is False
        assert registry.get(target_id).assigned_key == "q"

    def test_cancel_leaves_registry_alone(self, controller, registry, press):
        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)
        controller.cancel_assign_key()

        event = press("q")

        assert event.consumed is False
        assert registry.get(target_id).assigned_key is None

    def test_new_request_replaces_old(self, controller, registry, press, events):
        first = controller.add_target((0, 0))
        second = controller.add_target((0, 0))
        controller.request_assign_key(first)
        controller.request_assign_key(second)

        press("q")

        assert registry.get(first).assigned_key is None
        assert registry.get(second).assigned_key == "q"
        requested = [e for e in events if e.kind is EventKind.ASSIGNMENT_REQUESTED][-1]
        assert requested.data["previous"] == first

    def test_request_in_play_mode_is_rejected(self, controller):
        target_id = controller.add_target((0, 0))
        controller.set_mode(Mode.PLAY)
        with pytest.raises(InvalidModeError):
            controller.request_assign_key(target_id)

    def test_request_unknown_target_is_rejected(self, controller):
        with pytest.raises(UnknownTargetError):
            controller.request_assign_key(42)

    def test_removing_pending_target_cancels_capture(self, controller, press):
        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)
        controller.remove_target(target_id)

        assert controller.awaiting_assignment is None
        assert press("q").consumed is False


class TestSpawnCapture:

    def test_escape_cancels_and_is_consumed(self, controller, press):
        controller.request_spawn_capture()
        event = press("esc")
        assert event.consumed is True
        assert controller.awaiting_spawn_capture is False

    def test_escape_beats_pending_assignment(self, controller, registry, press):
        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)
        controller.request_spawn_capture()

        press("esc")

        assert controller.awaiting_spawn_capture is False
        assert controller.awaiting_assignment == target_id
        assert registry.get(target_id).assigned_key is None

    def test_other_keys_do_not_cancel(self, controller, press):
        controller.request_spawn_capture()
        event = press("a")
        assert event.consumed is False
        assert controller.awaiting_spawn_capture is True

    def test_set_spawn_position_resolves_capture(self, controller):
        controller.request_spawn_capture()
        controller.set_spawn_position((250, 300))
        assert controller.awaiting_spawn_capture is False
        assert controller.spawn_position == (250.0, 300.0)

    def test_request_in_play_mode_is_rejected(self, controller):
        controller.set_mode(Mode.PLAY)
        with pytest.raises(InvalidModeError):
            controller.request_spawn_capture()

    def test_escape_without_capture_passes_through(self, controller, press):
        assert press("esc").consumed is False

    def test_non_finite_spawn_is_rejected(self, controller):
        controller.request_spawn_capture()
        with pytest.raises(ValueError):
            controller.set_spawn_position((float("nan"), 300))
        assert controller.spawn_position == (100.0, 100.0)
        assert controller.awaiting_spawn_capture is True


class TestTargets:

    def test_default_placement_cascades_from_spawn(self, controller, registry):
        controller.set_spawn_position((100, 100))
        ids = [controller.add_target() for _ in range(6)]
        positions = [registry.get(i).position for i in ids]
        assert positions[0] == (100.0, 100.0)
        assert positions[1] == (170.0, 100.0)
        assert positions[4] == (380.0, 100.0)
        assert positions[5] == (100.0, 170.0)

    def test_move_target(self, controller, registry, events):
        target_id = controller.add_target((0, 0))
        controller.move_target(target_id, (12, 34))
        assert registry.get(target_id).position == (12.0, 34.0)
        assert events[-1].kind is EventKind.TARGET_MOVED

    def test_screen_point_for(self, controller):
        target_id = controller.add_target((300, 150))
        assert controller.screen_point_for(target_id) == (320, 170)

    def test_listener_errors_do_not_break_operations(self, controller):
        controller.add_listener(MagicMock(side_effect=RuntimeError("ui bug")))
        target_id = controller.add_target((0, 0))
        assert target_id == 1


class TestProfiles:

    def test_save_then_load_restores_targets(self, controller, registry, two_targets):
        controller.set_spawn_position((55.5, 66.25))
        controller.save_profile("main")

        controller.remove_target(two_targets[0])
        controller.add_target((1, 1))
        profile = controller.load_profile("main")

        assert profile.spawn_position == (55.5, 66.25)
        assert {(t.id, t.x, t.y, t.assigned_key) for t in registry.targets()} == {
            (1, 100.0, 100.0, "a"),
            (2, 300.0, 150.0, "b"),
        }
        # Counter saw id 3 before the load and keeps going from there
        assert controller.add_target((0, 0)) == 4

    def test_missing_profile_leaves_registry_untouched(self, controller, registry, two_targets):
        before = registry.snapshot()
        with pytest.raises(ProfileNotFoundError):
            controller.load_profile("nope")
        assert registry.snapshot() == before

    def test_malformed_profile_leaves_registry_untouched(self, controller, registry, store, two_targets):
        store.directory.mkdir(parents=True, exist_ok=True)
        store.path_for("broken").write_text('{"spawnX": 1, "spawnY": 2, "targets": [{"id": 1}]}', encoding="utf-8")
        controller.set_spawn_position((7, 8))
        before = registry.snapshot()

        with pytest.raises(ProfileParseError):
            controller.load_profile("broken")

        assert registry.snapshot() == before
        assert controller.spawn_position == (7.0, 8.0)

    def test_non_finite_move_keeps_profile_loadable(self, controller, registry):
        target_id = controller.add_target((10, 20))
        with pytest.raises(ValueError):
            controller.move_target(target_id, (float("nan"), 5))

        controller.save_profile("p")
        controller.load_profile("p")

        assert registry.get(target_id).position == (10.0, 20.0)

    def test_list_profiles(self, controller):
        controller.save_profile("b")
        controller.save_profile("a")
        assert controller.list_profiles() == ["a", "b"]

    def test_load_emits_event(self, controller, events):
        controller.save_profile("p")
        controller.load_profile("p")
        assert events[-1].kind is EventKind.PROFILE_LOADED


class TestLifecycle:

    def test_init_and_teardown_drive_listener(self, fake_backend, clicker):
        listener = GlobalKeyListener(listener_factory=fake_backend, platform="win32")
        controller = ModeController(TargetRegistry(), clicker, listener=listener)

        with controller:
            assert listener.is_running
        assert not listener.is_running
        assert fake_backend.created[0].stopped

        controller.teardown()  # second teardown is harmless

    def test_listener_events_reach_controller(self, fake_backend, clicker):
        listener = GlobalKeyListener(listener_factory=fake_backend, platform="win32")
        registry = TargetRegistry()
        controller = ModeController(registry, clicker, listener=listener)
        target_id = controller.add_target((0, 0))
        registry.assign_key(target_id, "a")
        controller.set_mode(Mode.PLAY)

        with controller:
            assert listener.dispatch("a") is True
            assert listener.dispatch("x") is False

        clicker.click.assert_called_once_with(20, 20, restore_cursor=False, button="left")


class TestHookLatency:

    def test_slow_listener_does_not_delay_key_decision(self, store):
        worker = ClickWorker(MagicMock())
        listener = GlobalKeyListener()
        controller = ModeController(TargetRegistry(), worker, listener=listener, store=store, defer=worker.submit)
        received = []

        def slow_listener(event):
            time.sleep(0.5)
            received.append(event)

        target_id = controller.add_target((0, 0))
        controller.request_assign_key(target_id)
        controller.add_listener(slow_listener)

        started = time.monotonic()
        consumed = listener.dispatch("q")
        elapsed = time.monotonic() - started

        assert consumed is True
        assert elapsed < 0.25
        assert received == []

        worker.drain()

        assert [e.kind for e in received] == [EventKind.KEY_ASSIGNED]
        assert received[0].data == {"target_id": target_id, "key": "q", "displaced_id": None}

    def test_worker_clicker_defers_hook_work(self, store):
        synth = MagicMock()
        worker = ClickWorker(synth)
        registry = TargetRegistry()
        controller = ModeController(registry, worker, store=store)
        received = []
        controller.add_listener(received.append)
        target_id = controller.add_target((300, 150))
        registry.assign_key(target_id, "b")
        controller.set_mode(Mode.PLAY)

        event = KeyEvent("b")
        controller.handle_key_event(event)

        assert event.consumed is True
        synth.click.assert_not_called()
        worker.drain()
        synth.click.assert_called_once_with(320, 170, restore_cursor=False, button="left")

        controller.set_mode(Mode.EDIT)
        controller.request_assign_key(target_id)
        received.clear()
        controller.handle_key_event(KeyEvent("c"))
        assert received == []
        worker.drain()
        assert [e.kind for e in received] == [EventKind.KEY_ASSIGNED]
