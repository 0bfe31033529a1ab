import pytest
from unittest.mock import MagicMock

from keyclick.controller import ModeController
from keyclick.keyboard import KeyEvent
from keyclick.profiles import ProfileStore
from keyclick.registry import TargetRegistry


class FakeBackendListener:
    """Stands in for pynput.keyboard.Listener; records how it was built."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.stopped = False
        self.alive = True
        self.suppressed = 0

    def start(self):
        self.started = True

    def wait(self):
        pass

    def is_alive(self):
        return self.alive and not self.stopped

    def join(self, timeout=None):
        pass

    def stop(self):
        self.stopped = True

    def suppress_event(self):
        self.suppressed += 1


@pytest.fixture
def fake_backend():
    """Factory that records every backend listener it creates."""
    created = []

    def factory(**kwargs):
        listener = FakeBackendListener(**kwargs)
        created.append(listener)
        return listener

    factory.created = created
    return factory


@pytest.fixture
def registry():
    return TargetRegistry()


@pytest.fixture
def clicker():
    return MagicMock()


@pytest.fixture
def store(tmp_path):
    return ProfileStore(tmp_path / "profiles")


@pytest.fixture
def controller(registry, clicker, store):
    return ModeController(
        registry=registry,
        clicker=clicker,
        store=store,
        target_size=(40, 40),
        canvas_origin=(0, 0),
    )


@pytest.fixture
def press(controller):
    """Send one key-down through the controller and return the event."""
    def _press(key):
        event = KeyEvent(key)
        controller.handle_key_event(event)
        return event
    return _press
