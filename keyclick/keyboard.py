"""
Global keyboard interception.

Uses pynput for the system-wide hook. On Windows the low-level hook lets
us swallow individual key-downs (win32_event_filter + suppress_event); on
other backends events are observed only and always pass through.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ListenerInstallError
from .keys import key_to_string, vk_to_string

log = logging.getLogger(__name__)

WM_KEYDOWN = 0x0100
WM_SYSKEYDOWN = 0x0104


@dataclass
class KeyEvent:
    """A key-down notification with a mutable consume decision."""
    key: str
    consumed: bool = False

    def consume(self):
        """Stop this key-down from reaching the OS and other applications."""
        self.consumed = True


KeyHandler = Callable[[KeyEvent], None]


def _pynput_listener(**kwargs):
    try:
        from pynput import keyboard
    except Exception as e:
        raise ListenerInstallError(f"Keyboard backend unavailable: {e}") from e
    return keyboard.Listener(**kwargs)


class GlobalKeyListener:
    """
    Process-wide key-down listener.

    CRITICAL: the handler runs inside the OS hook callback. The OS removes
    hooks that answer too slowly, so handlers must decide consume/pass
    without blocking and push any real work elsewhere.
    """

    def __init__(
        self,
        handler: Optional[KeyHandler] = None,
        listener_factory: Callable[..., object] = _pynput_listener,
        platform: Optional[str] = None,
    ):
        self._handler = handler
        self._listener_factory = listener_factory
        self._platform = platform or sys.platform
        self._listener = None

    @property
    def is_running(self) -> bool:
        return self._listener is not None

    @property
    def can_suppress(self) -> bool:
        """True if consumed events are actually withheld from other applications."""
        return self._platform == 'win32'

    def set_handler(self, handler: Optional[KeyHandler]):
        self._handler = handler

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def start(self):
        """Install the hook. Does nothing if it is already installed."""
        if self._listener is not None:
            return

        if self.can_suppress:
            listener = self._listener_factory(win32_event_filter=self._win32_filter)
        else:
            log.warning("Key suppression is not supported on this platform; bound keys will pass through")
            listener = self._listener_factory(on_press=self._on_press)

        # Published before start so the filter can suppress the first events
        self._listener = listener
        try:
            listener.start()
            listener.wait()
        except Exception as e:
            self._listener = None
            raise ListenerInstallError(f"Could not install keyboard hook: {e}") from e

        if not listener.is_alive():
            self._listener = None
            try:
                listener.join()
            except Exception as e:
                raise ListenerInstallError(f"Keyboard hook was rejected: {e}") from e
            raise ListenerInstallError("Keyboard hook exited during startup")

        log.info("Keyboard listener started")

    def stop(self):
        """Remove the hook. Safe to call repeatedly."""
        if self._listener is None:
            return
        listener, self._listener = self._listener, None
        listener.stop()
        log.info("Keyboard listener stopped")

    def dispatch(self, key: Optional[str]) -> bool:
        """
        Hand one key-down to the handler and return whether it was consumed.

        Handler errors never reach the hook: the event just passes through.
        AssertionErrors mean internal state is corrupt and are re-raised.
        """
        if key is None or self._handler is None:
            return False
        event = KeyEvent(key)
        try:
            self._handler(event)
        except AssertionError:
            log.critical(f"Internal error while handling key '{key}'", exc_info=True)
            raise
        except Exception as e:
            log.error(f"Error in key handler for '{key}': {e}")
            return False
        log.debug(f"Key '{key}' consumed={event.consumed}")
        return event.consumed

    def _win32_filter(self, msg, data):
        if msg not in (WM_KEYDOWN, WM_SYSKEYDOWN):
            return True
        if self.dispatch(vk_to_string(int(data.vkCode))):
            listener = self._listener
            if listener is not None:
                # Raises inside pynput to drop the event
                listener.suppress_event()
        return True

    def _on_press(self, key):
        self.dispatch(key_to_string(key))
