"""
Synthetic mouse clicks.

Uses pynput's mouse controller, which positions the pointer in absolute
virtual-desktop coordinates, so targets on any monitor can be clicked.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional, Tuple

from .errors import ClickInjectionError

log = logging.getLogger(__name__)

SETTLE_DELAY_MS = 10
RESTORE_DELAY_MS = 10


def _create_controller():
    from pynput import mouse
    return mouse.Controller()


def _button(name: str):
    from pynput.mouse import Button
    try:
        return getattr(Button, name)
    except AttributeError:
        raise ValueError(f"Unknown mouse button '{name}'") from None


class ClickSynthesizer:
    """
    Issues a move + press + release at an absolute screen point.

    The controller is created on first use; pass one in to drive a fake.
    """

    def __init__(
        self,
        controller=None,
        settle_delay_ms: int = SETTLE_DELAY_MS,
        restore_delay_ms: int = RESTORE_DELAY_MS,
        button_factory: Callable[[str], object] = _button,
    ):
        self._controller = controller
        self._settle = max(0, settle_delay_ms) / 1000.0
        self._restore = max(0, restore_delay_ms) / 1000.0
        self._button_factory = button_factory

    @property
    def controller(self):
        if self._controller is None:
            try:
                self._controller = _create_controller()
            except Exception as e:
                raise ClickInjectionError(f"Mouse backend unavailable: {e}") from e
        return self._controller

    def position(self) -> Tuple[int, int]:
        """Current pointer position."""
        try:
            x, y = self.controller.position
        except ClickInjectionError:
            raise
        except Exception as e:
            raise ClickInjectionError(f"Could not read pointer position: {e}") from e
        return int(x), int(y)

    def move_to(self, x: int, y: int):
        try:
            self.controller.position = (int(x), int(y))
        except ClickInjectionError:
            raise
        except Exception as e:
            raise ClickInjectionError(f"Could not move pointer: {e}", x, y) from e

    def click(self, x: int, y: int, restore_cursor: bool = False, button: str = 'left'):
        """
        Click at (x, y).

        Waits a short settle delay after moving so the receiving window sees
        the new position before the press lands. With restore_cursor, the
        pointer goes back to where it was afterwards.
        """
        btn = self._button_factory(button)
        original = self.position() if restore_cursor else None

        self.move_to(x, y)
        time.sleep(self._settle)

        try:
            self.controller.press(btn)
            self.controller.release(btn)
        except ClickInjectionError:
            raise
        except Exception as e:
            raise ClickInjectionError(f"Could not inject {button} click: {e}", x, y) from e

        log.info(f"Click {button} at ({x}, {y})")

        if original is not None:
            time.sleep(self._restore)
            self.move_to(*original)

    def right_click(self, x: int, y: int, restore_cursor: bool = False):
        self.click(x, y, restore_cursor=restore_cursor, button='right')


class ClickWorker:
    """
    Runs clicks off the keyboard hook thread.

    IMPORTANT: keyboard hooks must return very quickly, so the hook only
    enqueues; the move/press/release sequence with its sleeps happens here,
    as do any callbacks the hook hands over with submit().
    Injection failures are reported through on_error, never retried.
    """

    def __init__(
        self,
        synthesizer: ClickSynthesizer,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self._synthesizer = synthesizer
        self._on_error = on_error
        self._queue: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def click(self, x: int, y: int, restore_cursor: bool = False, button: str = 'left'):
        """Same signature as ClickSynthesizer.click, but non-blocking."""
        self.schedule(x, y, restore_cursor=restore_cursor, button=button)

    def schedule(self, x: int, y: int, restore_cursor: bool = False, button: str = 'left'):
        self._queue.put(('click', (x, y, restore_cursor, button)))

    def submit(self, callback: Callable, *args, **kwargs):
        """Run callback(*args, **kwargs) on the worker thread, in queue order."""
        self._queue.put(('callback', (callback, args, kwargs)))

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._worker_loop, name="keyclick-clicks", daemon=True)
        self._thread.start()

    def stop(self):
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

    def drain(self):
        """Process everything queued so far on the calling thread."""
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            self._run(item)

    def _worker_loop(self):
        log.info("Click worker thread started")
        while self._running:
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._run(item)
        log.info("Click worker thread stopped")

    def _run(self, item):
        action_type, payload = item
        try:
            if action_type == 'click':
                self._click(*payload)
            elif action_type == 'callback':
                callback, args, kwargs = payload
                try:
                    callback(*args, **kwargs)
                except Exception as e:
                    log.error(f"Error in queued callback: {e}")
        finally:
            self._queue.task_done()

    def _click(self, x, y, restore_cursor, button):
        try:
            self._synthesizer.click(x, y, restore_cursor=restore_cursor, button=button)
        except Exception as e:
            log.error(f"Click at ({x}, {y}) failed: {e}")
            if self._on_error:
                self._on_error(e)
