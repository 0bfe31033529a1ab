"""
Mode state machine and key dispatch.

States:
- edit: targets can be added, moved and bound; keys pass through unless a
  key capture is pending
- play: bound keys are swallowed and turned into clicks at their target

Sub-states (edit only):
- awaiting_assignment: the next key-down is bound to this target
- awaiting_spawn_capture: the UI is waiting for a click to set the spawn
  point; Esc cancels it
"""

import atexit
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, List, Optional, Tuple

from .errors import InvalidModeError, KeyClickError, UnknownTargetError
from .geometry import grid_offset, target_center
from .keyboard import KeyEvent
from .mouse import ClickWorker
from .profiles import Profile, ProfileStore
from .registry import ClickTarget, Position, TargetRegistry, finite_position

log = logging.getLogger(__name__)


class Mode(Enum):
    EDIT = 'edit'
    PLAY = 'play'


class EventKind(Enum):
    MODE_CHANGED = auto()
    TARGET_ADDED = auto()
    TARGET_MOVED = auto()
    TARGET_REMOVED = auto()
    ASSIGNMENT_REQUESTED = auto()
    ASSIGNMENT_CANCELLED = auto()
    KEY_ASSIGNED = auto()
    SPAWN_CAPTURE_REQUESTED = auto()
    SPAWN_CAPTURE_CANCELLED = auto()
    SPAWN_POSITION_SET = auto()
    PROFILE_LOADED = auto()


@dataclass
class ControllerEvent:
    """Notification for the UI layer (overlay visibility, marker labels, hints)."""
    kind: EventKind
    data: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class ModeController:
    """
    Owns the live registry, the key listener and the mode.

    Call init() once to install the key hook and teardown() before exit;
    both are also run by the context manager. Every dependent should be
    handed this instance rather than creating its own listener.

    Pass defer (e.g. ClickWorker.submit) so that listeners notified from
    the key hook run on another thread instead of holding up the hook.
    A ClickWorker clicker is used for this when defer is not given.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        clicker,
        listener=None,
        store: Optional[ProfileStore] = None,
        target_size: Tuple[float, float] = (40, 40),
        canvas_origin: Tuple[float, float] = (0, 0),
        spawn_position: Position = (100.0, 100.0),
        restore_cursor: bool = False,
        click_button: str = 'left',
        cancel_key: str = 'esc',
        spawn_grid_columns: int = 5,
        spawn_grid_spacing: float = 70,
        defer: Optional[Callable[..., None]] = None,
    ):
        self._registry = registry
        self._clicker = clicker
        self._listener = listener
        self._store = store
        # Runs notifications raised on the hook thread; None runs them inline
        if defer is None and isinstance(clicker, ClickWorker):
            defer = clicker.submit
        self._defer = defer

        self.target_size = (float(target_size[0]), float(target_size[1]))
        self.canvas_origin = (float(canvas_origin[0]), float(canvas_origin[1]))
        self.restore_cursor = restore_cursor
        self.click_button = click_button
        self.cancel_key = cancel_key
        self.spawn_grid_columns = spawn_grid_columns
        self.spawn_grid_spacing = spawn_grid_spacing

        self._mode = Mode.EDIT
        self._spawn_position = (float(spawn_position[0]), float(spawn_position[1]))
        self._awaiting_assignment: Optional[int] = None
        self._awaiting_spawn_capture = False

        self._lock = threading.RLock()
        self._listeners: List[Callable[[ControllerEvent], None]] = []
        self._initialized = False

        if self._listener is not None:
            self._listener.set_handler(self.handle_key_event)

    # ---- lifecycle ----

    def init(self):
        """Install the global key hook. Raises ListenerInstallError if the OS refuses."""
        if self._initialized:
            return
        if self._listener is not None:
            self._listener.start()
        atexit.register(self.teardown)
        self._initialized = True
        log.info(f"Controller ready in {self._mode.name} mode")

    def teardown(self):
        """Release the key hook. Safe to call more than once."""
        if self._listener is not None:
            self._listener.stop()
        if self._initialized:
            atexit.unregister(self.teardown)
            self._initialized = False
            log.info("Controller torn down")

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.teardown()
        return False

    # ---- listeners ----

    def add_listener(self, callback: Callable[[ControllerEvent], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ControllerEvent], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, kind: EventKind, **data):
        event = ControllerEvent(kind=kind, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                log.error(f"Error in controller listener for {kind.name}: {e}")

    # ---- state ----

    @property
    def mode(self) -> Mode:
        with self._lock:
            return self._mode

    @property
    def registry(self) -> TargetRegistry:
        return self._registry

    @property
    def spawn_position(self) -> Position:
        with self._lock:
            return self._spawn_position

    @property
    def awaiting_assignment(self) -> Optional[int]:
        with self._lock:
            return self._awaiting_assignment

    @property
    def awaiting_spawn_capture(self) -> bool:
        with self._lock:
            return self._awaiting_spawn_capture

    def targets(self) -> List[ClickTarget]:
        with self._lock:
            return self._registry.snapshot()

    def screen_point_for(self, target_id: int) -> Tuple[int, int]:
        """Absolute screen point a target clicks (its visual center)."""
        with self._lock:
            target = self._registry.get(target_id)
            return target_center(self.canvas_origin, target.position, self.target_size)

    def _require_edit(self, operation: str):
        if self._mode is not Mode.EDIT:
            raise InvalidModeError(operation, self._mode.name)

    # ---- mode ----

    def set_mode(self, mode: Mode):
        """
        Switch between edit and play.

        Pending key or spawn captures belong to edit mode and are dropped
        when entering play. The listener keeps running either way; only
        what a key-down does changes.
        """
        mode = Mode(mode)
        with self._lock:
            old = self._mode
            if old is mode:
                return
            cancelled_assignment = self._awaiting_assignment
            cancelled_spawn = self._awaiting_spawn_capture
            if mode is Mode.PLAY:
                self._awaiting_assignment = None
                self._awaiting_spawn_capture = False
            else:
                cancelled_assignment, cancelled_spawn = None, False
            self._mode = mode

        log.info(f"Mode change: {old.name} -> {mode.name}")
        if cancelled_assignment is not None:
            self._notify(EventKind.ASSIGNMENT_CANCELLED, target_id=cancelled_assignment)
        if cancelled_spawn:
            self._notify(EventKind.SPAWN_CAPTURE_CANCELLED)
        # Overlay hides in play, shows in edit
        self._notify(EventKind.MODE_CHANGED, old=old, new=mode, overlay_visible=mode is Mode.EDIT)

    def toggle_mode(self) -> Mode:
        new = Mode.PLAY if self.mode is Mode.EDIT else Mode.EDIT
        self.set_mode(new)
        return new

    # ---- targets ----

    def add_target(self, position: Optional[Position] = None) -> int:
        """
        Create a target. Without a position it is placed on a grid that
        starts at the spawn point, so new targets don't stack.
        """
        with self._lock:
            if position is None:
                dx, dy = grid_offset(len(self._registry), self.spawn_grid_columns, self.spawn_grid_spacing)
                position = (self._spawn_position[0] + dx, self._spawn_position[1] + dy)
            target_id = self._registry.add(position)
            target = self._registry.get(target_id)
            placed = target.position
        log.info(f"Target {target_id} added at {placed}")
        self._notify(EventKind.TARGET_ADDED, target_id=target_id, position=placed)
        return target_id

    def remove_target(self, target_id: int):
        with self._lock:
            existed = target_id in self._registry
            self._registry.remove(target_id)
            cancelled = self._awaiting_assignment == target_id
            if cancelled:
                self._awaiting_assignment = None
        if cancelled:
            self._notify(EventKind.ASSIGNMENT_CANCELLED, target_id=target_id)
        if existed:
            log.info(f"Target {target_id} removed")
            self._notify(EventKind.TARGET_REMOVED, target_id=target_id)

    def move_target(self, target_id: int, position: Position):
        with self._lock:
            self._registry.move(target_id, position)
            placed = self._registry.get(target_id).position
        self._notify(EventKind.TARGET_MOVED, target_id=target_id, position=placed)

    # ---- key assignment ----

    def request_assign_key(self, target_id: int):
        """Bind the next key-down to target_id. Replaces any earlier request."""
        with self._lock:
            self._require_edit('request_assign_key')
            if target_id not in self._registry:
                raise UnknownTargetError(target_id)
            previous = self._awaiting_assignment
            self._awaiting_assignment = target_id
        log.info(f"Waiting for a key for target {target_id}")
        self._notify(EventKind.ASSIGNMENT_REQUESTED, target_id=target_id, previous=previous)

    def cancel_assign_key(self):
        with self._lock:
            target_id = self._awaiting_assignment
            self._awaiting_assignment = None
        if target_id is not None:
            self._notify(EventKind.ASSIGNMENT_CANCELLED, target_id=target_id)

    # ---- spawn point ----

    def request_spawn_capture(self):
        with self._lock:
            self._require_edit('request_spawn_capture')
            self._awaiting_spawn_capture = True
        self._notify(EventKind.SPAWN_CAPTURE_REQUESTED)

    def cancel_spawn_capture(self):
        with self._lock:
            was_waiting = self._awaiting_spawn_capture
            self._awaiting_spawn_capture = False
        if was_waiting:
            self._notify(EventKind.SPAWN_CAPTURE_CANCELLED)

    def set_spawn_position(self, position: Position):
        """Record the spawn point (the UI calls this once its capture click lands)."""
        with self._lock:
            self._spawn_position = finite_position(position)
            self._awaiting_spawn_capture = False
            spawn = self._spawn_position
        log.info(f"Spawn position set to {spawn}")
        self._notify(EventKind.SPAWN_POSITION_SET, position=spawn)

    # ---- key dispatch ----

    def handle_key_event(self, event: KeyEvent):
        """
        Decide what one key-down does. Runs on the hook thread.

        Order matters: a pending spawn-capture cancel wins, then a pending
        assignment, then play-mode dispatch; everything else passes through.
        """
        click_at = None
        notification = None

        with self._lock:
            if self._awaiting_spawn_capture and event.key == self.cancel_key:
                self._awaiting_spawn_capture = False
                event.consume()
                notification = (EventKind.SPAWN_CAPTURE_CANCELLED, {})

            elif self._awaiting_assignment is not None:
                target_id = self._awaiting_assignment
                self._awaiting_assignment = None
                # Assignment capture swallows the key no matter what
                event.consume()
                if target_id in self._registry:
                    displaced = self._registry.assign_key(target_id, event.key)
                    log.info(f"Key '{event.key}' assigned to target {target_id}")
                    notification = (
                        EventKind.KEY_ASSIGNED,
                        {'target_id': target_id, 'key': event.key, 'displaced_id': displaced},
                    )
                else:
                    log.warning(f"Target {target_id} vanished before key '{event.key}' was captured")

            elif self._mode is Mode.PLAY:
                target_id = self._registry.lookup_by_key(event.key)
                if target_id is not None:
                    event.consume()
                    target = self._registry.get(target_id)
                    click_at = target_center(self.canvas_origin, target.position, self.target_size)
                    log.debug(f"Key '{event.key}' -> target {target_id} at {click_at}")

        if click_at is not None:
            self._clicker.click(click_at[0], click_at[1], restore_cursor=self.restore_cursor, button=self.click_button)
        if notification is not None:
            if self._defer is not None:
                self._defer(self._notify, notification[0], **notification[1])
            else:
                self._notify(notification[0], **notification[1])

    # ---- profiles ----

    def _require_store(self) -> ProfileStore:
        if self._store is None:
            raise KeyClickError(code="NO_PROFILE_STORE", message="No profile directory configured")
        return self._store

    def save_profile(self, name: str):
        store = self._require_store()
        with self._lock:
            profile = Profile(spawn_position=self._spawn_position, targets=self._registry.snapshot())
        return store.save(name, profile)

    def load_profile(self, name: str) -> Profile:
        """
        Replace every target with the named profile.

        The file is fully read and validated first; on ProfileNotFoundError
        or ProfileParseError the live registry is left untouched.
        """
        profile = self._require_store().load(name)
        with self._lock:
            cancelled = self._awaiting_assignment
            self._awaiting_assignment = None
            self._registry.replace_all(profile.targets)
            self._spawn_position = profile.spawn_position
            result = Profile(spawn_position=self._spawn_position, targets=self._registry.snapshot())
        if cancelled is not None:
            self._notify(EventKind.ASSIGNMENT_CANCELLED, target_id=cancelled)
        self._notify(EventKind.PROFILE_LOADED, name=name, profile=result)
        return result

    def list_profiles(self) -> List[str]:
        return self._require_store().list()

    def delete_profile(self, name: str):
        self._require_store().delete(name)
