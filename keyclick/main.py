"""
KeyClick - Main entry point and system tray daemon.
"""

import sys
import os
import logging
import threading
from typing import Optional

# Handle imports for when pystray/PIL aren't available
try:
    import pystray
    from PIL import Image, ImageDraw
    TRAY_AVAILABLE = True
except ImportError:
    TRAY_AVAILABLE = False

from .config import AUTO, Config, load_config, get_config_path
from .controller import ControllerEvent, EventKind, Mode, ModeController
from .errors import KeyClickError
from .geometry import virtual_desktop_origin
from .keyboard import GlobalKeyListener
from .keys import display_name
from .mouse import ClickSynthesizer, ClickWorker
from .profiles import ProfileStore
from .registry import TargetRegistry

# Configure logging
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s',
    datefmt='%H:%M:%S'
)
log = logging.getLogger(__name__)


def resolve_canvas_origin(config: Config):
    """Screen position of the canvas' top-left corner."""
    if config.canvas_origin != AUTO:
        return config.canvas_origin
    try:
        return virtual_desktop_origin()
    except Exception as e:
        log.warning(f"Could not read monitor layout ({e}), using (0, 0) as canvas origin")
        return (0, 0)


def build_controller(config: Config, on_click_error=None):
    """Wire registry, listener, click worker and profile store from config."""
    synthesizer = ClickSynthesizer(
        settle_delay_ms=config.settle_delay_ms,
        restore_delay_ms=config.restore_delay_ms,
    )
    worker = ClickWorker(synthesizer, on_error=on_click_error)
    controller = ModeController(
        registry=TargetRegistry(),
        clicker=worker,
        listener=GlobalKeyListener(),
        store=ProfileStore(config.resolved_profile_dir()),
        target_size=config.target_size,
        canvas_origin=resolve_canvas_origin(config),
        spawn_position=config.spawn_position,
        restore_cursor=config.restore_cursor,
        click_button=config.click_button,
        cancel_key=config.cancel_key,
        spawn_grid_columns=config.spawn_grid_columns,
        spawn_grid_spacing=config.spawn_grid_spacing,
        defer=worker.submit,
    )
    return controller, worker


class KeyClick:
    """Main application controller."""

    def __init__(self):
        self.config: Optional[Config] = None
        self.controller: Optional[ModeController] = None
        self.worker: Optional[ClickWorker] = None
        self.tray: Optional['pystray.Icon'] = None
        self._running = False
        self._stopped = threading.Event()

    def load_config(self):
        """Load or create configuration."""
        log.info("Loading configuration...")
        self.config = load_config()
        logging.getLogger().setLevel(getattr(logging, self.config.log_level, logging.INFO))

        log.info(
            f"Target size={self.config.target_size}, canvas origin={self.config.canvas_origin}, "
            f"profiles in {self.config.resolved_profile_dir()}"
        )

    def _build(self):
        self.controller, self.worker = build_controller(self.config, on_click_error=self._on_click_error)
        self.controller.add_listener(self._on_controller_event)

    def _on_click_error(self, error: Exception):
        self._report(f"Click failed: {error}")

    def _on_controller_event(self, event: ControllerEvent):
        if event.kind is EventKind.MODE_CHANGED:
            self._update_tray_icon()
        elif event.kind is EventKind.KEY_ASSIGNED:
            label = display_name(event.data['key'])
            if event.data.get('displaced_id') is not None:
                log.info(f"[{label}] moved from target {event.data['displaced_id']} to {event.data['target_id']}")
            self._notify_tray(f"Target {event.data['target_id']} bound to [{label}]")

    def _report(self, message: str):
        """Surface a user-facing failure without stopping the daemon."""
        log.error(message)
        self._notify_tray(message)

    def _notify_tray(self, message: str):
        if self.tray is not None and TRAY_AVAILABLE:
            try:
                self.tray.notify(message, 'KeyClick')
            except Exception as e:
                log.warning(f"Tray notification failed: {e}")

    # ---- user actions ----

    def toggle_mode(self):
        if self.controller:
            mode = self.controller.toggle_mode()
            log.info(f"Now in {mode.name} mode")

    def load_profile(self, name: str):
        try:
            profile = self.controller.load_profile(name)
        except KeyClickError as e:
            self._report(e.message)
            return
        log.info(f"Profile '{name}' active with {len(profile.targets)} targets")

    def save_profile(self, name: Optional[str] = None):
        name = name or self.config.default_profile
        try:
            self.controller.save_profile(name)
        except (KeyClickError, OSError, ValueError) as e:
            self._report(f"Could not save profile '{name}': {e}")

    # ---- tray ----

    def _create_icon(self, play: bool = False) -> 'Image.Image':
        """Create tray icon image."""
        size = 64
        img = Image.new('RGBA', (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)

        # Green in edit mode, orange in play mode
        bg_color = (255, 152, 0, 255) if play else (76, 175, 80, 255)
        draw.ellipse([4, 4, size-4, size-4], fill=bg_color)

        # Target marker: ring with a center dot
        white = (255, 255, 255, 255)
        draw.ellipse([16, 16, 48, 48], outline=white, width=4)
        draw.ellipse([28, 28, 36, 36], fill=white)

        return img

    def _update_tray_icon(self):
        """Update the tray icon based on current mode."""
        if not TRAY_AVAILABLE or not self.tray:
            return

        try:
            play = self.controller is not None and self.controller.mode is Mode.PLAY
            self.tray.icon = self._create_icon(play=play)
        except Exception as e:
            log.error(f"Error updating tray icon: {e}")

    def _profile_items(self):
        def make_loader(name):
            return lambda icon, item: self.load_profile(name)

        names = self.controller.list_profiles() if self.controller else []
        if not names:
            return [pystray.MenuItem("(no profiles)", None, enabled=False)]
        return [pystray.MenuItem(name, make_loader(name)) for name in names]

    def _create_menu(self):
        """Create the system tray menu."""
        if not TRAY_AVAILABLE:
            return None

        def get_status(item):
            if self.controller:
                return f"Mode: {self.controller.mode.name} ({len(self.controller.registry)} targets)"
            return "Mode: Unknown"

        def toggle(icon, item):
            self.toggle_mode()

        def save(icon, item):
            self.save_profile()

        def open_path(path):
            log.info(f"Opening: {path}")
            if sys.platform == 'win32':
                os.startfile(path)
            elif sys.platform == 'darwin':
                os.system(f'open "{path}"')
            else:
                os.system(f'xdg-open "{path}"')

        def open_profiles(icon, item):
            directory = self.config.resolved_profile_dir()
            directory.mkdir(parents=True, exist_ok=True)
            open_path(directory)

        def open_config(icon, item):
            open_path(get_config_path())

        def reload_config(icon, item):
            log.info("Reloading configuration...")
            self.restart()
            log.info("Configuration reloaded")

        def quit_app(icon, item):
            log.info("Quit requested from tray menu")
            self.stop()

        return pystray.Menu(
            pystray.MenuItem(get_status, None, enabled=False),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Toggle Edit/Play", toggle, default=True),
            pystray.MenuItem("Load Profile", pystray.Menu(self._profile_items)),
            pystray.MenuItem(f"Save Profile ({self.config.default_profile})", save),
            pystray.MenuItem("Open Profile Folder", open_profiles),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Open Config", open_config),
            pystray.MenuItem("Reload Config", reload_config),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", quit_app)
        )

    # ---- lifecycle ----

    def _start_engine(self):
        self._build()
        self.worker.start()
        self.controller.init()

        if self.config.default_profile in self.controller.list_profiles():
            self.load_profile(self.config.default_profile)

    def _stop_engine(self):
        if self.controller:
            self.controller.teardown()
        if self.worker:
            self.worker.stop()

    def restart(self):
        """Rebuild the engine from a freshly loaded config, keeping the current targets."""
        targets = self.controller.targets() if self.controller else []
        spawn = self.controller.spawn_position if self.controller else None
        self._stop_engine()
        self.load_config()
        self._start_engine()
        if targets:
            self.controller.registry.replace_all(targets)
        if spawn is not None:
            self.controller.set_spawn_position(spawn)
        self._update_tray_icon()

    def start(self):
        """Start the daemon."""
        self._running = True

        log.info("="*60)
        log.info("KeyClick starting...")
        log.info("="*60)

        self.load_config()
        self._start_engine()

        config_path = get_config_path()
        log.info(f"Config file: {config_path}")
        print(f"\nKeyClick started!")
        print(f"Config: {config_path}")
        print(f"Profiles: {', '.join(self.controller.list_profiles()) or '(none)'}")
        print(f"\nPress {self.config.hotkeys.toggle_mode} to switch between EDIT and PLAY.")
        print(f"Press {self.config.hotkeys.quit} to quit.\n")

        # Start system tray if available
        if TRAY_AVAILABLE:
            log.info("Starting system tray...")
            self.tray = pystray.Icon(
                'keyclick',
                self._create_icon(play=False),
                'KeyClick',
                menu=self._create_menu()
            )
            self.tray.run()  # This blocks until quit
        else:
            log.warning("System tray not available, running in console mode")
            print("Press Ctrl+C to quit")
            try:
                while self._running:
                    self._stopped.wait(1)
            except KeyboardInterrupt:
                pass

        self.stop()

    def stop(self):
        """Stop the daemon."""
        if not self._running:
            return
        log.info("Stopping KeyClick...")
        self._running = False
        self._stopped.set()

        self._stop_engine()

        if self.tray:
            self.tray.stop()

        log.info("KeyClick stopped")


def main():
    """Main entry point."""
    import signal

    app = KeyClick()

    def signal_handler(signum, frame):
        log.info(f"Received signal {signum}, shutting down...")
        app.stop()
        sys.exit(0)

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Global hotkeys for the shell; the engine's own hook only handles target keys
    try:
        import keyboard as kb
        hotkeys = load_config().hotkeys

        def quit_hotkey():
            log.info(f"Quit hotkey pressed ({hotkeys.quit})")
            app.stop()

        def toggle_hotkey():
            try:
                app.toggle_mode()
            except KeyClickError as e:
                log.error(f"Mode toggle failed: {e}")

        kb.add_hotkey(hotkeys.quit, quit_hotkey, suppress=False)
        kb.add_hotkey(hotkeys.toggle_mode, toggle_hotkey, suppress=False)
        log.info(f"Registered hotkeys: quit={hotkeys.quit}, toggle={hotkeys.toggle_mode}")
    except Exception as e:
        log.warning(f"Could not register hotkeys: {e}")

    try:
        app.start()
    except KeyboardInterrupt:
        app.stop()
    except KeyClickError as e:
        log.error(f"Fatal error: {e.message}")
        app.stop()
        sys.exit(1)
    except Exception as e:
        log.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
