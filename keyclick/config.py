"""
Configuration loading and management.
"""

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from .keys import parse_key

log = logging.getLogger(__name__)

AUTO = 'auto'


@dataclass
class HotkeyConfig:
    """Global hotkeys handled by the process shell (keyboard-library syntax)."""
    toggle_mode: str = 'ctrl+shift+p'
    quit: str = 'ctrl+shift+q'


@dataclass
class Config:
    """Main application configuration."""
    profile_dir: Optional[Path] = None  # None -> <config dir>/profiles
    default_profile: str = 'default'

    # Target geometry
    target_size: Tuple[float, float] = (40.0, 40.0)
    canvas_origin: Union[str, Tuple[float, float]] = AUTO  # 'auto' = virtual desktop top-left
    spawn_position: Tuple[float, float] = (100.0, 100.0)
    spawn_grid_columns: int = 5
    spawn_grid_spacing: float = 70.0

    # Click behaviour
    restore_cursor: bool = False
    click_button: str = 'left'
    settle_delay_ms: int = 10
    restore_delay_ms: int = 10

    cancel_key: str = 'esc'
    log_level: str = 'INFO'
    hotkeys: HotkeyConfig = field(default_factory=HotkeyConfig)

    def resolved_profile_dir(self) -> Path:
        if self.profile_dir is not None:
            return Path(self.profile_dir).expanduser()
        return get_config_path().parent / 'profiles'


def get_config_path() -> Path:
    """Get the configuration file path."""
    if os.name == 'nt':  # Windows
        base = Path(os.environ.get('APPDATA', '~')).expanduser()
    elif os.name == 'posix':
        if 'darwin' in os.uname().sysname.lower():  # macOS
            base = Path.home() / 'Library' / 'Application Support'
        else:  # Linux
            base = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))
    else:
        base = Path.home()

    return base / 'keyclick' / 'config.yaml'


def parse_pair(value, default: Tuple[float, float], name: str) -> Tuple[float, float]:
    """Parse a two-number list like [40, 40]."""
    try:
        x, y = value
        return float(x), float(y)
    except (TypeError, ValueError):
        log.warning(f"Invalid {name} {value!r}, using {default}")
        return default


def _number(value, default, name: str, cast=int):
    try:
        return cast(value)
    except (TypeError, ValueError):
        log.warning(f"Invalid {name} {value!r}, using {default}")
        return default


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file."""
    if path is None:
        path = get_config_path()

    if not path.exists():
        return create_default_config(path)

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()
    config = Config()

    profile_dir = data.get('profile_dir')
    config.profile_dir = Path(profile_dir) if profile_dir else None
    config.default_profile = str(data.get('default_profile', defaults.default_profile))

    config.target_size = parse_pair(data.get('target_size', defaults.target_size), defaults.target_size, 'target_size')

    origin = data.get('canvas_origin', AUTO)
    if isinstance(origin, str) and origin.lower() == AUTO:
        config.canvas_origin = AUTO
    else:
        config.canvas_origin = parse_pair(origin, (0.0, 0.0), 'canvas_origin')

    config.spawn_position = parse_pair(
        data.get('spawn_position', defaults.spawn_position), defaults.spawn_position, 'spawn_position'
    )
    config.spawn_grid_columns = _number(
        data.get('spawn_grid_columns', defaults.spawn_grid_columns), defaults.spawn_grid_columns, 'spawn_grid_columns'
    )
    config.spawn_grid_spacing = _number(
        data.get('spawn_grid_spacing', defaults.spawn_grid_spacing), defaults.spawn_grid_spacing, 'spawn_grid_spacing', float
    )

    config.restore_cursor = bool(data.get('restore_cursor', defaults.restore_cursor))
    button = str(data.get('click_button', defaults.click_button)).lower()
    if button not in ('left', 'right', 'middle'):
        log.warning(f"Invalid click_button {button!r}, using left")
        button = 'left'
    config.click_button = button
    config.settle_delay_ms = _number(data.get('settle_delay_ms', defaults.settle_delay_ms), 10, 'settle_delay_ms')
    config.restore_delay_ms = _number(data.get('restore_delay_ms', defaults.restore_delay_ms), 10, 'restore_delay_ms')

    cancel_key = parse_key(data.get('cancel_key', defaults.cancel_key))
    if cancel_key is None:
        log.warning(f"Invalid cancel_key {data.get('cancel_key')!r}, using esc")
        cancel_key = 'esc'
    config.cancel_key = cancel_key

    config.log_level = str(data.get('log_level', defaults.log_level)).upper()

    hotkeys = data.get('hotkeys') or {}
    config.hotkeys = HotkeyConfig(
        toggle_mode=str(hotkeys.get('toggle_mode', HotkeyConfig.toggle_mode)),
        quit=str(hotkeys.get('quit', HotkeyConfig.quit)),
    )

    return config


def create_default_config(path: Path) -> Config:
    """Create and save a default configuration."""
    default_yaml = """# KeyClick Configuration

# Where profiles are stored (default: a 'profiles' folder next to this file)
profile_dir: null
default_profile: default

# Size of a target marker in pixels; clicks land on its center
target_size: [40, 40]

# Screen position of the target canvas' top-left corner.
# 'auto' uses the top-left of the virtual desktop spanning all monitors.
canvas_origin: auto

# Where new targets appear, and how they cascade when several are added
spawn_position: [100, 100]
spawn_grid_columns: 5
spawn_grid_spacing: 70

# Click behaviour
restore_cursor: false  # Move the pointer back after each click
click_button: left     # left, right or middle
settle_delay_ms: 10    # Pause between moving and pressing
restore_delay_ms: 10

# Key that cancels a pending spawn-point capture
cancel_key: esc

log_level: INFO

hotkeys:
  toggle_mode: ctrl+shift+p
  quit: ctrl+shift+q
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(default_yaml)

    return load_config(path)


def save_config(config: Config, path: Optional[Path] = None):
    """Save configuration to YAML file."""
    if path is None:
        path = get_config_path()

    origin = config.canvas_origin
    data: Dict[str, object] = {
        'profile_dir': str(config.profile_dir) if config.profile_dir else None,
        'default_profile': config.default_profile,
        'target_size': list(config.target_size),
        'canvas_origin': origin if isinstance(origin, str) else list(origin),
        'spawn_position': list(config.spawn_position),
        'spawn_grid_columns': config.spawn_grid_columns,
        'spawn_grid_spacing': config.spawn_grid_spacing,
        'restore_cursor': config.restore_cursor,
        'click_button': config.click_button,
        'settle_delay_ms': config.settle_delay_ms,
        'restore_delay_ms': config.restore_delay_ms,
        'cancel_key': config.cancel_key,
        'log_level': config.log_level,
        'hotkeys': {
            'toggle_mode': config.hotkeys.toggle_mode,
            'quit': config.hotkeys.quit,
        },
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False)
