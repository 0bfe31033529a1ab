"""
Key identity normalization.

Keys are identified by plain strings so the engine never depends on the
input backend:

- printable characters, lowercased: 'a', '1', ','
- special key names, matching pynput's Key member names: 'f5', 'space', 'esc'
- raw virtual-key codes for anything else: '<96>'
"""

import re
from typing import Optional

# pynput Key member names (union over the Windows, macOS and X11 backends)
SPECIAL_KEYS = frozenset(
    [
        'alt', 'alt_l', 'alt_r', 'alt_gr', 'backspace', 'caps_lock',
        'cmd', 'cmd_l', 'cmd_r', 'ctrl', 'ctrl_l', 'ctrl_r', 'delete',
        'down', 'end', 'enter', 'esc', 'home', 'insert', 'left', 'menu',
        'num_lock', 'page_down', 'page_up', 'pause', 'print_screen',
        'right', 'scroll_lock', 'shift', 'shift_l', 'shift_r', 'space',
        'tab', 'up',
        'media_play_pause', 'media_volume_mute', 'media_volume_down',
        'media_volume_up', 'media_previous', 'media_next',
    ]
    + [f'f{n}' for n in range(1, 25)]
)

# Alternative spellings accepted when parsing persisted or configured keys
ALIASES = {
    'escape': 'esc',
    'return': 'enter',
    'back': 'backspace',
    'del': 'delete',
    'ins': 'insert',
    'pgup': 'page_up',
    'pageup': 'page_up',
    'pgdn': 'page_down',
    'pagedown': 'page_down',
    'next': 'page_down',
    'prior': 'page_up',
    'capital': 'caps_lock',
    'control': 'ctrl',
    'lwin': 'cmd',
    'rwin': 'cmd_r',
    'apps': 'menu',
    'snapshot': 'print_screen',
    'numlock': 'num_lock',
    'scroll': 'scroll_lock',
}

# Windows virtual-key codes as reported by the low-level keyboard hook.
# OEM punctuation assumes a US layout.
VK_NAMES = {
    0x08: 'backspace', 0x09: 'tab', 0x0D: 'enter', 0x10: 'shift',
    0x11: 'ctrl', 0x12: 'alt', 0x13: 'pause', 0x14: 'caps_lock',
    0x1B: 'esc', 0x20: 'space', 0x21: 'page_up', 0x22: 'page_down',
    0x23: 'end', 0x24: 'home', 0x25: 'left', 0x26: 'up', 0x27: 'right',
    0x28: 'down', 0x2C: 'print_screen', 0x2D: 'insert', 0x2E: 'delete',
    0x5B: 'cmd', 0x5C: 'cmd_r', 0x5D: 'menu', 0x90: 'num_lock',
    0x91: 'scroll_lock', 0xA0: 'shift', 0xA1: 'shift_r', 0xA2: 'ctrl',
    0xA3: 'ctrl_r', 0xA4: 'alt', 0xA5: 'alt_r',
    0xAD: 'media_volume_mute', 0xAE: 'media_volume_down',
    0xAF: 'media_volume_up', 0xB0: 'media_next', 0xB1: 'media_previous',
    0xB3: 'media_play_pause',
}
VK_CHARS = {
    0xBA: ';', 0xBB: '=', 0xBC: ',', 0xBD: '-', 0xBE: '.', 0xBF: '/',
    0xC0: '`', 0xDB: '[', 0xDC: '\\', 0xDD: ']', 0xDE: "'",
}
VK_NUMPAD_0 = 0x60
VK_F1 = 0x70

_RAW_VK = re.compile(r'^<(\d+)>$')

# Short labels for target markers
_DISPLAY = {
    'space': '␣',
    'enter': '↵',
    'esc': 'Esc',
    'tab': 'Tab',
    'backspace': '←',
    'delete': 'Del',
    'left': '◄',
    'right': '►',
    'up': '▲',
    'down': '▼',
}


def key_to_string(key) -> Optional[str]:
    """Convert a pynput key (Key or KeyCode) to its normalized identifier."""
    if key is None:
        return None
    # Key enum members carry a name; KeyCode instances don't
    name = getattr(key, 'name', None)
    if isinstance(name, str) and name:
        return name
    char = getattr(key, 'char', None)
    if char and len(char) == 1 and char.isprintable() and not char.isspace():
        return char.lower()
    vk = getattr(key, 'vk', None)
    if vk is not None:
        return vk_to_string(int(vk))
    return None


def vk_to_string(vk: int) -> str:
    """Convert a Windows virtual-key code to a normalized identifier."""
    if 0x30 <= vk <= 0x39 or 0x41 <= vk <= 0x5A:
        return chr(vk).lower()
    if VK_F1 <= vk < VK_F1 + 24:
        return f'f{vk - VK_F1 + 1}'
    if vk in VK_NAMES:
        return VK_NAMES[vk]
    if vk in VK_CHARS:
        return VK_CHARS[vk]
    return f'<{vk}>'


def parse_key(text) -> Optional[str]:
    """
    Parse a persisted or configured key string.

    Returns the normalized identifier, or None if the text doesn't name a key.
    """
    if not isinstance(text, str):
        return None
    text = text.strip()
    if not text:
        return None
    if len(text) == 1:
        return text.lower() if text.isprintable() and not text.isspace() else None

    match = _RAW_VK.match(text)
    if match:
        return f'<{int(match.group(1))}>'

    lowered = text.lower()
    if lowered.startswith('key.'):
        lowered = lowered[4:]
    lowered = ALIASES.get(lowered, lowered)
    if lowered in SPECIAL_KEYS:
        return lowered
    return None


def display_name(key: Optional[str]) -> str:
    """Short label for a key, '?' when unassigned."""
    if not key:
        return '?'
    if key in _DISPLAY:
        return _DISPLAY[key]
    match = _RAW_VK.match(key)
    if match:
        vk = int(match.group(1))
        if VK_NUMPAD_0 <= vk <= VK_NUMPAD_0 + 9:
            return f'N{vk - VK_NUMPAD_0}'
        return key
    if len(key) == 1:
        return key.upper()
    if key[0] == 'f' and key[1:].isdigit():
        return key.upper()
    name = key.replace('_', ' ').title().replace(' ', '')
    return name[:3]
