"""
Profile persistence.

One JSON file per profile:

    {"spawnX": 100.0, "spawnY": 100.0,
     "targets": [{"id": 1, "x": 100.0, "y": 100.0, "key": "a"}, ...]}

The schema is fixed; anything that doesn't match it is a ProfileParseError.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from .errors import ProfileNotFoundError, ProfileParseError
from .keys import parse_key
from .registry import ClickTarget

log = logging.getLogger(__name__)

PROFILE_SUFFIX = '.json'
DEFAULT_NAME = 'profile'

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass
class Profile:
    """A named snapshot: spawn position plus every target."""
    spawn_position: Tuple[float, float] = (100.0, 100.0)
    targets: List[ClickTarget] = field(default_factory=list)


def sanitize_name(name: str) -> str:
    """Turn a profile name into a safe file stem."""
    cleaned = _INVALID_CHARS.sub('_', str(name or ''))
    cleaned = cleaned.strip().strip('.').strip()
    return cleaned or DEFAULT_NAME


def _number(value, what: str, name: str) -> float:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProfileParseError(name, f"{what} must be a number")
    if not math.isfinite(value):
        raise ProfileParseError(name, f"{what} must be finite")
    return float(value)


def _integer(value, what: str, name: str) -> int:
    number = _number(value, what, name)
    if not number.is_integer():
        raise ProfileParseError(name, f"{what} must be an integer")
    return int(number)


def profile_to_dict(profile: Profile) -> dict:
    return {
        'spawnX': float(profile.spawn_position[0]),
        'spawnY': float(profile.spawn_position[1]),
        'targets': [
            {
                'id': int(t.id),
                'x': float(t.x),
                'y': float(t.y),
                'key': t.assigned_key,
            }
            for t in profile.targets
        ],
    }


def profile_from_dict(data, name: str) -> Profile:
    """
    Validate and convert parsed JSON.

    A key that doesn't parse only drops that target's binding; the target
    itself still loads.
    """
    if not isinstance(data, dict):
        raise ProfileParseError(name, "top level must be an object")

    for required in ('spawnX', 'spawnY', 'targets'):
        if required not in data:
            raise ProfileParseError(name, f"missing '{required}'")

    spawn = (_number(data['spawnX'], 'spawnX', name), _number(data['spawnY'], 'spawnY', name))

    raw_targets = data['targets']
    if not isinstance(raw_targets, list):
        raise ProfileParseError(name, "'targets' must be an array")

    targets: List[ClickTarget] = []
    seen_ids = set()
    for index, entry in enumerate(raw_targets):
        if not isinstance(entry, dict):
            raise ProfileParseError(name, f"target #{index} must be an object")
        for required in ('id', 'x', 'y'):
            if required not in entry:
                raise ProfileParseError(name, f"target #{index} is missing '{required}'")

        target_id = _integer(entry['id'], f"target #{index} id", name)
        if target_id in seen_ids:
            raise ProfileParseError(name, f"duplicate target id {target_id}")
        seen_ids.add(target_id)

        raw_key = entry.get('key')
        key = None
        if raw_key is not None:
            key = parse_key(raw_key)
            if key is None:
                log.warning(f"Profile '{name}': target {target_id} has unknown key {raw_key!r}, loading it unbound")

        targets.append(ClickTarget(
            id=target_id,
            x=_number(entry['x'], f"target #{index} x", name),
            y=_number(entry['y'], f"target #{index} y", name),
            assigned_key=key,
        ))

    return Profile(spawn_position=spawn, targets=targets)


class ProfileStore:
    """Reads and writes profiles in a single directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / (sanitize_name(name) + PROFILE_SUFFIX)

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def list(self) -> List[str]:
        """Base names of all stored profiles, sorted."""
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob('*' + PROFILE_SUFFIX) if p.is_file())

    def save(self, name: str, profile: Profile) -> Path:
        # Serialized up front so a bad value can't leave a truncated file behind
        text = json.dumps(profile_to_dict(profile), indent=2, allow_nan=False)
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text + '\n')
        log.info(f"Saved profile '{name}' ({len(profile.targets)} targets) to {path}")
        return path

    def load(self, name: str) -> Profile:
        path = self.path_for(name)
        if not path.is_file():
            raise ProfileNotFoundError(name, path)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ProfileParseError(name, f"unreadable: {e}") from e

        try:
            data = json.loads(text)
        except ValueError as e:
            raise ProfileParseError(name, f"invalid JSON: {e}") from e

        profile = profile_from_dict(data, name)
        log.info(f"Loaded profile '{name}' ({len(profile.targets)} targets) from {path}")
        return profile

    def delete(self, name: str):
        path = self.path_for(name)
        if not path.is_file():
            raise ProfileNotFoundError(name, path)
        path.unlink()
        log.info(f"Deleted profile '{name}'")
