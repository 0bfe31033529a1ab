"""
Click target registry.

Owns every ClickTarget and the reverse key -> target index. A key is owned
by at most one target at any time; assigning a key that is already taken
moves it to the new target.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import UnknownTargetError

log = logging.getLogger(__name__)

Position = Tuple[float, float]


def finite_position(position) -> Position:
    """Coerce to a float pair, rejecting NaN and infinity."""
    x, y = float(position[0]), float(position[1])
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ValueError(f"Position must be finite, got {position!r}")
    return x, y


@dataclass
class ClickTarget:
    """An on-screen point, optionally bound to one key."""
    id: int
    x: float
    y: float
    assigned_key: Optional[str] = None

    @property
    def position(self) -> Position:
        return (self.x, self.y)


class TargetRegistry:
    """
    Ordered collection of click targets plus the key index.

    Ids come from a counter that only ever moves forward: deleting a target
    or clearing the registry never frees its id for reuse.
    """

    def __init__(self):
        self._targets: Dict[int, ClickTarget] = {}
        self._by_key: Dict[str, int] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, target_id) -> bool:
        return target_id in self._targets

    def __iter__(self) -> Iterator[ClickTarget]:
        return iter(list(self._targets.values()))

    @property
    def counter(self) -> int:
        """Highest id handed out (or seen on load) so far."""
        return self._counter

    def get(self, target_id: int) -> ClickTarget:
        try:
            return self._targets[target_id]
        except KeyError:
            raise UnknownTargetError(target_id) from None

    def targets(self) -> List[ClickTarget]:
        """Targets in insertion order."""
        return list(self._targets.values())

    def snapshot(self) -> List[ClickTarget]:
        """Detached copies of all targets, safe to hand to other threads."""
        return [replace(t) for t in self._targets.values()]

    def add(self, position: Position) -> int:
        """Create an unkeyed target and return its id."""
        x, y = finite_position(position)
        self._counter += 1
        target = ClickTarget(id=self._counter, x=x, y=y)
        self._targets[target.id] = target
        log.debug(f"Added target {target.id} at ({target.x}, {target.y})")
        self.check_invariant()
        return target.id

    def remove(self, target_id: int):
        """Delete a target and its key binding. Unknown ids are ignored."""
        target = self._targets.pop(target_id, None)
        if target is None:
            return
        if target.assigned_key is not None:
            self._by_key.pop(target.assigned_key, None)
        log.debug(f"Removed target {target_id}")
        self.check_invariant()

    def move(self, target_id: int, position: Position):
        target = self.get(target_id)
        target.x, target.y = finite_position(position)
        self.check_invariant()

    def assign_key(self, target_id: int, key: str) -> Optional[int]:
        """
        Bind key to a target.

        If another target held the key, it loses it and its id is returned.
        If the target held a different key, that binding is dropped.
        """
        target = self.get(target_id)

        displaced_id = None
        owner_id = self._by_key.get(key)
        if owner_id is not None and owner_id != target_id:
            self._targets[owner_id].assigned_key = None
            del self._by_key[key]
            displaced_id = owner_id
            log.info(f"Key '{key}' moved from target {owner_id} to target {target_id}")

        if target.assigned_key is not None and target.assigned_key != key:
            self._by_key.pop(target.assigned_key, None)

        target.assigned_key = key
        self._by_key[key] = target_id
        self.check_invariant()
        return displaced_id

    def clear_key(self, target_id: int):
        """Unbind whatever key the target holds."""
        target = self.get(target_id)
        if target.assigned_key is not None:
            self._by_key.pop(target.assigned_key, None)
            target.assigned_key = None
        self.check_invariant()

    def lookup_by_key(self, key: str) -> Optional[int]:
        return self._by_key.get(key)

    def clear(self):
        """Empty the registry. The id counter is kept."""
        self._targets.clear()
        self._by_key.clear()
        self.check_invariant()

    def replace_all(self, targets: Iterable[ClickTarget]):
        """
        Rebuild the registry from a snapshot, keeping the snapshot's ids.

        The counter is advanced to the highest id seen and never goes back.
        Duplicate keys resolve like assign_key: the later target wins.
        """
        self.clear()
        for source in targets:
            target = ClickTarget(id=int(source.id), x=float(source.x), y=float(source.y))
            self._targets[target.id] = target
            if target.id > self._counter:
                self._counter = target.id
            if source.assigned_key is not None:
                self.assign_key(target.id, source.assigned_key)
        self.check_invariant()

    def check_invariant(self):
        """Assert that the key index mirrors the targets exactly."""
        keyed = {t.assigned_key: t.id for t in self._targets.values() if t.assigned_key is not None}
        held = sum(1 for t in self._targets.values() if t.assigned_key is not None)
        assert held == len(keyed), "two targets share a key"
        assert keyed == self._by_key, f"key index out of sync: {self._by_key} != {keyed}"
