"""Target registry: the set of monitored endpoints.

A registry is an immutable, name-ordered snapshot. Hot reload never edits a
registry in place; it builds a new one and swaps the reference held by
:class:`RegistryHandle`, so anyone iterating the old snapshot keeps a complete
view of it.
"""

import ipaddress
import json
import logging
import threading
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Union

from sitemon.errors import DuplicateName, InvalidAddress, MalformedSource
from sitemon.schemas import Target

logger = logging.getLogger(__name__)


class TargetRegistry(Mapping):
    """Read-only mapping of target name -> :class:`Target`, sorted by name."""

    def __init__(self, targets=()):
        ordered = sorted(targets, key=lambda t: t.name)
        by_name = {}
        for t in ordered:
            if t.name in by_name:
                raise DuplicateName(t.name)
            by_name[t.name] = t
        self._targets = MappingProxyType(by_name)
        self._names = frozenset(by_name)

    def __getitem__(self, name: str) -> Target:
        return self._targets[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __repr__(self) -> str:
        return f"TargetRegistry({list(self._targets.values())!r})"

    def names(self) -> frozenset:
        return self._names

    def targets(self) -> tuple:
        return tuple(self._targets.values())


def _reject_duplicates(pairs):
    obj = {}
    for key, value in pairs:
        if key in obj:
            raise DuplicateName(key)
        obj[key] = value
    return obj


def load_registry(text: str) -> TargetRegistry:
    """Parse a JSON object of ``name -> address`` into a registry.

    Raises ``MalformedSource`` for anything that is not such an object,
    ``DuplicateName`` for a repeated key and ``InvalidAddress`` for a value
    that is not a literal IPv4/IPv6 address.
    """
    try:
        data = json.loads(text, object_pairs_hook=_reject_duplicates)
    except (ValueError, RecursionError) as e:
        raise MalformedSource(f"target source is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedSource(f"target source must be a JSON object, got {type(data).__name__}")

    targets = []
    for name, value in data.items():
        if not isinstance(value, str):
            raise InvalidAddress(name, value)
        try:
            addr = ipaddress.ip_address(value)
        except ValueError as e:
            raise InvalidAddress(name, value) from e
        targets.append(Target(name=name, address=addr))
    return TargetRegistry(targets)


def load_registry_file(path: Union[str, Path]) -> TargetRegistry:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedSource(f"could not read {path}: {e}") from e
    return load_registry(text)


class RegistryHandle:
    """Atomically swappable reference to the active :class:`TargetRegistry`."""

    def __init__(self, initial: TargetRegistry = None):
        self._current = initial if initial is not None else TargetRegistry()
        self._version = 0
        self._swap_lock = threading.Lock()

    def current(self) -> TargetRegistry:
        # a single attribute read: callers see the old snapshot or the new one
        return self._current

    @property
    def version(self) -> int:
        return self._version

    def swap(self, new: TargetRegistry) -> TargetRegistry:
        with self._swap_lock:
            old = self._current
            self._current = new
            self._version += 1
        logger.debug("registry swapped to version %d (%d targets)", self._version, len(new))
        return old
