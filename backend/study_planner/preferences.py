"""Inclusion policy preference persisted as a string key/value pair."""

from __future__ import annotations

import json
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Protocol

from .config import get_settings
from .storage.base import StorageUnavailableError

logger = logging.getLogger(__name__)

POLICY_PREFERENCE_KEY = "include_achievements_in_stats"


class InclusionPolicy(str, Enum):
    ACHIEVEMENTS_ONLY = "achievements_only"
    ALL_PLANNED = "all_planned"


class PreferenceStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class LocalPreferenceStore:
    """String preferences kept in memory, or in a JSON file when a path is given."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.RLock()
        self._values: Dict[str, str] = {}
        self._loaded = False

    def _load_unlocked(self) -> Dict[str, str]:
        if self._loaded:
            return self._values
        self._loaded = True
        if self._path is None or not self._path.exists():
            return self._values
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable preferences file %s: %s", self._path, exc)
            return self._values
        if isinstance(raw, dict):
            self._values = {str(key): str(value) for key, value in raw.items()}
        return self._values

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load_unlocked().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            values = self._load_unlocked()
            values[key] = value
            if self._path is None:
                return
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self._path.with_suffix(".tmp")
                tmp_path.write_text(json.dumps(values, indent=2, sort_keys=True), encoding="utf-8")
                tmp_path.replace(self._path)
            except OSError as exc:
                raise StorageUnavailableError(f"Failed to write preferences: {exc}") from exc


def _default_policy() -> InclusionPolicy:
    if get_settings().default_include_achievements_only:
        return InclusionPolicy.ACHIEVEMENTS_ONLY
    return InclusionPolicy.ALL_PLANNED


def policy_from_preference(value: Optional[str]) -> InclusionPolicy:
    if value is None:
        return _default_policy()
    text = value.strip().lower()
    if text == "true":
        return InclusionPolicy.ACHIEVEMENTS_ONLY
    if text == "false":
        return InclusionPolicy.ALL_PLANNED
    logger.warning("Unparseable %s preference %r; using default", POLICY_PREFERENCE_KEY, value)
    return _default_policy()


def policy_to_preference(policy: InclusionPolicy) -> str:
    return "true" if policy is InclusionPolicy.ACHIEVEMENTS_ONLY else "false"


def load_policy(store: PreferenceStore) -> InclusionPolicy:
    return policy_from_preference(store.get(POLICY_PREFERENCE_KEY))


def save_policy(store: PreferenceStore, policy: InclusionPolicy) -> None:
    store.set(POLICY_PREFERENCE_KEY, policy_to_preference(policy))


def default_preference_store() -> LocalPreferenceStore:
    path = get_settings().preferences_path
    return LocalPreferenceStore(Path(path) if path else None)


__all__ = [
    "InclusionPolicy",
    "LocalPreferenceStore",
    "POLICY_PREFERENCE_KEY",
    "PreferenceStore",
    "default_preference_store",
    "load_policy",
    "policy_from_preference",
    "policy_to_preference",
    "save_policy",
]
