"""
Kiosk Provider Settings Storage

Persisted key-value settings backends and the XApp token store built on them.
"""

import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from .types import PersistedSettings


logger = logging.getLogger("kiosk_provider")

TOKEN_KEY = "TokenKey"
EXPIRY_KEY = "TokenExpiry"

# Date and time with seconds, an optional fraction of up to six digits and a mandatory offset
ISO8601_REGEX = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d{1,6}))?(Z|[+-]\d{2}:\d{2})$"
)


def parse_iso8601(value: Any) -> Optional[datetime]:
    """Strictly parse an ISO-8601 timestamp; anything else yields None."""
    if not isinstance(value, str):
        return None
    match = ISO8601_REGEX.match(value.strip())
    if not match:
        return None
    stamp, fraction, offset = match.groups()
    if fraction:
        # fromisoformat before 3.11 only takes 3 or 6 digits
        stamp = f"{stamp}.{fraction.ljust(6, '0')}"
    if offset == "Z":
        offset = "+00:00"
    try:
        return datetime.fromisoformat(stamp + offset)
    except ValueError:
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemorySettings:
    """In-memory settings (default, non-persistent)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class FileSettings:
    """JSON file settings (persistent across restarts)."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        """
        Initialize file settings.

        Args:
            file_path: Path to settings file. Defaults to ~/.kiosk/settings.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".kiosk" / "settings.json"

        self._lock = threading.Lock()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

    def _read_data(self) -> Dict[str, Any]:
        try:
            if self._file_path.exists():
                with open(self._file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning("Ignoring settings file %s: not a JSON object", self._file_path)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not read settings file %s: %s", self._file_path, e)
        return {}

    def _write_data(self, data: Dict[str, Any]) -> None:
        try:
            with open(self._file_path, "w", encoding="utf-8") as f:
                json.dump(data, f)
            # Owner read/write only, the file holds credentials
            os.chmod(self._file_path, 0o600)
        except OSError as e:
            logger.warning("Could not write settings file %s: %s", self._file_path, e)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read_data().get(key)
            return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_data()
            data[key] = value
            self._write_data(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_data()
            if key in data:
                del data[key]
                self._write_data(data)


class EnvironmentSettings:
    """Environment variable settings (for containers and CI)."""

    def __init__(self, prefix: str = "KIOSK_") -> None:
        self._prefix = prefix
        self._lock = threading.Lock()

    def _var(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return os.environ.get(self._var(key))

    def set(self, key: str, value: str) -> None:
        with self._lock:
            os.environ[self._var(key)] = value

    def remove(self, key: str) -> None:
        with self._lock:
            os.environ.pop(self._var(key), None)


class TokenStore:
    """
    Holder of the process XApp token and its expiry.

    Values are loaded from ``settings`` on construction and written back on
    every ``replace``, so a new store over the same settings sees the same
    token until it expires.
    """

    def __init__(
        self,
        settings: Optional[PersistedSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings: PersistedSettings = settings if settings is not None else MemorySettings()
        self._clock = clock
        self._lock = threading.Lock()
        self._value, self._expiry = self._load()

    def _load(self) -> Tuple[Optional[str], Optional[datetime]]:
        value = self._settings.get(TOKEN_KEY)
        if value is not None and not isinstance(value, str):
            value = None
        raw_expiry = self._settings.get(EXPIRY_KEY)
        expiry = parse_iso8601(raw_expiry)
        if raw_expiry is not None and expiry is None:
            logger.warning("Ignoring malformed persisted token expiry %r", raw_expiry)
        return value, expiry

    def is_valid(self) -> bool:
        """True iff a token and expiry are set and the expiry is in the future."""
        with self._lock:
            if self._value is None or self._expiry is None:
                return False
            return self._expiry > self._clock()

    def current(self) -> Optional[str]:
        """The token value, whether or not it is still valid."""
        with self._lock:
            return self._value

    @property
    def expiry(self) -> Optional[datetime]:
        with self._lock:
            return self._expiry

    def replace(self, value: Optional[str], expiry: Optional[datetime]) -> None:
        """Overwrite token and expiry together and persist both."""
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        with self._lock:
            self._value = value
            self._expiry = expiry
            # Expiry goes first and is written last, so a partial write never
            # pairs the new token with the old expiry
            self._settings.remove(EXPIRY_KEY)
            if value is None:
                self._settings.remove(TOKEN_KEY)
            else:
                self._settings.set(TOKEN_KEY, value)
            if expiry is not None:
                self._settings.set(EXPIRY_KEY, expiry.isoformat())
