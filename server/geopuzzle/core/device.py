"""Device identity — a stable opaque id per walker device, created on first use."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Protocol

import structlog

log = structlog.get_logger()


class DeviceIdentityProvider(Protocol):
    def device_id(self) -> str: ...


class FileDeviceIdentity:
    """Keeps the device id in a small text file, generating it on first use."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._cached: str | None = None

    def device_id(self) -> str:
        if self._cached:
            return self._cached
        if self._path.exists():
            existing = self._path.read_text().strip()
            if existing:
                self._cached = existing
                return existing

        new_id = str(uuid.uuid4())
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(new_id + "\n")
        log.info("device_id_created", device=new_id[:8], path=str(self._path))
        self._cached = new_id
        return new_id


class StaticDeviceIdentity:
    """Fixed id, for callers that already know who they are."""

    def __init__(self, value: str) -> None:
        if not value:
            raise ValueError("device id must not be empty")
        self._value = value

    def device_id(self) -> str:
        return self._value
