"""Walk statistics and active-device tracking.

Tracks in-memory counters and a sliding window of devices that recently
sent positions. No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class DeviceActivity:
    """Tracks a single device's recent activity."""
    last_seen: float          # time.monotonic() timestamp
    positions_sent: int = 0


class WalkStats:
    """Thread-safe walk statistics.

    A device is "active" if it sent a position within
    ``active_window_seconds`` (default 120s).
    """

    def __init__(self, active_window_seconds: float = 120.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.positions_received: int = 0
        self.pieces_collected: int = 0
        self.routes_completed: int = 0
        self.progress_writes: int = 0
        self.images_sliced: int = 0
        self.errors: dict[str, int] = {}

        # Device tracking: device_id → DeviceActivity
        self._devices: dict[str, DeviceActivity] = {}

    def record_position(self, device_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.positions_received += 1
            if device_id in self._devices:
                dev = self._devices[device_id]
                dev.last_seen = now
                dev.positions_sent += 1
            else:
                self._devices[device_id] = DeviceActivity(last_seen=now, positions_sent=1)

    def record_collected(self, count: int, *, completed: bool = False) -> None:
        with self._lock:
            self.pieces_collected += count
            if completed:
                self.routes_completed += 1

    def record_progress_write(self) -> None:
        with self._lock:
            self.progress_writes += 1

    def record_slice(self) -> None:
        with self._lock:
            self.images_sliced += 1

    def record_error(self, kind: str) -> None:
        with self._lock:
            self.errors[kind] = self.errors.get(kind, 0) + 1

    def _prune_stale_devices(self, now: float) -> None:
        """Remove devices not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [did for did, dev in self._devices.items() if dev.last_seen < cutoff]
        for did in stale:
            del self._devices[did]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_devices(now_mono)
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "positions_received": self.positions_received,
                "pieces_collected": self.pieces_collected,
                "routes_completed": self.routes_completed,
                "progress_writes": self.progress_writes,
                "images_sliced": self.images_sliced,
                "errors": dict(self.errors),
                "active_devices": {
                    "total": len(self._devices),
                    "window_seconds": self._active_window,
                },
            }
