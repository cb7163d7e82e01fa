"""
Temporary storage for extracted-but-unconfirmed results.

Entries live in process memory only. Each one carries its own expiry time and
`get` checks it, so an expired entry is never returned even if the periodic
sweep has not run yet. The uploaded file behind an entry is kept until the
entry is saved, discarded or expires.
"""
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL = 5 * 60


@dataclass
class TempSession:
    temp_id: str
    extracted_data: Dict[str, Any]
    file_name: str = ""
    original_file: str = ""
    expiry_time: float = 0.0
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return self.expiry_time <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tempId": self.temp_id,
            "extractedData": self.extracted_data,
            "fileName": self.file_name,
            "originalFile": self.original_file,
            "expiryTime": self.expiry_time,
        }


def remove_file(path: str) -> None:
    """Delete `path` if present; failures are logged, not raised."""
    try:
        if path and os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("Could not remove upload %s: %s", path, e)


class TempSessionStore:
    """Map of tempId -> TempSession with a time-to-live."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, TempSession] = {}
        # ids handed out by new_id() whose extraction is still running
        self._reserved: Set[str] = set()
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, temp_id: str) -> bool:
        return self.get(temp_id) is not None

    def new_id(self) -> str:
        """
        Millisecond timestamp, bumped until it is neither stored nor reserved.
        The id stays reserved until `set` fills it or `release` gives it up.
        """
        candidate = int(self._clock() * 1000)
        with self._lock:
            while str(candidate) in self._sessions or str(candidate) in self._reserved:
                candidate += 1
            temp_id = str(candidate)
            self._reserved.add(temp_id)
        return temp_id

    def release(self, temp_id: str) -> None:
        with self._lock:
            self._reserved.discard(temp_id)

    def set(self, temp_id: str, data: Dict[str, Any]) -> TempSession:
        """
        Store `data` (extractedData, fileName, originalFile) under `temp_id`.
        Any existing entry with the same id is replaced.
        """
        now = self._clock()
        session = TempSession(
            temp_id=temp_id,
            extracted_data=data.get("extractedData") or {},
            file_name=data.get("fileName") or "",
            original_file=data.get("originalFile") or "",
            expiry_time=now + self.ttl_seconds,
            created_at=now,
        )
        with self._lock:
            self._reserved.discard(temp_id)
            previous = self._sessions.get(temp_id)
            self._sessions[temp_id] = session
        if previous is not None and previous.original_file != session.original_file:
            remove_file(previous.original_file)
        return session

    def get(self, temp_id: str) -> Optional[TempSession]:
        if not temp_id:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(temp_id)
            if session is None:
                return None
            if not session.is_expired(now):
                return session
            del self._sessions[temp_id]
        logger.info("Temporary data %s expired on access", temp_id)
        remove_file(session.original_file)
        return None

    def delete(self, temp_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(temp_id, None)
        if session is None:
            return False
        remove_file(session.original_file)
        return True

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired: List[TempSession] = [s for s in self._sessions.values() if s.is_expired(now)]
            for session in expired:
                del self._sessions[session.temp_id]
        for session in expired:
            logger.info("Expiring temporary data: %s", session.temp_id)
            remove_file(session.original_file)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._reserved.clear()
        for session in sessions:
            remove_file(session.original_file)

    # ============ Background sweep ============

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> threading.Thread:
        if self._sweeper is not None and self._sweeper.is_alive():
            return self._sweeper
        self._stop.clear()

        def run() -> None:
            while not self._stop.wait(interval):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Temporary session sweep failed")

        self._sweeper = threading.Thread(target=run, name="temp-session-sweeper", daemon=True)
        self._sweeper.start()
        return self._sweeper

    def stop_sweeper(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None
