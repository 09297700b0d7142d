"""Holds a Raft peer's persisted state and the service snapshot."""

from __future__ import annotations

import threading


class Persister:
    """Thread-safe store for Raft state bytes and snapshot bytes.

    Every read returns a fresh copy. Every write stores a fresh copy, so
    callers can never alias the stored data.
    """

    def __init__(self, raftstate: bytes = b"", snapshot: bytes = b"") -> None:
        self._lock = threading.Lock()
        self._raftstate = bytes(raftstate)
        self._snapshot = bytes(snapshot)

    def copy(self) -> Persister:
        """Return a new persister holding the same content."""
        with self._lock:
            return Persister(self._raftstate, self._snapshot)

    def read_raft_state(self) -> bytes:
        with self._lock:
            return bytes(self._raftstate)

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raftstate)

    def save(self, raftstate: bytes | None, snapshot: bytes | None) -> None:
        """Store Raft state and snapshot together as one atomic action."""
        with self._lock:
            self._raftstate = bytes(raftstate or b"")
            self._snapshot = bytes(snapshot or b"")

    def save_raft_state(self, state: bytes | None) -> None:
        """Store Raft state only, leaving the snapshot as it is."""
        with self._lock:
            self._raftstate = bytes(state or b"")

    def read_snapshot(self) -> bytes:
        with self._lock:
            return bytes(self._snapshot)

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)