"""Raft message types, timing constants and persistent-state encoding."""

from __future__ import annotations

import enum
import pickle
import random
import time
from dataclasses import dataclass, field
from typing import Any

# Election timeout range in milliseconds: [MIN_VOTE_TIME, MIN_VOTE_TIME + MORE_VOTE_TIME).
MORE_VOTE_TIME = 100
MIN_VOTE_TIME = 75

# Heartbeats must be shorter than election timeouts to keep a stable leader.
HEARTBEAT_SLEEP = 35
APPLIED_SLEEP = 15


class Status(enum.IntEnum):
    """Role of a Raft peer."""

    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2


@dataclass
class ApplyMsg:
    """A committed command or an installed snapshot handed to the service."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0
    snapshot_valid: bool = False
    snapshot: bytes = b""
    snapshot_term: int = 0
    snapshot_index: int = 0


@dataclass
class LogEntry:
    term: int = 0
    command: Any = None


@dataclass
class RequestVoteArgs:
    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    term: int
    leader_id: int
    prev_log_index: int
    prev_log_term: int
    leader_commit: int
    entries: list[LogEntry] = field(default_factory=list)


@dataclass
class AppendEntriesReply:
    term: int = 0
    success: bool = False
    up_next_index: int = -1


@dataclass
class InstallSnapshotArgs:
    term: int
    leader_id: int
    last_include_index: int
    last_include_term: int
    data: bytes = b""


@dataclass
class InstallSnapshotReply:
    term: int = 0


def generate_over_time(server: int) -> int:
    """Return an election timeout in milliseconds, seeded by clock and server."""
    rng = random.Random(int(time.time()) + server)
    return rng.randrange(MORE_VOTE_TIME) + MIN_VOTE_TIME


def encode_state(
    current_term: int,
    voted_for: int,
    logs: list[LogEntry],
    last_include_index: int,
    last_include_term: int,
) -> bytes:
    """Serialise the persistent Raft state to bytes."""
    record = (
        current_term,
        voted_for,
        [(entry.term, entry.command) for entry in logs],
        last_include_index,
        last_include_term,
    )
    return pickle.dumps(record, protocol=pickle.HIGHEST_PROTOCOL)


def decode_state(data: bytes) -> tuple[int, int, list[LogEntry], int, int]:
    """Parse bytes from encode_state.

    Returns (current_term, voted_for, logs, last_include_index,
    last_include_term). Raises ValueError if the data is empty or malformed.
    """
    if not data:
        raise ValueError("no persisted state")
    try:
        record = pickle.loads(bytes(data))
    except Exception as exc:
        raise ValueError("decode error") from exc
    if not isinstance(record, tuple) or len(record) != 5:
        raise ValueError("decode error")
    current_term, voted_for, raw_logs, last_index, last_term = record
    if not all(isinstance(v, int) for v in (current_term, voted_for, last_index, last_term)):
        raise ValueError("decode error")
    if not isinstance(raw_logs, list):
        raise ValueError("decode error")
    try:
        logs = [LogEntry(term=term, command=command) for term, command in raw_logs]
    except (TypeError, ValueError) as exc:
        raise ValueError("decode error") from exc
    return current_term, voted_for, logs, last_index, last_term