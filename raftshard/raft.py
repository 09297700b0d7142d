"""A Raft consensus peer with leader election, log replication and snapshots.

A peer talks to the others through a sequence of peer ends. Each end has a
``call(method, args)`` method that delivers ``args`` to the named handler of
the remote peer ("request_vote", "append_entries" or "install_snapshot") and
returns the reply, or ``None`` when the request or the reply was lost.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Protocol, Sequence

from .messages import (
    APPLIED_SLEEP,
    HEARTBEAT_SLEEP,
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    InstallSnapshotArgs,
    InstallSnapshotReply,
    LogEntry,
    RequestVoteArgs,
    RequestVoteReply,
    Status,
    decode_state,
    encode_state,
    generate_over_time,
)
from .persister import Persister

logger = logging.getLogger(__name__)


class PeerEnd(Protocol):
    def call(self, method: str, args: Any) -> Any | None:
        ...


class Raft:
    """One Raft peer.

    Committed commands and installed snapshots are put on ``apply_queue`` as
    ``ApplyMsg`` values. Background work begins only when ``run`` is called.
    """

    def __init__(
        self,
        peers: Sequence[PeerEnd],
        me: int,
        persister: Persister,
        apply_queue: queue.Queue,
    ) -> None:
        self.peers = list(peers)
        self.me = me
        self.persister = persister
        self.apply_queue = apply_queue
        self._lock = threading.Lock()
        self._dead = threading.Event()
        self._running = False

        self.status = Status.FOLLOWER
        self.current_term = 0
        self.voted_for = -1
        self.vote_num = 0
        self.voted_timer = float("-inf")

        self.logs: list[LogEntry] = [LogEntry()]
        self.commit_index = 0
        self.last_applied = 0
        self.last_include_index = 0
        self.last_include_term = 0

        self.next_index = [0] * len(self.peers)
        self.match_index = [0] * len(self.peers)

        self._read_persist(persister.read_raft_state())
        if self.last_include_index > 0:
            self.last_applied = self.last_include_index

    # ----- public interface -------------------------------------------------

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self._lock:
            return self.current_term, self.status == Status.LEADER

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Append a command if leader; return (index, term, is_leader)."""
        with self._lock:
            if self.killed() or self.status != Status.LEADER:
                return -1, -1, False
            index = len(self.logs) + self.last_include_index
            term = self.current_term
            self.logs.append(LogEntry(term=term, command=command))
            self._persist()
            return index, term, True

    def kill(self) -> None:
        self._dead.set()

    def killed(self) -> bool:
        return self._dead.is_set()

    def snapshot(self, index: int, snapshot: bytes) -> None:
        """Discard the log through ``index``, which the service has captured."""
        if self.killed():
            return
        with self._lock:
            if self.last_include_index >= index or index > self.commit_index:
                return
            last_index = self._last_index()
            trimmed = [LogEntry()]
            trimmed.extend(self._restore_log(i) for i in range(index + 1, last_index + 1))
            if index == last_index + 1:
                self.last_include_term = self._last_term()
            else:
                self.last_include_term = self._restore_log_term(index)
            self.last_include_index = index
            self.logs = trimmed
            self.commit_index = max(self.commit_index, index)
            self.last_applied = max(self.last_applied, index)
            self.persister.save(self._persist_data(), snapshot)

    def up_to_date(self, index: int, term: int) -> bool:
        """Whether a log ending at (index, term) is at least as new as ours."""
        last_index = self._last_index()
        last_term = self._last_term()
        return term > last_term or (term == last_term and index >= last_index)

    def run(self) -> None:
        """Start the election, heartbeat and apply loops."""
        if self._running:
            return
        self._running = True
        for loop in (self._election_ticker, self._heartbeat_ticker, self._apply_ticker):
            self._spawn(loop)

    # ----- RPC handlers -----------------------------------------------------

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        with self._lock:
            reply = RequestVoteReply()
            if args.term < self.current_term:
                reply.vote_granted = False
                reply.term = self.current_term
                return reply
            reply.term = self.current_term
            if args.term > self.current_term:
                self.current_term = args.term
                self.status = Status.FOLLOWER
                self.voted_for = -1
                self.vote_num = 0
                self._persist()

            already_voted = (
                self.voted_for != -1
                and self.voted_for != args.candidate_id
                and args.term == reply.term
            )
            if not self.up_to_date(args.last_log_index, args.last_log_term) or already_voted:
                reply.vote_granted = False
                reply.term = self.current_term
                return reply

            reply.vote_granted = True
            self.voted_for = args.candidate_id
            self.current_term = args.term
            reply.term = self.current_term
            self.voted_timer = time.monotonic()
            self._persist()
            return reply

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        with self._lock:
            if args.term < self.current_term:
                return AppendEntriesReply(term=self.current_term, success=False, up_next_index=-1)

            reply = AppendEntriesReply(term=args.term, success=True, up_next_index=-1)
            self.status = Status.FOLLOWER
            self.current_term = args.term
            self.voted_for = -1
            self.vote_num = 0
            self._persist()
            self.voted_timer = time.monotonic()

            if self.last_include_index > args.prev_log_index:
                reply.success = False
                reply.up_next_index = self._last_index() + 1
                return reply

            if self._last_index() < args.prev_log_index:
                reply.success = False
                reply.up_next_index = self._last_index()
                return reply

            conflict_term = self._restore_log_term(args.prev_log_index)
            if conflict_term != args.prev_log_term:
                reply.success = False
                for index in range(args.prev_log_index, self.last_include_index - 1, -1):
                    if self._restore_log_term(index) != conflict_term:
                        reply.up_next_index = index + 1
                        break
                return reply

            keep = args.prev_log_index + 1 - self.last_include_index
            self.logs = self.logs[:keep] + list(args.entries)
            self._persist()

            if args.leader_commit > self.commit_index:
                self.commit_index = min(args.leader_commit, self._last_index())
            return reply

    def install_snapshot(self, args: InstallSnapshotArgs) -> InstallSnapshotReply:
        with self._lock:
            if self.current_term > args.term:
                return InstallSnapshotReply(term=self.current_term)

            self.current_term = args.term
            reply = InstallSnapshotReply(term=args.term)
            self.status = Status.FOLLOWER
            self.voted_for = -1
            self.vote_num = 0
            self._persist()
            self.voted_timer = time.monotonic()

            if self.last_include_index >= args.last_include_index:
                return reply

            index = args.last_include_index
            trimmed = [LogEntry()]
            trimmed.extend(
                self._restore_log(i) for i in range(index + 1, self._last_index() + 1)
            )
            self.last_include_term = args.last_include_term
            self.last_include_index = args.last_include_index
            self.logs = trimmed
            self.commit_index = max(self.commit_index, index)
            self.last_applied = max(self.last_applied, index)
            self.persister.save(self._persist_data(), args.data)

            msg = ApplyMsg(
                snapshot_valid=True,
                snapshot=args.data,
                snapshot_term=self.last_include_term,
                snapshot_index=self.last_include_index,
            )
        self.apply_queue.put(msg)
        return reply

    # ----- background loops -------------------------------------------------

    def _election_ticker(self) -> None:
        while not self.killed():
            started = time.monotonic()
            time.sleep(generate_over_time(self.me) / 1000)
            with self._lock:
                if self.voted_timer < started and self.status != Status.LEADER:
                    self.status = Status.CANDIDATE
                    self.voted_for = self.me
                    self.vote_num = 1
                    self.current_term += 1
                    self._persist()
                    for server in range(len(self.peers)):
                        if server != self.me:
                            self._spawn(self._request_vote_from, server)
                    self.voted_timer = time.monotonic()

    def _heartbeat_ticker(self) -> None:
        while not self.killed():
            time.sleep(HEARTBEAT_SLEEP / 1000)
            with self._lock:
                leading = self.status == Status.LEADER
            if leading:
                for server in range(len(self.peers)):
                    if server != self.me:
                        self._spawn(self._replicate_to, server)

    def _apply_ticker(self) -> None:
        while not self.killed():
            time.sleep(APPLIED_SLEEP / 1000)
            with self._lock:
                if self.last_applied >= self.commit_index:
                    continue
                messages = []
                while (
                    self.last_applied < self.commit_index
                    and self.last_applied < self._last_index()
                ):
                    self.last_applied += 1
                    messages.append(
                        ApplyMsg(
                            command_valid=True,
                            command=self._restore_log(self.last_applied).command,
                            command_index=self.last_applied,
                        )
                    )
            for msg in messages:
                self.apply_queue.put(msg)

    # ----- outgoing RPCs ----------------------------------------------------

    def _request_vote_from(self, server: int) -> None:
        with self._lock:
            args = RequestVoteArgs(
                term=self.current_term,
                candidate_id=self.me,
                last_log_index=self._last_index(),
                last_log_term=self._last_term(),
            )
        reply = self.peers[server].call("request_vote", args)
        if reply is None:
            return
        with self._lock:
            if self.status != Status.CANDIDATE or args.term < self.current_term:
                return
            if reply.term > args.term:
                self.current_term = max(self.current_term, reply.term)
                self._step_down()
                return
            if reply.vote_granted and self.current_term == args.term:
                self.vote_num += 1
                if self.vote_num >= len(self.peers) // 2 + 1:
                    self.status = Status.LEADER
                    self.voted_for = -1
                    self.vote_num = 0
                    self._persist()
                    last_index = self._last_index()
                    self.next_index = [last_index + 1] * len(self.peers)
                    self.match_index = [0] * len(self.peers)
                    self.match_index[self.me] = last_index
                    self.voted_timer = time.monotonic()

    def _replicate_to(self, server: int) -> None:
        with self._lock:
            if self.status != Status.LEADER:
                return
            if self.next_index[server] - 1 < self.last_include_index:
                self._spawn(self._send_snapshot, server)
                return
            prev_index, prev_term = self._prev_log_info(server)
            if self._last_index() >= self.next_index[server]:
                entries = list(self.logs[self.next_index[server] - self.last_include_index:])
            else:
                entries = []
            args = AppendEntriesArgs(
                term=self.current_term,
                leader_id=self.me,
                prev_log_index=prev_index,
                prev_log_term=prev_term,
                leader_commit=self.commit_index,
                entries=entries,
            )
        reply = self.peers[server].call("append_entries", args)
        if reply is None:
            return
        with self._lock:
            if self.status != Status.LEADER:
                return
            if reply.term > self.current_term:
                self.current_term = reply.term
                self._step_down()
                self.voted_timer = time.monotonic()
                return
            if reply.success:
                self.commit_index = self.last_include_index
                self.match_index[server] = args.prev_log_index + len(args.entries)
                self.next_index[server] = self.match_index[server] + 1
                majority = len(self.peers) // 2 + 1
                for index in range(self._last_index(), self.last_include_index, -1):
                    votes = sum(
                        1
                        for peer, matched in enumerate(self.match_index)
                        if peer == self.me or matched >= index
                    )
                    if votes >= majority and self._restore_log_term(index) == self.current_term:
                        self.commit_index = index
                        break
            elif reply.up_next_index != -1:
                self.next_index[server] = reply.up_next_index

    def _send_snapshot(self, server: int) -> None:
        with self._lock:
            args = InstallSnapshotArgs(
                term=self.current_term,
                leader_id=self.me,
                last_include_index=self.last_include_index,
                last_include_term=self.last_include_term,
                data=self.persister.read_snapshot(),
            )
        reply = self.peers[server].call("install_snapshot", args)
        if reply is None:
            return
        with self._lock:
            if self.status != Status.LEADER or self.current_term != args.term:
                return
            if reply.term > self.current_term:
                self._step_down()
                self.voted_timer = time.monotonic()
                return
            self.match_index[server] = args.last_include_index
            self.next_index[server] = args.last_include_index + 1

    # ----- helpers (call with the lock held) --------------------------------

    def _step_down(self) -> None:
        self.status = Status.FOLLOWER
        self.voted_for = -1
        self.vote_num = 0
        self._persist()

    def _last_index(self) -> int:
        return len(self.logs) - 1 + self.last_include_index

    def _last_term(self) -> int:
        if len(self.logs) == 1:
            return self.last_include_term
        return self.logs[-1].term

    def _offset(self, index: int) -> int:
        offset = index - self.last_include_index
        if offset < 0 or offset >= len(self.logs):
            raise IndexError(f"log index {index} is outside the retained log")
        return offset

    def _restore_log(self, index: int) -> LogEntry:
        return self.logs[self._offset(index)]

    def _restore_log_term(self, index: int) -> int:
        if index == self.last_include_index:
            return self.last_include_term
        return self.logs[self._offset(index)].term

    def _prev_log_info(self, server: int) -> tuple[int, int]:
        prev_index = self.next_index[server] - 1
        last_index = self._last_index()
        if prev_index == last_index + 1:
            prev_index = last_index
        return prev_index, self._restore_log_term(prev_index)

    def _persist_data(self) -> bytes:
        return encode_state(
            self.current_term,
            self.voted_for,
            self.logs,
            self.last_include_index,
            self.last_include_term,
        )

    def _persist(self) -> None:
        self.persister.save_raft_state(self._persist_data())

    def _read_persist(self, data: bytes) -> None:
        if not data:
            return
        try:
            term, voted_for, logs, last_index, last_term = decode_state(data)
        except ValueError:
            logger.error("decode error")
            return
        self.current_term = term
        self.voted_for = voted_for
        self.logs = logs
        self.last_include_index = last_index
        self.last_include_term = last_term

    def _spawn(self, target: Callable[..., None], *args: Any) -> None:
        threading.Thread(target=target, args=args, daemon=True).start()


def make(
    peers: Sequence[PeerEnd],
    me: int,
    persister: Persister,
    apply_queue: queue.Queue,
) -> Raft:
    """Create a Raft peer from its persisted state and start it running."""
    rf = Raft(peers, me, persister, apply_queue)
    rf.run()
    return rf