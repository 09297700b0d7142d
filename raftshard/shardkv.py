"""Sharded key/value service types and client.

The client asks the shard controller which group serves a key's shard,
then talks to the servers of that group.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from . import shardctrler


class ServerEnd(Protocol):
    def call(self, method: str, args: Any) -> Any | None:
        ...


class Err(str, enum.Enum):
    OK = "OK"
    ERR_NO_KEY = "ErrNoKey"
    ERR_WRONG_GROUP = "ErrWrongGroup"
    ERR_WRONG_LEADER = "ErrWrongLeader"


@dataclass
class PutAppendArgs:
    key: str
    value: str
    op: str  # "Put" or "Append"


@dataclass
class PutAppendReply:
    err: Err = Err.OK


@dataclass
class GetArgs:
    key: str


@dataclass
class GetReply:
    err: Err = Err.OK
    value: str = ""


def key2shard(key: str) -> int:
    """Return the shard that holds ``key``, chosen by its first byte."""
    data = key.encode("utf-8")
    first = data[0] if data else 0
    return first % shardctrler.NSHARDS


class Clerk:
    """Client of the sharded key/value service; retries indefinitely."""

    retry_interval = 0.1

    def __init__(
        self,
        ctrlers: Sequence[shardctrler.ServerEnd],
        make_end: Callable[[str], ServerEnd],
    ) -> None:
        self.sm = shardctrler.Clerk(ctrlers)
        self.config = shardctrler.Config()
        self.make_end = make_end

    def _group_servers(self, key: str) -> list[str]:
        gid = self.config.shards[key2shard(key)]
        return self.config.groups.get(gid, [])

    def _refresh(self) -> None:
        time.sleep(self.retry_interval)
        self.config = self.sm.query(-1)

    def get(self, key: str) -> str:
        """Return the value for ``key``, or "" if the key does not exist."""
        args = GetArgs(key=key)
        while True:
            for name in self._group_servers(key):
                reply = self.make_end(name).call("get", args)
                if reply is None:
                    continue
                if reply.err in (Err.OK, Err.ERR_NO_KEY):
                    return reply.value
                if reply.err == Err.ERR_WRONG_GROUP:
                    break
            self._refresh()

    def put_append(self, key: str, value: str, op: str) -> None:
        """Shared by put and append; ``op`` is "Put" or "Append"."""
        args = PutAppendArgs(key=key, value=value, op=op)
        while True:
            for name in self._group_servers(key):
                reply = self.make_end(name).call("put_append", args)
                if reply is None:
                    continue
                if reply.err == Err.OK:
                    return
                if reply.err == Err.ERR_WRONG_GROUP:
                    break
            self._refresh()

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")