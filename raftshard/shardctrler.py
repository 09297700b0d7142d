"""Shard controller types and client.

The controller assigns shards to replica groups. Its interface:

* ``join(servers)`` adds groups (gid -> list of server names);
* ``leave(gids)`` removes groups;
* ``move(shard, gid)`` hands one shard to a group;
* ``query(num)`` fetches configuration ``num``, or the latest when ``num`` is -1.

Configuration 0 has no groups and assigns every shard to group 0, the
invalid group.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

NSHARDS = 10

OK = "OK"


class ServerEnd(Protocol):
    def call(self, method: str, args: Any) -> Any | None:
        ...


def _unassigned() -> tuple[int, ...]:
    return (0,) * NSHARDS


@dataclass
class Config:
    """An assignment of shards to groups."""

    num: int = 0
    shards: tuple[int, ...] = field(default_factory=_unassigned)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.shards = tuple(self.shards)
        if len(self.shards) != NSHARDS:
            raise ValueError(f"a config assigns exactly {NSHARDS} shards")


@dataclass
class JoinArgs:
    servers: dict[int, list[str]]


@dataclass
class LeaveArgs:
    gids: list[int]


@dataclass
class MoveArgs:
    shard: int
    gid: int


@dataclass
class QueryArgs:
    num: int


@dataclass
class Reply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class QueryReply(Reply):
    config: Config = field(default_factory=Config)


class Clerk:
    """Client of the shard controller; retries until some server leads."""

    retry_interval = 0.1

    def __init__(self, servers: Sequence[ServerEnd]) -> None:
        self.servers = list(servers)

    def _call_leader(self, method: str, args: Any) -> Any:
        while True:
            for server in self.servers:
                reply = server.call(method, args)
                if reply is not None and not reply.wrong_leader:
                    return reply
            time.sleep(self.retry_interval)

    def query(self, num: int) -> Config:
        """Return configuration ``num``, or the latest when ``num`` is -1."""
        return self._call_leader("query", QueryArgs(num=num)).config

    def join(self, servers: dict[int, list[str]]) -> None:
        self._call_leader("join", JoinArgs(servers=servers))

    def leave(self, gids: Sequence[int]) -> None:
        self._call_leader("leave", LeaveArgs(gids=list(gids)))

    def move(self, shard: int, gid: int) -> None:
        self._call_leader("move", MoveArgs(shard=shard, gid=gid))