import pytest

from raftshard.shardctrler import (
    NSHARDS,
    OK,
    Clerk,
    Config,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
    QueryReply,
    Reply,
)


class FakeEnd:
    """Replies from a script; records every call."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def call(self, method, args):
        self.calls.append((method, args))
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def make_clerk(*ends):
    ck = Clerk(list(ends))
    ck.retry_interval = 0
    return ck


def test_initial_config_has_no_groups_and_invalid_gid():
    c = Config()
    assert c.num == 0
    assert c.groups == {}
    assert len(c.shards) == NSHARDS
    assert set(c.shards) == {0}


def test_config_rejects_wrong_shard_count():
    with pytest.raises(ValueError):
        Config(shards=(1, 2))


def test_config_equality_compares_all_fields():
    a = Config(num=2, shards=[1] * NSHARDS, groups={1: ["x", "y", "z"]})
    b = Config(num=2, shards=tuple([1] * NSHARDS), groups={1: ["x", "y", "z"]})
    assert a == b
    assert a != Config(num=3, shards=[1] * NSHARDS, groups={1: ["x", "y", "z"]})


def test_query_skips_wrong_leader():
    wanted = Config(num=1, shards=[1] * NSHARDS, groups={1: ["x", "y", "z"]})
    follower = FakeEnd([QueryReply(wrong_leader=True)])
    leader = FakeEnd([QueryReply(err=OK, config=wanted)])
    ck = make_clerk(follower, leader)
    assert ck.query(-1) == wanted
    assert follower.calls == [("query", QueryArgs(num=-1))]
    assert leader.calls == [("query", QueryArgs(num=-1))]


def test_query_retries_after_lost_replies():
    wanted = Config(num=5)
    end = FakeEnd([None, None, QueryReply(err=OK, config=wanted)])
    ck = make_clerk(end)
    assert ck.query(5) == wanted
    assert len(end.calls) == 3
    assert all(args == QueryArgs(num=5) for _, args in end.calls)


def test_join_sends_servers():
    end = FakeEnd([Reply(err=OK)])
    ck = make_clerk(end)
    servers = {1: ["x", "y", "z"], 2: ["a", "b", "c"]}
    ck.join(servers)
    assert end.calls == [("join", JoinArgs(servers=servers))]


def test_leave_sends_gids_after_wrong_leader():
    end = FakeEnd([Reply(wrong_leader=True), Reply(err=OK)])
    ck = make_clerk(end)
    ck.leave((1, 3))
    assert [c[0] for c in end.calls] == ["leave", "leave"]
    assert end.calls[-1][1] == LeaveArgs(gids=[1, 3])


def test_move_sends_shard_and_gid():
    end = FakeEnd([Reply(err=OK)])
    ck = make_clerk(end)
    ck.move(3, 503)
    assert end.calls == [("move", MoveArgs(shard=3, gid=503))]