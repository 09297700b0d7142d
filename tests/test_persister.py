import threading

from raftshard.persister import Persister


def test_new_persister_is_empty():
    ps = Persister()
    assert ps.read_raft_state() == b""
    assert ps.read_snapshot() == b""
    assert ps.raft_state_size() == 0
    assert ps.snapshot_size() == 0


def test_save_and_read_round_trip():
    ps = Persister()
    ps.save(b"state-bytes", b"snap")
    assert ps.read_raft_state() == b"state-bytes"
    assert ps.read_snapshot() == b"snap"
    assert ps.raft_state_size() == len(b"state-bytes")
    assert ps.snapshot_size() == len(b"snap")


def test_save_accepts_none_as_empty():
    ps = Persister()
    ps.save(b"abc", b"def")
    ps.save(None, None)
    assert ps.read_raft_state() == b""
    assert ps.read_snapshot() == b""


def test_save_stores_a_copy_of_mutable_input():
    ps = Persister()
    buf = bytearray(b"hello")
    ps.save(buf, buf)
    buf[0] = ord("j")
    assert ps.read_raft_state() == b"hello"
    assert ps.read_snapshot() == b"hello"


def test_save_raft_state_keeps_snapshot():
    ps = Persister()
    ps.save(b"old", b"snapshot-data")
    ps.save_raft_state(b"newer-state")
    assert ps.read_raft_state() == b"newer-state"
    assert ps.read_snapshot() == b"snapshot-data"


def test_copy_has_same_content_and_is_independent():
    ps = Persister()
    ps.save(b"rs", b"ss")
    dup = ps.copy()
    assert dup.read_raft_state() == b"rs"
    assert dup.read_snapshot() == b"ss"
    ps.save(b"changed", b"changed-snap")
    assert dup.read_raft_state() == b"rs"
    assert dup.read_snapshot() == b"ss"
    dup.save_raft_state(b"other")
    assert ps.read_raft_state() == b"changed"


def test_concurrent_saves_keep_pairs_consistent():
    ps = Persister()

    def writer(tag):
        for _ in range(200):
            value = tag.encode() * 4
            ps.save(value, value)

    threads = [threading.Thread(target=writer, args=(t,)) for t in "abcd"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert ps.read_raft_state() == ps.read_snapshot()
    assert ps.raft_state_size() == 4