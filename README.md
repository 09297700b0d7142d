# raftshard

This package is a Raft consensus peer written in plain Python. It also contains the client side of a shard controller and of a sharded key/value service. It has no dependencies outside the standard library.

## Contents

- `raftshard.persister.Persister` stores a peer's persistent Raft state as bytes, together with the service snapshot.
  - `save(raftstate, snapshot)` stores both in one atomic step.
  - `save_raft_state(state)` replaces only the Raft state.
  - Every read returns a copy: `read_raft_state()` and `read_snapshot()`.
  - Sizes are reported by `raft_state_size()` and `snapshot_size()`.
  - `copy()` returns a new persister with the same content.
- `raftshard.messages` defines the message types:
  - the RPC types `RequestVoteArgs`/`RequestVoteReply`, `AppendEntriesArgs`/`AppendEntriesReply` and `InstallSnapshotArgs`/`InstallSnapshotReply`;
  - `LogEntry` and `ApplyMsg`;
  - the peer role enum `Status` (`FOLLOWER`, `CANDIDATE`, `LEADER`).

  The same module provides:
  - `encode_state` and `decode_state` for the persisted state. `decode_state` raises `ValueError` on empty or malformed data.
  - `generate_over_time(server)`, which returns an election timeout in milliseconds, between 75 and 174.
- `raftshard.raft.Raft` is one Raft peer. It covers leader election, log replication, persistence and log compaction through snapshots.
- `raftshard.shardctrler` provides:
  - `Config`, with a configuration number, a 10-entry `shards` tuple (shard → group id) and `groups` (group id → server names);
  - the argument and reply types `JoinArgs`, `LeaveArgs`, `MoveArgs`, `QueryArgs`, `Reply` and `QueryReply`;
  - a `Clerk` with `query`, `join`, `leave` and `move`.
- `raftshard.shardkv` provides:
  - `key2shard(key)`, which maps a key to a shard by its first byte modulo 10;
  - the `Err` enum and the argument and reply types;
  - a `Clerk` with `get`, `put`, `append` and `put_append`.

## Using a Raft peer

```python
import queue
from raftshard.persister import Persister
from raftshard.raft import make

applied = queue.Queue()
peer = make(peers, 0, Persister(), applied)   # builds the peer and calls run()

index, term, is_leader = peer.start("some command")
term, is_leader = peer.get_state()
msg = applied.get()          # an ApplyMsg for each committed entry or installed snapshot
peer.kill()
```

Each entry in `peers` is an endpoint object with a `call(method, args)` method.

- `method` is one of `"request_vote"`, `"append_entries"` or `"install_snapshot"`.
- The endpoint should deliver `args` to the handler of the same name on the remote `Raft` and return that handler's reply.
- If the request or the reply was lost, `call` returns `None`.

There are two ways to create a peer:

- `Raft(peers, me, persister, apply_queue)` only builds the peer from the persisted state. Background election, heartbeat and apply threads start when `run()` is called.
- `make(...)` builds the peer and starts those threads in one step.

After a service has captured the state up to a committed `index`, it calls `peer.snapshot(index, data)`. The peer then drops its log through that index and saves `data` alongside its state.

## Using the clerks

Both clerks talk to servers through endpoints with the same `call(method, args)` shape. Each endpoint returns a reply object, or `None`.

- `shardctrler.Clerk(servers)` sends `"query"`, `"join"`, `"leave"` and `"move"`. It tries each server in turn until a reply comes back with `wrong_leader` false, and sleeps `retry_interval` (0.1 s) between rounds. `query(-1)` asks for the latest configuration.
- `shardkv.Clerk(ctrlers, make_end)` works as follows:
  - It looks up the group that owns a key's shard in its cached configuration.
  - It turns each server name into an endpoint with `make_end(name)`.
  - It sends `"get"` or `"put_append"` to that endpoint.
  - When no server gives a final answer, it refreshes the configuration with `query(-1)` and tries again.
  - `get` returns `""` for a missing key.

Both clerks keep retrying forever.

## What this package does not do

The package contains no shard controller server and no sharded key/value server. The clerks need servers supplied from elsewhere that answer their calls.

There is no network layer either. The caller provides the endpoint objects that carry calls between peers and clerks.

## Installing

```
pip install .
pip install ".[test]"   # with the test dependencies
pytest
```