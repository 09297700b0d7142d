"""Raft consensus peer, persister, and clerks for a shard controller and sharded key/value service."""

__version__ = "0.1.0"
__all__ = ["persister", "messages", "raft", "shardctrler", "shardkv"]