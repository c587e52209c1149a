"""
Shard Assignment

Maps a task id to a "house number" in a small fixed shard space so scan
groups can own disjoint slices of the outbox without coordinating.

The mapping must be identical in every process and on every run, so it is
derived from a digest of the task id rather than Python's salted hash().
"""

import hashlib

DEFAULT_SHARD_COUNT = 10


def shard_for(task_id: str, shard_count: int = DEFAULT_SHARD_COUNT) -> int:
    """
    Compute the shard for a task id.

    Args:
        task_id: Business task identifier
        shard_count: Size of the shard space

    Returns:
        Shard number in [0, shard_count)
    """
    if shard_count < 1:
        raise ValueError(f"shard_count must be >= 1, got {shard_count}")
    digest = hashlib.md5(task_id.encode("utf-8"), usedforsecurity=False).digest()
    return int.from_bytes(digest[:8], "big") % shard_count
