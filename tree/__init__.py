"""Incremental Merkle trees for state, messages, vote options and tallies."""

from .merkle import (
    IncrementalMerkleTree,
    IncrementalQuinTree,
    MerklePath,
    compute_root,
    verify_merkle_path,
    path_indices_for,
    zero_values,

    # Exceptions
    TreeError,
    CapacityExceeded,
    IndexOutOfRange,
)

__all__ = [
    'IncrementalMerkleTree',
    'IncrementalQuinTree',
    'MerklePath',
    'compute_root',
    'verify_merkle_path',
    'path_indices_for',
    'zero_values',
    'TreeError',
    'CapacityExceeded',
    'IndexOutOfRange',
]
