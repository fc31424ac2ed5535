"""Tally trees, salted result commitments and quadratic weights."""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

from primitives.hashing import hash5, hash_left_right
from tree.merkle import IncrementalQuinTree

TALLY_GROUP_SIZE = 5


def quadratic_vote_weight(credits: int) -> int:
    """Vote influence bought with the given credits"""
    if credits < 0:
        raise ValueError("Credits cannot be negative")
    return math.isqrt(credits)


def gen_tally_tree(tally: Sequence[int], depth: int) -> IncrementalQuinTree:
    tree = IncrementalQuinTree(depth, 0)
    if len(tally) > tree.capacity:
        raise ValueError(f"Tally has {len(tally)} entries, tree holds {tree.capacity}")
    for value in tally:
        tree.insert(value)
    return tree


def gen_tally_result_commitment(tally: Sequence[int], salt: int, depth: int) -> int:
    return hash_left_right(gen_tally_tree(tally, depth).root, salt)


def gen_aggregated_tally_tree(tally: Sequence[int], depth: int) -> IncrementalQuinTree:
    """
    Tree one level shallower whose leaves are hash5 of five adjacent tally
    entries. Its root equals the root of the full tally tree.
    """
    if depth < 2:
        raise ValueError("Aggregated verification needs a tally tree of depth 2 or more")
    padded = list(tally) + [0] * (TALLY_GROUP_SIZE ** depth - len(tally))
    tree = IncrementalQuinTree(depth - 1, 0)
    for i in range(0, len(padded), TALLY_GROUP_SIZE):
        tree.insert(hash5(padded[i:i + TALLY_GROUP_SIZE]))
    return tree


@dataclass
class TallyResult:
    """Running tally after a tally batch has been applied"""
    batch_index: int
    tally: List[int]
    salt: int
    commitment: int
    intermediate_state_root: int
    processed_up_to: int = 0
    per_option_credits: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'batch_index': self.batch_index,
            'tally': [str(v) for v in self.tally],
            'salt': str(self.salt),
            'commitment': str(self.commitment),
            'intermediate_state_root': str(self.intermediate_state_root),
            'processed_up_to': self.processed_up_to,
            'per_option_credits': [str(v) for v in self.per_option_credits],
        }
