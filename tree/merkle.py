"""
Incremental Merkle Trees of Configurable Arity
===============================================
Append-only, fixed-depth trees used for the state tree, the message tree,
per-participant vote-option trees and tally result trees.
"""

import functools
import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from primitives.hashing import hash_n

logger = logging.getLogger(__name__)

# ============================================================================
# EXCEPTIONS
# ============================================================================


class TreeError(Exception):
    """Base exception for Merkle tree operations"""
    pass


class CapacityExceeded(TreeError):
    """Raised when inserting into a full tree"""
    pass


class IndexOutOfRange(TreeError):
    """Raised when a proof or update targets an unassigned leaf"""
    pass


# ============================================================================
# PATHS
# ============================================================================


@dataclass
class MerklePath:
    """Sibling values per level (leaf to root) and the node position at each level"""
    path_elements: List[List[int]] = field(default_factory=list)
    path_indices: List[int] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.path_elements)

    def leaf_index(self, arity: int) -> int:
        index = 0
        for level, position in enumerate(self.path_indices):
            index += position * arity ** level
        return index


def path_indices_for(index: int, depth: int, arity: int) -> List[int]:
    indices = []
    for _ in range(depth):
        indices.append(index % arity)
        index //= arity
    return indices


def compute_root(leaf: int, path_elements: Sequence[Sequence[int]],
                 path_indices: Sequence[int], arity: int = 2) -> int:
    """Recompute the root from a leaf and its siblings"""
    if len(path_elements) != len(path_indices):
        raise ValueError(
            f"Length mismatch: {len(path_elements)} levels but {len(path_indices)} indices")

    current = leaf
    for level, (siblings, position) in enumerate(zip(path_elements, path_indices)):
        if len(siblings) != arity - 1:
            raise ValueError(
                f"Level {level} has {len(siblings)} siblings, expected {arity - 1}")
        if not 0 <= position < arity:
            raise ValueError(f"Invalid position {position} at level {level}")

        children = list(siblings)
        children.insert(position, current)
        current = hash_n(children)

    return current


def verify_merkle_path(leaf: int, path: MerklePath, root: int, arity: int = 2) -> bool:
    try:
        return compute_root(leaf, path.path_elements, path.path_indices, arity) == root
    except ValueError:
        return False


@functools.lru_cache(maxsize=None)
def zero_values(depth: int, zero_value: int, arity: int) -> Tuple[int, ...]:
    """Empty-subtree constant per level, level 0 being the zero leaf"""
    zeros = [zero_value]
    for _ in range(depth):
        zeros.append(hash_n([zeros[-1]] * arity))
    return tuple(zeros)


# ============================================================================
# INCREMENTAL TREE
# ============================================================================


class IncrementalMerkleTree:
    """Append-only Merkle tree with O(depth) inserts and inclusion proofs"""

    def __init__(self, depth: int, zero_value: int = 0, arity: int = 2):
        if depth < 1:
            raise ValueError("Tree depth must be at least 1")
        if arity < 2:
            raise ValueError("Tree arity must be at least 2")

        self.depth = depth
        self.arity = arity
        self.zero_value = zero_value
        self.zeros = zero_values(depth, zero_value, arity)
        self.capacity = arity ** depth

        # levels[0] holds the leaves, levels[depth] the root once anything is inserted
        self._levels: List[List[int]] = [[] for _ in range(depth + 1)]

    def __len__(self) -> int:
        return len(self._levels[0])

    @property
    def next_index(self) -> int:
        return len(self._levels[0])

    @property
    def leaves(self) -> List[int]:
        return list(self._levels[0])

    @property
    def root(self) -> int:
        return self.node(self.depth, 0)

    def node(self, level: int, index: int) -> int:
        nodes = self._levels[level]
        if index < len(nodes):
            return nodes[index]
        return self.zeros[level]

    def _set_node(self, level: int, index: int, value: int):
        nodes = self._levels[level]
        if index == len(nodes):
            nodes.append(value)
        else:
            nodes[index] = value

    def _propagate(self, index: int):
        for level in range(self.depth):
            parent = index // self.arity
            first_child = parent * self.arity
            children = [self.node(level, first_child + j) for j in range(self.arity)]
            self._set_node(level + 1, parent, hash_n(children))
            index = parent

    def insert(self, leaf: int) -> int:
        index = self.next_index
        if index >= self.capacity:
            raise CapacityExceeded(
                f"Tree of depth {self.depth} and arity {self.arity} is full ({self.capacity} leaves)")

        self._levels[0].append(leaf)
        self._propagate(index)
        return index

    def update(self, index: int, leaf: int):
        if not 0 <= index < self.next_index:
            raise IndexOutOfRange(f"Leaf {index} has not been inserted")

        self._levels[0][index] = leaf
        self._propagate(index)

    def _path_from(self, level: int, index: int) -> MerklePath:
        path = MerklePath()
        for current_level in range(level, self.depth):
            position = index % self.arity
            first_sibling = index - position
            path.path_elements.append([
                self.node(current_level, first_sibling + j)
                for j in range(self.arity) if j != position
            ])
            path.path_indices.append(position)
            index //= self.arity
        return path

    def gen_merkle_path(self, index: int) -> MerklePath:
        if not 0 <= index < self.next_index:
            raise IndexOutOfRange(f"Leaf {index} has not been inserted")
        return self._path_from(0, index)

    def gen_empty_slot_path(self, index: int) -> MerklePath:
        """Path for a never-inserted slot, proving it still holds the zero leaf"""
        if not self.next_index <= index < self.capacity:
            raise IndexOutOfRange(f"Slot {index} is not an empty slot of this tree")
        return self._path_from(0, index)

    def gen_merkle_subpath(self, level: int, index: int) -> MerklePath:
        """Path from the interior node at (level, index) up to the root"""
        if not 0 <= level <= self.depth:
            raise ValueError(f"Level {level} outside tree of depth {self.depth}")
        if not 0 <= index < self.arity ** (self.depth - level):
            raise IndexOutOfRange(f"Node {index} does not exist at level {level}")
        return self._path_from(level, index)

    def copy(self) -> 'IncrementalMerkleTree':
        clone = self.__class__.__new__(self.__class__)
        clone.depth = self.depth
        clone.arity = self.arity
        clone.zero_value = self.zero_value
        clone.zeros = self.zeros
        clone.capacity = self.capacity
        clone._levels = [list(nodes) for nodes in self._levels]
        return clone


class IncrementalQuinTree(IncrementalMerkleTree):
    """Five-ary tree used for vote options and tally results"""

    def __init__(self, depth: int, zero_value: int = 0):
        super().__init__(depth, zero_value, arity=5)
