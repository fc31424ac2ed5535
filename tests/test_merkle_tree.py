"""Tests for the incremental Merkle trees."""

import pytest

from primitives.hashing import hash_n
from tree.merkle import (
    CapacityExceeded,
    IncrementalMerkleTree,
    IncrementalQuinTree,
    IndexOutOfRange,
    MerklePath,
    compute_root,
    verify_merkle_path,
    zero_values,
)


def test_empty_root_is_zero_constant():
    tree = IncrementalMerkleTree(3, zero_value=7)
    assert tree.root == zero_values(3, 7, 2)[3]
    assert zero_values(1, 7, 2)[1] == hash_n([7, 7])


def test_insert_and_paths_open_every_leaf():
    tree = IncrementalMerkleTree(3)
    roots = set()
    for value in [11, 22, 33, 44, 55]:
        tree.insert(value)
        roots.add(tree.root)
    assert len(roots) == 5

    for index, value in enumerate([11, 22, 33, 44, 55]):
        path = tree.gen_merkle_path(index)
        assert path.leaf_index(2) == index
        assert verify_merkle_path(value, path, tree.root)


def test_corrupted_path_fails():
    tree = IncrementalMerkleTree(2)
    tree.insert(1)
    tree.insert(2)
    path = tree.gen_merkle_path(1)
    path.path_elements[1][0] += 1
    assert not verify_merkle_path(2, path, tree.root)


def test_capacity_and_index_errors():
    tree = IncrementalMerkleTree(1)
    tree.insert(1)
    with pytest.raises(IndexOutOfRange):
        tree.gen_merkle_path(1)
    tree.insert(2)
    with pytest.raises(CapacityExceeded):
        tree.insert(3)
    with pytest.raises(IndexOutOfRange):
        tree.update(5, 1)


def test_update_rewrites_leaf():
    tree = IncrementalMerkleTree(2)
    for value in [1, 2, 3]:
        tree.insert(value)
    before = tree.root
    tree.update(1, 99)
    assert tree.root != before
    assert verify_merkle_path(99, tree.gen_merkle_path(1), tree.root)
    assert verify_merkle_path(3, tree.gen_merkle_path(2), tree.root)


def test_quin_tree_paths():
    tree = IncrementalQuinTree(2)
    for value in range(7):
        tree.insert(value)
    path = tree.gen_merkle_path(6)
    assert all(len(siblings) == 4 for siblings in path.path_elements)
    assert path.path_indices == [1, 1]
    assert verify_merkle_path(6, path, tree.root, arity=5)


def test_zero_filled_tree_matches_empty_tree():
    filled = IncrementalQuinTree(2)
    for _ in range(25):
        filled.insert(0)
    assert filled.root == IncrementalQuinTree(2).root


def test_subpath_from_interior_node():
    tree = IncrementalMerkleTree(3)
    for value in range(8):
        tree.insert(value)
    node = tree.node(1, 2)
    path = tree.gen_merkle_subpath(1, 2)
    assert path.depth == 2
    assert compute_root(node, path.path_elements, path.path_indices) == tree.root


def test_empty_slot_path_opens_zero_leaf():
    tree = IncrementalMerkleTree(2)
    tree.insert(5)
    path = tree.gen_empty_slot_path(3)
    assert verify_merkle_path(0, path, tree.root)
    with pytest.raises(IndexOutOfRange):
        tree.gen_empty_slot_path(0)


def test_copy_is_independent():
    tree = IncrementalMerkleTree(2)
    tree.insert(1)
    clone = tree.copy()
    clone.insert(2)
    assert len(tree) == 1
    assert tree.root != clone.root


def test_bad_path_shapes():
    with pytest.raises(ValueError):
        compute_root(1, [[2]], [0, 1])
    with pytest.raises(ValueError):
        compute_root(1, [[2, 3]], [0])
    assert not verify_merkle_path(1, MerklePath([[2]], [3]), 0)
