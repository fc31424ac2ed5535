"""
Result verification: a third party holding a tally leaf, its path and the
revealed salt checks the leaf against a published results commitment.
"""

import logging
from typing import Sequence

from primitives.hashing import hash5, hash_left_right, is_field_element
from tree.merkle import compute_root, path_indices_for

logger = logging.getLogger(__name__)

TALLY_TREE_ARITY = 5


def verify_tally_result(depth: int, index: int, leaf: int,
                        path_elements: Sequence[Sequence[int]], salt: int,
                        commitment: int) -> bool:
    """True iff leaf sits at index of a depth-`depth` quin tree committed to by commitment"""
    if depth < 1 or not 0 <= index < TALLY_TREE_ARITY ** depth:
        return False
    if not isinstance(path_elements, (list, tuple)) or len(path_elements) != depth:
        return False
    if not all(isinstance(level, (list, tuple)) for level in path_elements):
        return False
    if not all(is_field_element(v) for v in (leaf, salt)):
        return False

    try:
        root = compute_root(leaf, path_elements, path_indices_for(index, depth, TALLY_TREE_ARITY),
                            TALLY_TREE_ARITY)
    except ValueError as e:
        logger.debug(f"Tally path rejected: {e}")
        return False

    return hash_left_right(root, salt) == commitment


def verify_tally_batch(depth: int, batch_index: int, leaves: Sequence[int],
                       path_elements: Sequence[Sequence[int]], salt: int,
                       commitment: int) -> bool:
    """
    Check five adjacent tally leaves at once. `depth` is the depth of the full
    tally tree; the path belongs to the aggregated tree of depth - 1.
    """
    if len(leaves) != TALLY_TREE_ARITY:
        return False
    if not all(is_field_element(v) for v in leaves):
        return False
    return verify_tally_result(depth - 1, batch_index, hash5(leaves),
                               path_elements, salt, commitment)
