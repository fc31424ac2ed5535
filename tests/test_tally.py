"""Tests for batched quadratic tallying and result verification."""

import pytest

from core.domainobjs import StateLeaf
from core.errors import BatchOrderViolation, CommitmentMismatch, PhaseViolation
from core.phases import Phase
from core.tally import (
    gen_aggregated_tally_tree,
    gen_tally_result_commitment,
    gen_tally_tree,
    quadratic_vote_weight,
)
from core.verifier import verify_tally_batch, verify_tally_result
from primitives.hashing import gen_random_salt
from zk.circuits import QuadVoteTallyCircuit

VOTE_OPTION_TREE_DEPTH = 2


@pytest.fixture
def tallying_state(voted_state):
    voted_state.process_batch(0, 4, StateLeaf.gen_random_leaf())
    voted_state.advance_phase(Phase.TALLYING)
    return voted_state


def test_quadratic_vote_weight():
    assert quadratic_vote_weight(0) == 0
    assert quadratic_vote_weight(9) == 3
    assert quadratic_vote_weight(13) == 3
    assert quadratic_vote_weight(16) == 4
    with pytest.raises(ValueError):
        quadratic_vote_weight(-1)


def test_single_batch_tally(tallying_state):
    salt = gen_random_salt()
    result = tallying_state.apply_tally_batch(0, 4, salt)

    expected = [3, 3, 3] + [0] * 22
    assert result.tally == expected
    assert result.per_option_credits == [9, 9, 9] + [0] * 22
    assert result.commitment == gen_tally_result_commitment(expected, salt, VOTE_OPTION_TREE_DEPTH)
    assert tallying_state.current_results_commitment == result.commitment
    assert tallying_state.is_tally_complete()

    tallying_state.advance_phase(Phase.FINALIZED)
    assert tallying_state.current_phase == Phase.FINALIZED


def test_tally_circuit_agrees_with_engine(tallying_state):
    salt = gen_random_salt()
    inputs = tallying_state.gen_tally_circuit_inputs(0, 4, 0, salt)
    commitment = QuadVoteTallyCircuit().calculate_commitment(inputs)

    assert commitment == inputs['new_results_commitment']
    assert tallying_state.apply_tally_batch(0, 4, salt, circuit_commitment=commitment).commitment == commitment


def test_tally_circuit_rejects_tampered_votes(tallying_state):
    inputs = tallying_state.gen_tally_circuit_inputs(0, 4, 0, gen_random_salt())
    inputs['vote_leaves'] = [list(votes) for votes in inputs['vote_leaves']]
    inputs['vote_leaves'][1][0] += 1
    with pytest.raises(CommitmentMismatch):
        QuadVoteTallyCircuit().calculate_commitment(inputs)


def test_tally_circuit_rejects_wrong_current_salt(tallying_state):
    inputs = tallying_state.gen_tally_circuit_inputs(0, 4, 0, gen_random_salt())
    inputs['current_results_salt'] = 1
    with pytest.raises(CommitmentMismatch):
        QuadVoteTallyCircuit().calculate_commitment(inputs)


def test_sequential_tally_batches(tallying_state):
    first_salt, second_salt = gen_random_salt(), gen_random_salt()

    with pytest.raises(BatchOrderViolation):
        tallying_state.apply_tally_batch(2, 2, second_salt)

    first = tallying_state.apply_tally_batch(0, 2, first_salt)
    assert first.tally[:3] == [3, 0, 0]
    assert not tallying_state.is_tally_complete()
    with pytest.raises(PhaseViolation):
        tallying_state.advance_phase(Phase.FINALIZED)

    inputs = tallying_state.gen_tally_circuit_inputs(2, 2, first_salt, second_salt)
    assert inputs['current_results_commitment'] == first.commitment
    assert inputs['intermediate_path_index'] == 1
    assert QuadVoteTallyCircuit().calculate_commitment(inputs) == inputs['new_results_commitment']

    second = tallying_state.apply_tally_batch(2, 2, second_salt)
    assert second.tally[:3] == [3, 3, 3]
    assert second.processed_up_to == 4
    assert [r.batch_index for r in tallying_state.tally_results] == [0, 1]


def test_commitment_mismatch_commits_nothing(tallying_state):
    with pytest.raises(CommitmentMismatch):
        tallying_state.apply_tally_batch(0, 4, gen_random_salt(), circuit_commitment=1)
    assert tallying_state.num_tallied_leaves == 0
    assert tallying_state.tally_results == []


def test_tally_requires_tallying_phase(voted_state):
    with pytest.raises(PhaseViolation):
        voted_state.apply_tally_batch(0, 4, gen_random_salt())


def test_tally_batch_shape_is_checked(tallying_state):
    with pytest.raises(ValueError):
        tallying_state.gen_tally_circuit_inputs(0, 3, 0, 1)
    with pytest.raises(ValueError):
        tallying_state.gen_tally_circuit_inputs(1, 2, 0, 1)


def test_verify_individual_results():
    tally = [3, 3, 3] + [0] * 22
    salt = gen_random_salt()
    commitment = gen_tally_result_commitment(tally, salt, VOTE_OPTION_TREE_DEPTH)
    tree = gen_tally_tree(tally, VOTE_OPTION_TREE_DEPTH)

    for index in (0, 2, 24):
        path = tree.gen_merkle_path(index).path_elements
        assert verify_tally_result(VOTE_OPTION_TREE_DEPTH, index, tally[index], path, salt, commitment)

    path = tree.gen_merkle_path(0).path_elements
    assert not verify_tally_result(VOTE_OPTION_TREE_DEPTH, 0, 4, path, salt, commitment)
    assert not verify_tally_result(VOTE_OPTION_TREE_DEPTH, 0, 3, path, salt + 1, commitment)
    assert not verify_tally_result(VOTE_OPTION_TREE_DEPTH, 3, 3, path, salt, commitment)
    assert not verify_tally_result(VOTE_OPTION_TREE_DEPTH, 25, 3, path, salt, commitment)
    assert not verify_tally_result(VOTE_OPTION_TREE_DEPTH, 0, 3, path[:1], salt, commitment)


def test_equal_neighbours_share_an_opening():
    tally = [3, 3, 3] + [0] * 22
    salt = gen_random_salt()
    commitment = gen_tally_result_commitment(tally, salt, VOTE_OPTION_TREE_DEPTH)
    path = gen_tally_tree(tally, VOTE_OPTION_TREE_DEPTH).gen_merkle_path(0).path_elements

    # leaves 0 and 1 hold the same value under the same siblings
    assert verify_tally_result(VOTE_OPTION_TREE_DEPTH, 1, 3, path, salt, commitment)


def test_corrupted_path_element_fails_verification():
    tally = list(range(1, 26))
    salt = gen_random_salt()
    commitment = gen_tally_result_commitment(tally, salt, VOTE_OPTION_TREE_DEPTH)
    tree = gen_tally_tree(tally, VOTE_OPTION_TREE_DEPTH)
    path = tree.gen_merkle_path(7).path_elements
    assert verify_tally_result(VOTE_OPTION_TREE_DEPTH, 7, 8, path, salt, commitment)

    for level in range(len(path)):
        for j in range(len(path[level])):
            corrupted = [list(siblings) for siblings in path]
            corrupted[level][j] += 1
            assert not verify_tally_result(VOTE_OPTION_TREE_DEPTH, 7, 8, corrupted, salt, commitment)


@pytest.mark.parametrize("path", [
    [1, 2],
    [[1, 2, 3, 4], 5],
    [[1, 2, 3], [1, 2, 3, 4]],
    [[1, 2, 3, 4], [1, 2, 3, "x"]],
    None,
])
def test_malformed_paths_are_rejected(path):
    assert verify_tally_result(2, 0, 1, path, 0, 0) is False


def test_aggregated_verification_matches_individual():
    tally = list(range(1, 26))
    salt = gen_random_salt()
    commitment = gen_tally_result_commitment(tally, salt, VOTE_OPTION_TREE_DEPTH)
    full_tree = gen_tally_tree(tally, VOTE_OPTION_TREE_DEPTH)
    aggregated = gen_aggregated_tally_tree(tally, VOTE_OPTION_TREE_DEPTH)

    assert aggregated.root == full_tree.root

    for batch_index in range(5):
        leaves = tally[batch_index * 5:(batch_index + 1) * 5]
        path = aggregated.gen_merkle_path(batch_index).path_elements
        assert verify_tally_batch(VOTE_OPTION_TREE_DEPTH, batch_index, leaves, path, salt, commitment)
        for offset, leaf in enumerate(leaves):
            index = batch_index * 5 + offset
            assert verify_tally_result(VOTE_OPTION_TREE_DEPTH, index, leaf,
                                       full_tree.gen_merkle_path(index).path_elements,
                                       salt, commitment)

    path = aggregated.gen_merkle_path(0).path_elements
    assert not verify_tally_batch(VOTE_OPTION_TREE_DEPTH, 0, [1, 2, 3, 4, 6], path, salt, commitment)
    assert not verify_tally_batch(VOTE_OPTION_TREE_DEPTH, 0, [1, 2, 3, 4], path, salt, commitment)


def test_aggregated_tree_needs_depth_two():
    with pytest.raises(ValueError):
        gen_aggregated_tally_tree([1, 2, 3], 1)
