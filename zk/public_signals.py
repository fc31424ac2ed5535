"""
Public signal layouts. Positions are fixed; a verifier and the ledger must
build exactly these vectors.
"""

from typing import Any, Dict, List, Sequence

from primitives.keys import PubKey

# Tally layout
QVT_NEW_RESULTS_COMMITMENT = 0
QVT_FULL_STATE_ROOT = 1
QVT_INTERMEDIATE_PATH_INDEX = 2
QVT_INTERMEDIATE_STATE_ROOT = 3
QVT_CURRENT_RESULTS_COMMITMENT = 4


def gen_batch_ust_public_signals(new_state_root: int, coordinator_pub_key: PubKey,
                                 message_tree_root: int, message_batch_start_index: int,
                                 initial_state_root: int, max_state_leaf_index: int,
                                 max_vote_option_index: int,
                                 ecdh_pub_keys: Sequence[PubKey]) -> List[int]:
    signals = [new_state_root]
    signals.extend(coordinator_pub_key.as_field_elements())
    signals.extend([
        message_tree_root,
        message_batch_start_index,
        initial_state_root,
        max_state_leaf_index,
        max_vote_option_index,
    ])
    for key in ecdh_pub_keys:
        signals.extend(key.as_field_elements())
    return signals


def batch_ust_public_signals_from_inputs(inputs: Dict[str, Any], new_state_root: int) -> List[int]:
    return gen_batch_ust_public_signals(
        new_state_root=new_state_root,
        coordinator_pub_key=PubKey.from_field_elements(inputs['coordinator_public_key']),
        message_tree_root=inputs['message_tree_root'],
        message_batch_start_index=inputs['message_batch_start_index'],
        initial_state_root=inputs['initial_state_root'],
        max_state_leaf_index=inputs['max_state_leaf_index'],
        max_vote_option_index=inputs['max_vote_option_index'],
        ecdh_pub_keys=[PubKey.from_field_elements(limbs) for limbs in inputs['ecdh_public_key']],
    )


def gen_qvt_public_signals(new_results_commitment: int, full_state_root: int,
                           intermediate_path_index: int, intermediate_state_root: int,
                           current_results_commitment: int) -> List[int]:
    return [
        new_results_commitment,
        full_state_root,
        intermediate_path_index,
        intermediate_state_root,
        current_results_commitment,
    ]


def qvt_public_signals_from_inputs(inputs: Dict[str, Any], new_results_commitment: int) -> List[int]:
    return gen_qvt_public_signals(
        new_results_commitment=new_results_commitment,
        full_state_root=inputs['full_state_root'],
        intermediate_path_index=inputs['intermediate_path_index'],
        intermediate_state_root=inputs['intermediate_state_root'],
        current_results_commitment=inputs['current_results_commitment'],
    )
