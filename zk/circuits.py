"""
Reference Circuits
==================
Witness oracles for the batch-update and quadratic-vote-tally circuits.
Each recomputes its output purely from the witness, through the same
transition function the engine uses, and rejects inconsistent witnesses.
"""

import logging
from typing import Any, Dict, List

from core.domainobjs import Message, StateLeaf
from core.errors import CommitmentMismatch, SkipReason, StateRootMismatch, UndecryptableMessage
from core.tally import gen_tally_result_commitment, gen_tally_tree, quadratic_vote_weight
from core.transition import TransitionResult, process_command, route_state_index
from primitives.hashing import hash_left_right
from primitives.keys import Keypair, PrivKey, PubKey
from tree.merkle import MerklePath, compute_root

logger = logging.getLogger(__name__)


def stringify_big_ints(value: Any) -> Any:
    """JSON-ready copy of a witness: ints become decimal strings, paths become dicts"""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, MerklePath):
        return {
            'path_elements': stringify_big_ints(value.path_elements),
            'path_indices': stringify_big_ints(value.path_indices),
        }
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {k: stringify_big_ints(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [stringify_big_ints(v) for v in value]
    return value


def _open(leaf: int, path: MerklePath, root: int, index: int, arity: int, what: str):
    if path.leaf_index(arity) != index:
        raise StateRootMismatch(f"{what} path opens index {path.leaf_index(arity)}, expected {index}")
    if compute_root(leaf, path.path_elements, path.path_indices, arity) != root:
        raise StateRootMismatch(f"{what} path does not open the expected root")


class BatchUpdateStateTreeCircuit:
    """Replays one message batch and outputs the new state root"""

    name = "batchUpdateStateTree"

    def calculate_root(self, inputs: Dict[str, Any]) -> int:
        coordinator = Keypair(PrivKey(inputs['coordinator_private_key']))
        if coordinator.pub_key.as_field_elements() != list(inputs['coordinator_public_key']):
            raise StateRootMismatch("Coordinator private key does not match its public key")

        start = inputs['message_batch_start_index']
        message_count = inputs['message_tree_message_count']
        num_sign_ups = inputs['max_state_leaf_index']
        max_vote_option_index = inputs['max_vote_option_index']
        root = inputs['initial_state_root']

        for i in range(inputs['batch_size']):
            message_index = start + i
            if inputs['state_tree_root'][i] != root:
                raise StateRootMismatch(f"Step {i} starts from an unexpected state root")

            command, signature, reason = self._decrypt_step(inputs, i, message_index, message_count,
                                                            coordinator)

            state_index = route_state_index(command, num_sign_ups)
            if state_index != inputs['state_index'][i]:
                raise StateRootMismatch(f"Step {i} targets the wrong state leaf")

            state_leaf = StateLeaf.from_field_elements(inputs['state_leaf'][i])
            state_path = inputs['state_tree_path'][i]
            _open(state_leaf.hash(), state_path, root, state_index, 2, "State")

            if command is not None:
                result = process_command(
                    command, signature, state_leaf,
                    inputs['vote_option_credit'][i], inputs['vote_option_tree_path'][i],
                    num_sign_ups, max_vote_option_index)
            else:
                result = TransitionResult(state_leaf, inputs['vote_option_credit'][i], reason)

            root = compute_root(result.new_leaf.hash(), state_path.path_elements,
                                state_path.path_indices, 2)

        zeroth_leaf = StateLeaf.from_field_elements(inputs['zeroth_leaf'])
        zeroth_path = inputs['zeroth_leaf_path']
        _open(zeroth_leaf.hash(), zeroth_path, root, 0, 2, "Zeroth leaf")

        random_leaf = StateLeaf.from_field_elements(inputs['random_leaf'])
        return compute_root(random_leaf.hash(), zeroth_path.path_elements,
                            zeroth_path.path_indices, 2)

    def _decrypt_step(self, inputs: Dict[str, Any], i: int, message_index: int,
                      message_count: int, coordinator: Keypair):
        message_path = inputs['message_path'][i]

        if message_index >= message_count:
            if inputs['message'][i] is not None or inputs['command'][i] is not None:
                raise StateRootMismatch(f"Padding step {i} carries a message")
            _open(0, message_path, inputs['message_tree_root'], message_index, 2, "Message")
            return None, None, SkipReason.PADDING

        raw = inputs['message'][i]
        message = Message(iv=bytes.fromhex(raw['iv']), ciphertext=bytes.fromhex(raw['ciphertext']))
        if message.hash() != inputs['message_leaf'][i]:
            raise StateRootMismatch(f"Message leaf of step {i} does not match its ciphertext")
        _open(message.hash(), message_path, inputs['message_tree_root'], message_index, 2, "Message")

        ecdh_pub_key = PubKey.from_field_elements(inputs['ecdh_public_key'][i])
        shared_key = Keypair.gen_ecdh_shared_key(coordinator.priv_key, ecdh_pub_key)
        try:
            command, signature = message.decrypt(shared_key)
        except UndecryptableMessage as e:
            if inputs['command'][i] is not None:
                raise StateRootMismatch(f"Step {i} claims a command for an undecryptable message") from e
            return None, None, UndecryptableMessage.reason

        if inputs['command'][i] != command.as_field_elements():
            raise StateRootMismatch(f"Decrypted command of step {i} differs from the witness")
        if inputs['signature'][i] != signature.as_list():
            raise StateRootMismatch(f"Decrypted signature of step {i} differs from the witness")
        return command, signature, None


class QuadVoteTallyCircuit:
    """Accumulates one batch of state leaves onto the current results"""

    name = "quadVoteTally"

    def calculate_commitment(self, inputs: Dict[str, Any]) -> int:
        depth = inputs['vote_option_tree_depth']
        current_results: List[int] = list(inputs['current_results'])

        if gen_tally_result_commitment(current_results, inputs['current_results_salt'],
                                       depth) != inputs['current_results_commitment']:
            raise CommitmentMismatch("Current results do not open the current commitment")

        start = inputs['batch_start_index']
        leaves = [StateLeaf.from_field_elements(fields) for fields in inputs['state_leaves']]
        if len(leaves) != inputs['batch_size'] or len(inputs['vote_leaves']) != len(leaves):
            raise CommitmentMismatch("Batch size does not match the supplied leaves")

        subtree_root = self._subtree_root([leaf.hash() for leaf in leaves])
        if subtree_root != inputs['intermediate_state_root']:
            raise CommitmentMismatch("State leaves do not hash to the intermediate root")

        path = inputs['intermediate_path']
        if path.leaf_index(2) != inputs['intermediate_path_index']:
            raise CommitmentMismatch("Intermediate path opens the wrong subtree")
        if compute_root(subtree_root, path.path_elements, path.path_indices, 2) != inputs['full_state_root']:
            raise CommitmentMismatch("Intermediate root is not part of the state tree")

        new_results = list(current_results)
        for offset, (leaf, votes) in enumerate(zip(leaves, inputs['vote_leaves'])):
            # slot 0 holds the blank or random leaf and never votes
            if start + offset == 0:
                continue
            if gen_tally_tree(votes, depth).root != leaf.vote_option_tree_root:
                raise CommitmentMismatch(
                    f"Vote leaves of state index {start + offset} do not match its vote option root")
            for option, spent in enumerate(votes):
                new_results[option] += quadratic_vote_weight(spent)

        return gen_tally_result_commitment(new_results, inputs['new_results_salt'], depth)

    @staticmethod
    def _subtree_root(hashes: List[int]) -> int:
        nodes = list(hashes)
        while len(nodes) > 1:
            nodes = [hash_left_right(nodes[j], nodes[j + 1]) for j in range(0, len(nodes), 2)]
        return nodes[0]
