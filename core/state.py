"""
MACI State Engine
=================
Authoritative off-chain registry of participants and encrypted votes.

- State tree (binary) of hashed state leaves, slot 0 reserved for the blank leaf
- Message tree (binary) of hashed encrypted commands, append-only
- Per-participant vote-option quin trees of credits spent per option
- Batched state transitions producing the witness a circuit proves
- Batched quadratic tallies with salted result commitments
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from primitives.keys import Keypair, PubKey
from primitives.hashing import is_field_element
from tree.merkle import IncrementalMerkleTree, IncrementalQuinTree

from .domainobjs import Command, Message, PublishedMessage, StateLeaf
from .errors import (
    BatchOrderViolation,
    CommitmentMismatch,
    SkipReason,
    StateRootMismatch,
    UndecryptableMessage,
)
from .phases import Phase, PhaseTracker
from .tally import TallyResult, gen_tally_result_commitment, quadratic_vote_weight
from .transition import (
    BLANK_STATE_INDEX,
    MessageOutcome,
    TransitionResult,
    process_command,
    route_state_index,
)

logger = logging.getLogger(__name__)


@dataclass
class _BatchSimulation:
    """Result of replaying one message batch against a scratch copy of the state"""
    inputs: Dict[str, Any]
    state_tree: IncrementalMerkleTree
    state_leaves: List[StateLeaf]
    vote_option_trees: Dict[int, IncrementalQuinTree] = field(default_factory=dict)
    outcomes: List[MessageOutcome] = field(default_factory=list)

    @property
    def new_state_root(self) -> int:
        return self.state_tree.root


class MaciState:
    """Single-writer election state. Callers serialize mutations."""

    def __init__(self, coordinator: Keypair, state_tree_depth: int, message_tree_depth: int,
                 vote_option_tree_depth: int, max_vote_option_index: int,
                 message_batch_size: int = 4, tally_batch_size: int = 4):
        if coordinator is None:
            raise ValueError("A coordinator keypair is required")
        if not 0 <= max_vote_option_index < 5 ** vote_option_tree_depth:
            raise ValueError(
                f"max_vote_option_index {max_vote_option_index} does not fit a vote option "
                f"tree of depth {vote_option_tree_depth}")

        self.coordinator = coordinator
        self.state_tree_depth = state_tree_depth
        self.message_tree_depth = message_tree_depth
        self.vote_option_tree_depth = vote_option_tree_depth
        self.max_vote_option_index = max_vote_option_index
        self.message_batch_size = message_batch_size
        self.tally_batch_size = tally_batch_size

        # Fully populated with zeros so every option has a path
        self._empty_vote_option_tree = IncrementalQuinTree(vote_option_tree_depth, 0)
        for _ in range(self._empty_vote_option_tree.capacity):
            self._empty_vote_option_tree.insert(0)
        self.empty_vote_option_tree_root = self._empty_vote_option_tree.root

        self.blank_leaf = StateLeaf.gen_blank_leaf(self.empty_vote_option_tree_root)
        self.hashed_blank_state_leaf = self.blank_leaf.hash()

        self.state_tree = IncrementalMerkleTree(state_tree_depth, self.hashed_blank_state_leaf)
        self.state_tree.insert(self.hashed_blank_state_leaf)
        self.state_leaves: List[StateLeaf] = [self.blank_leaf]
        self.vote_option_trees: List[Optional[IncrementalQuinTree]] = [None]

        self.message_tree = IncrementalMerkleTree(message_tree_depth, 0)
        self.messages: List[PublishedMessage] = []

        self.phase = PhaseTracker()
        self.num_processed_messages = 0
        self.batch_outcomes: List[List[MessageOutcome]] = []

        self.num_tallied_leaves = 0
        self.current_results: List[int] = [0] * self._empty_vote_option_tree.capacity
        self.current_results_salt = 0
        self.current_results_commitment = gen_tally_result_commitment(
            self.current_results, 0, vote_option_tree_depth)
        self.tally_results: List[TallyResult] = []

        logger.debug(
            f"MaciState created: state depth {state_tree_depth}, message depth "
            f"{message_tree_depth}, vote option depth {vote_option_tree_depth}")

    @classmethod
    def from_config(cls, config, coordinator: Optional[Keypair] = None) -> 'MaciState':
        """Build from a config.MaciConfig; the coordinator key falls back to the configured one"""
        if coordinator is None:
            coordinator = config.coordinator_keypair()
        return cls(
            coordinator=coordinator,
            state_tree_depth=config.tree.state_tree_depth,
            message_tree_depth=config.tree.message_tree_depth,
            vote_option_tree_depth=config.tree.vote_option_tree_depth,
            max_vote_option_index=config.max_vote_option_index,
            message_batch_size=config.message_batch_size,
            tally_batch_size=config.tally_batch_size,
        )

    # ========================================================================
    # REGISTRY AND MESSAGE LOG
    # ========================================================================

    @property
    def num_sign_ups(self) -> int:
        return len(self.state_leaves) - 1

    @property
    def num_messages(self) -> int:
        return len(self.messages)

    @property
    def current_phase(self) -> Phase:
        return self.phase.phase

    def gen_state_root(self) -> int:
        return self.state_tree.root

    def gen_message_root(self) -> int:
        return self.message_tree.root

    def sign_up(self, pub_key: PubKey, initial_voice_credit_balance: int) -> int:
        self.phase.require(Phase.SIGN_UP, operation="sign_up")
        if not pub_key.is_valid():
            raise ValueError("Cannot register an invalid public key")
        if not is_field_element(initial_voice_credit_balance):
            raise ValueError("Voice credit balance must be a field element")

        leaf = StateLeaf(
            pub_key=pub_key,
            vote_option_tree_root=self.empty_vote_option_tree_root,
            voice_credit_balance=initial_voice_credit_balance,
            nonce=0,
        )
        index = self.state_tree.insert(leaf.hash())
        self.state_leaves.append(leaf)
        self.vote_option_trees.append(self._empty_vote_option_tree)

        logger.info(f"Signed up participant at state index {index}")
        return index

    def publish_message(self, message: Message, enc_pub_key: PubKey) -> int:
        self.phase.require(Phase.VOTING, operation="publish_message")
        if not enc_pub_key.is_valid():
            raise ValueError("Ephemeral public key is not a point on the curve")

        index = self.message_tree.insert(message.hash())
        self.messages.append(PublishedMessage(message, enc_pub_key))

        logger.debug(f"Published message {index}")
        return index

    def advance_phase(self, target: Phase) -> Phase:
        target = Phase(target)
        if target == Phase.TALLYING:
            return self.phase.advance(
                target, self.is_processing_complete,
                f"{self.num_processed_messages} of {self.num_messages} messages processed")
        if target == Phase.FINALIZED:
            return self.phase.advance(
                target, self.is_tally_complete,
                f"{self.num_tallied_leaves} of {self.num_sign_ups + 1} state leaves tallied")
        return self.phase.advance(target)

    def is_processing_complete(self) -> bool:
        return self.num_processed_messages >= self.num_messages

    def is_tally_complete(self) -> bool:
        return self.num_tallied_leaves >= self.num_sign_ups + 1

    def copy(self) -> 'MaciState':
        """Independent snapshot; vote option trees are copy-on-write and shared"""
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone.state_tree = self.state_tree.copy()
        clone.state_leaves = list(self.state_leaves)
        clone.vote_option_trees = list(self.vote_option_trees)
        clone.message_tree = self.message_tree.copy()
        clone.messages = list(self.messages)
        clone.phase = self.phase.copy()
        clone.batch_outcomes = [list(outcomes) for outcomes in self.batch_outcomes]
        clone.current_results = list(self.current_results)
        clone.tally_results = list(self.tally_results)
        return clone

    # ========================================================================
    # BATCH STATE TRANSITIONS
    # ========================================================================

    def _vote_option_tree(self, state_index: int,
                          overrides: Dict[int, IncrementalQuinTree]) -> IncrementalQuinTree:
        if state_index in overrides:
            return overrides[state_index]
        return self.vote_option_trees[state_index]

    def _simulate_batch(self, start: int, batch_size: int, random_leaf: StateLeaf) -> _BatchSimulation:
        if batch_size < 1:
            raise ValueError("Batch size must be positive")
        if not 0 <= start < self.num_messages:
            raise ValueError(f"Batch start {start} outside message log of {self.num_messages}")
        if start + batch_size > self.message_tree.capacity:
            raise ValueError("Batch extends past the message tree capacity")

        state_tree = self.state_tree.copy()
        leaves = list(self.state_leaves)
        overrides: Dict[int, IncrementalQuinTree] = {}
        outcomes: List[MessageOutcome] = []
        num_sign_ups = self.num_sign_ups

        steps: Dict[str, List[Any]] = {
            'state_tree_root': [],
            'state_root_after': [],
            'message': [],
            'message_leaf': [],
            'message_path': [],
            'ecdh_public_key': [],
            'command': [],
            'signature': [],
            'state_index': [],
            'state_leaf': [],
            'state_tree_path': [],
            'vote_option_index': [],
            'vote_option_credit': [],
            'vote_option_tree_path': [],
        }

        for message_index in range(start, start + batch_size):
            command: Optional[Command] = None
            signature = None
            reason: Optional[SkipReason] = None

            if message_index < self.num_messages:
                published = self.messages[message_index]
                message_fields = {
                    'iv': published.message.iv.hex(),
                    'ciphertext': published.message.ciphertext.hex(),
                }
                message_leaf = published.message.hash()
                message_path = self.message_tree.gen_merkle_path(message_index)
                ecdh_pub_key = published.enc_pub_key

                shared_key = Keypair.gen_ecdh_shared_key(self.coordinator.priv_key, ecdh_pub_key)
                try:
                    command, signature = published.message.decrypt(shared_key)
                except UndecryptableMessage as e:
                    logger.warning(f"Message {message_index} could not be decrypted: {e}")
                    reason = UndecryptableMessage.reason
            else:
                message_fields = None
                message_leaf = self.message_tree.zero_value
                message_path = self.message_tree.gen_empty_slot_path(message_index)
                ecdh_pub_key = PubKey.blank()
                reason = SkipReason.PADDING

            state_index = route_state_index(command, num_sign_ups)
            state_leaf = leaves[state_index]

            if (command is not None and state_index != BLANK_STATE_INDEX
                    and command.vote_option_index <= self.max_vote_option_index):
                vote_option_tree = self._vote_option_tree(state_index, overrides)
                vote_option_index = command.vote_option_index
            else:
                vote_option_tree = self._empty_vote_option_tree
                vote_option_index = 0
            vote_option_credit = vote_option_tree.node(0, vote_option_index)
            vote_option_path = vote_option_tree.gen_merkle_path(vote_option_index)

            steps['state_tree_root'].append(state_tree.root)
            steps['state_tree_path'].append(state_tree.gen_merkle_path(state_index))

            if command is not None:
                result = process_command(
                    command, signature, state_leaf, vote_option_credit, vote_option_path,
                    num_sign_ups, self.max_vote_option_index)
            else:
                result = TransitionResult(state_leaf, vote_option_credit, reason)

            if result.applied:
                updated = vote_option_tree.copy()
                updated.update(vote_option_index, result.new_vote_option_credit)
                overrides[state_index] = updated
                leaves[state_index] = result.new_leaf

            state_tree.update(state_index, result.new_leaf.hash())
            outcomes.append(MessageOutcome(message_index, state_index, result.reason))

            steps['state_root_after'].append(state_tree.root)
            steps['message'].append(message_fields)
            steps['message_leaf'].append(message_leaf)
            steps['message_path'].append(message_path)
            steps['ecdh_public_key'].append(ecdh_pub_key.as_field_elements())
            steps['command'].append(command.as_field_elements() if command is not None else None)
            steps['signature'].append(signature.as_list() if signature is not None else None)
            steps['state_index'].append(state_index)
            steps['state_leaf'].append(state_leaf.as_field_elements())
            steps['vote_option_index'].append(vote_option_index)
            steps['vote_option_credit'].append(vote_option_credit)
            steps['vote_option_tree_path'].append(vote_option_path)

        zeroth_leaf = leaves[BLANK_STATE_INDEX]
        zeroth_leaf_path = state_tree.gen_merkle_path(BLANK_STATE_INDEX)
        state_tree.update(BLANK_STATE_INDEX, random_leaf.hash())
        leaves[BLANK_STATE_INDEX] = random_leaf

        inputs: Dict[str, Any] = {
            'coordinator_public_key': self.coordinator.pub_key.as_field_elements(),
            'coordinator_private_key': self.coordinator.priv_key.raw,
            'message_tree_root': self.message_tree.root,
            'message_tree_depth': self.message_tree_depth,
            'message_tree_message_count': self.num_messages,
            'message_batch_start_index': start,
            'batch_size': batch_size,
            'state_tree_depth': self.state_tree_depth,
            'vote_option_tree_depth': self.vote_option_tree_depth,
            'max_state_leaf_index': num_sign_ups,
            'max_vote_option_index': self.max_vote_option_index,
            'initial_state_root': self.state_tree.root,
            **steps,
            'zeroth_leaf': zeroth_leaf.as_field_elements(),
            'zeroth_leaf_path': zeroth_leaf_path,
            'random_leaf': random_leaf.as_field_elements(),
            'new_state_root': state_tree.root,
        }

        return _BatchSimulation(inputs, state_tree, leaves, overrides, outcomes)

    def gen_batch_update_circuit_inputs(self, start: int, batch_size: int,
                                        random_leaf: StateLeaf) -> Dict[str, Any]:
        """Witness for messages [start, start + batch_size); does not mutate state"""
        self.phase.require(Phase.PROCESSING, operation="gen_batch_update_circuit_inputs")
        return self._simulate_batch(start, batch_size, random_leaf).inputs

    def process_batch(self, start: int, batch_size: int, random_leaf: StateLeaf,
                      circuit_root: Optional[int] = None) -> int:
        """
        Apply messages [start, start + batch_size) and return the new state
        root. The batch must begin where the previous one ended. When the
        circuit's root is supplied it must equal the engine's, otherwise
        nothing is committed.
        """
        self.phase.require(Phase.PROCESSING, operation="process_batch")
        if start != self.num_processed_messages:
            raise BatchOrderViolation(
                f"Expected batch starting at {self.num_processed_messages}, got {start}")

        simulation = self._simulate_batch(start, batch_size, random_leaf)
        if circuit_root is not None and circuit_root != simulation.new_state_root:
            logger.error(f"Circuit root disagrees with engine root for batch at {start}")
            raise StateRootMismatch(
                f"Circuit root {circuit_root} != engine root {simulation.new_state_root}")

        self.state_tree = simulation.state_tree
        self.state_leaves = simulation.state_leaves
        for state_index, tree in simulation.vote_option_trees.items():
            self.vote_option_trees[state_index] = tree
        self.num_processed_messages = min(start + batch_size, self.num_messages)
        self.batch_outcomes.append(simulation.outcomes)

        applied = sum(1 for outcome in simulation.outcomes if outcome.applied)
        logger.info(
            f"Processed message batch at {start}: {applied} applied, "
            f"{len(simulation.outcomes) - applied} skipped")
        for outcome in simulation.outcomes:
            if not outcome.applied and outcome.reason != SkipReason.PADDING:
                logger.debug(f"Message {outcome.message_index}: {outcome.status}")

        return simulation.new_state_root

    # ========================================================================
    # TALLYING
    # ========================================================================

    def _vote_leaves(self, state_index: int) -> List[int]:
        if BLANK_STATE_INDEX < state_index < len(self.state_leaves):
            return self.vote_option_trees[state_index].leaves
        return [0] * self._empty_vote_option_tree.capacity

    def _cumulative(self, end: int) -> List[List[int]]:
        """Per-option quadratic weights and credits over state indices below end"""
        tally = [0] * self._empty_vote_option_tree.capacity
        credits = [0] * self._empty_vote_option_tree.capacity
        for state_index in range(1, min(end, len(self.state_leaves))):
            for option, spent in enumerate(self._vote_leaves(state_index)):
                tally[option] += quadratic_vote_weight(spent)
                credits[option] += spent
        return [tally, credits]

    def compute_cumulative_vote_tally(self, end: int) -> List[int]:
        return self._cumulative(end)[0]

    def compute_batch_tally(self, start: int, batch_size: int) -> List[int]:
        """Tally over every state index below start + batch_size"""
        self._check_tally_batch(start, batch_size)
        return self.compute_cumulative_vote_tally(start + batch_size)

    def _check_tally_batch(self, start: int, batch_size: int):
        if batch_size < 1 or batch_size & (batch_size - 1):
            raise ValueError("Tally batch size must be a power of two")
        if batch_size > self.state_tree.capacity:
            raise ValueError("Tally batch larger than the state tree")
        if start % batch_size:
            raise ValueError(f"Tally batch start {start} is not a multiple of {batch_size}")
        if not 0 <= start < self.state_tree.capacity:
            raise ValueError(f"Tally batch start {start} outside the state tree")

    def gen_tally_circuit_inputs(self, start: int, batch_size: int, current_salt: int,
                                 new_salt: int) -> Dict[str, Any]:
        self.phase.require(Phase.TALLYING, operation="gen_tally_circuit_inputs")
        self._check_tally_batch(start, batch_size)

        level = batch_size.bit_length() - 1
        intermediate_index = start // batch_size

        state_leaves = []
        vote_leaves = []
        for state_index in range(start, start + batch_size):
            if state_index < len(self.state_leaves):
                leaf = self.state_leaves[state_index]
            else:
                leaf = self.blank_leaf
            state_leaves.append(leaf.as_field_elements())
            vote_leaves.append(self._vote_leaves(state_index))

        current_results = self.compute_cumulative_vote_tally(start)
        new_results, new_credits = self._cumulative(start + batch_size)

        return {
            'full_state_root': self.state_tree.root,
            'state_tree_depth': self.state_tree_depth,
            'vote_option_tree_depth': self.vote_option_tree_depth,
            'batch_start_index': start,
            'batch_size': batch_size,
            'intermediate_path_index': intermediate_index,
            'intermediate_state_root': self.state_tree.node(level, intermediate_index),
            'intermediate_path': self.state_tree.gen_merkle_subpath(level, intermediate_index),
            'state_leaves': state_leaves,
            'vote_leaves': vote_leaves,
            'current_results': current_results,
            'current_results_salt': current_salt,
            'current_results_commitment': gen_tally_result_commitment(
                current_results, current_salt, self.vote_option_tree_depth),
            'new_results': new_results,
            'new_per_option_credits': new_credits,
            'new_results_salt': new_salt,
            'new_results_commitment': gen_tally_result_commitment(
                new_results, new_salt, self.vote_option_tree_depth),
        }

    def apply_tally_batch(self, start: int, batch_size: int, new_salt: int,
                          circuit_commitment: Optional[int] = None) -> TallyResult:
        self.phase.require(Phase.TALLYING, operation="apply_tally_batch")
        if start != self.num_tallied_leaves:
            raise BatchOrderViolation(
                f"Expected tally batch starting at {self.num_tallied_leaves}, got {start}")

        inputs = self.gen_tally_circuit_inputs(start, batch_size, self.current_results_salt, new_salt)
        if inputs['current_results_commitment'] != self.current_results_commitment:
            raise CommitmentMismatch("Recomputed current results do not match the stored commitment")
        if circuit_commitment is not None and circuit_commitment != inputs['new_results_commitment']:
            logger.error(f"Circuit commitment disagrees with engine for tally batch at {start}")
            raise CommitmentMismatch(
                f"Circuit commitment {circuit_commitment} != engine commitment "
                f"{inputs['new_results_commitment']}")

        self.current_results = inputs['new_results']
        self.current_results_salt = new_salt
        self.current_results_commitment = inputs['new_results_commitment']
        self.num_tallied_leaves = start + batch_size

        result = TallyResult(
            batch_index=inputs['intermediate_path_index'],
            tally=list(inputs['new_results']),
            salt=new_salt,
            commitment=inputs['new_results_commitment'],
            intermediate_state_root=inputs['intermediate_state_root'],
            processed_up_to=self.num_tallied_leaves,
            per_option_credits=list(inputs['new_per_option_credits']),
        )
        self.tally_results.append(result)

        logger.info(f"Tallied state leaves {start}..{start + batch_size - 1}")
        return result
