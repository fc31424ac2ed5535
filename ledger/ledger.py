"""
In-Memory Ledger
================
Reference of the contract the coordinator submits to. It keeps its own
state and message trees, gates sign-up and voting on a clock, and only
accepts batch results whose proofs verify against its own public signals.
"""

import logging
from typing import Any, Callable, Dict, List, Sequence

from core.domainobjs import Message, StateLeaf
from core.errors import BatchOrderViolation, MaciError, PhaseViolation
from core.phases import Phase, PhaseSchedule
from core.tally import gen_tally_result_commitment
from core.verifier import verify_tally_result
from primitives.keys import PubKey
from tree.merkle import IncrementalMerkleTree, IncrementalQuinTree
from zk.backend import BATCH_UST_CIRCUIT, QVT_CIRCUIT, ProofBackend
from zk.public_signals import gen_batch_ust_public_signals, gen_qvt_public_signals

logger = logging.getLogger(__name__)


class ProofRejected(MaciError):
    """Submitted proof does not verify against the ledger's public signals"""
    pass


class InMemoryLedger:
    """Single-writer contract mirror; callers serialize submissions"""

    def __init__(self, coordinator_pub_key: PubKey, state_tree_depth: int,
                 message_tree_depth: int, vote_option_tree_depth: int,
                 max_vote_option_index: int, message_batch_size: int, tally_batch_size: int,
                 schedule: PhaseSchedule, clock: Callable[[], float], backend: ProofBackend):
        self.coordinator_pub_key = coordinator_pub_key
        self.state_tree_depth = state_tree_depth
        self.vote_option_tree_depth = vote_option_tree_depth
        self.max_vote_option_index = max_vote_option_index
        self.message_batch_size = message_batch_size
        self.tally_batch_size = tally_batch_size
        self.schedule = schedule
        self.clock = clock
        self.backend = backend

        self.empty_vote_option_tree_root = IncrementalQuinTree(vote_option_tree_depth, 0).root
        self.hashed_blank_state_leaf = StateLeaf.gen_blank_leaf(self.empty_vote_option_tree_root).hash()

        self.state_tree = IncrementalMerkleTree(state_tree_depth, self.hashed_blank_state_leaf)
        self.state_tree.insert(self.hashed_blank_state_leaf)
        self.message_tree = IncrementalMerkleTree(message_tree_depth, 0)

        self.num_sign_ups = 0
        self.num_messages = 0
        self.post_sign_up_state_root = None
        self.current_message_batch_index = 0
        self.current_qvt_batch_num = 0
        self.current_results_commitment = gen_tally_result_commitment(
            [0] * 5 ** vote_option_tree_depth, 0, vote_option_tree_depth)

        self.events: List[Dict[str, Any]] = []

    @classmethod
    def from_config(cls, config, coordinator_pub_key: PubKey, schedule: PhaseSchedule,
                    clock: Callable[[], float], backend: ProofBackend) -> 'InMemoryLedger':
        return cls(
            coordinator_pub_key=coordinator_pub_key,
            state_tree_depth=config.tree.state_tree_depth,
            message_tree_depth=config.tree.message_tree_depth,
            vote_option_tree_depth=config.tree.vote_option_tree_depth,
            max_vote_option_index=config.max_vote_option_index,
            message_batch_size=config.message_batch_size,
            tally_batch_size=config.tally_batch_size,
            schedule=schedule,
            clock=clock,
            backend=backend,
        )

    # ========================================================================
    # TIME-GATED ENTRY POINTS
    # ========================================================================

    def _clock_phase(self) -> Phase:
        return self.schedule.phase_at(self.clock())

    def _require_clock_phase(self, phase: Phase, operation: str):
        current = self._clock_phase()
        if current != phase:
            raise PhaseViolation(
                f"{operation} is only valid during {phase.name}; clock says {current.name}")

    def sign_up(self, pub_key: PubKey, initial_voice_credit_balance: int) -> int:
        self._require_clock_phase(Phase.SIGN_UP, "sign_up")
        if not pub_key.is_valid():
            raise ValueError("Cannot register an invalid public key")

        leaf = StateLeaf(pub_key, self.empty_vote_option_tree_root, initial_voice_credit_balance, 0)
        index = self.state_tree.insert(leaf.hash())
        self.num_sign_ups += 1
        self.events.append({'event': 'SignUp', 'state_index': index})
        return index

    def publish_message(self, message: Message, enc_pub_key: PubKey) -> int:
        self._require_clock_phase(Phase.VOTING, "publish_message")
        if not enc_pub_key.is_valid():
            raise ValueError("Ephemeral public key is not a point on the curve")

        index = self.message_tree.insert(message.hash())
        self.num_messages += 1
        self.events.append({'event': 'PublishMessage', 'message_index': index})
        return index

    def get_state_tree_root(self) -> int:
        if self.post_sign_up_state_root is not None:
            return self.post_sign_up_state_root
        return self.state_tree.root

    def get_message_tree_root(self) -> int:
        return self.message_tree.root

    def has_unprocessed_messages(self) -> bool:
        return self.current_message_batch_index < self.num_messages

    def has_untallied_state_leaves(self) -> bool:
        return self.current_qvt_batch_num * self.tally_batch_size < self.num_sign_ups + 1

    # ========================================================================
    # BATCH STATE UPDATES
    # ========================================================================

    def _require_processing_open(self, operation: str):
        if self._clock_phase() != Phase.PROCESSING:
            raise PhaseViolation(f"{operation} is only valid after the voting deadline")

    def gen_batch_ust_public_signals(self, new_state_root: int,
                                     ecdh_pub_keys: Sequence[PubKey]) -> List[int]:
        return gen_batch_ust_public_signals(
            new_state_root=new_state_root,
            coordinator_pub_key=self.coordinator_pub_key,
            message_tree_root=self.message_tree.root,
            message_batch_start_index=self.current_message_batch_index,
            initial_state_root=self.get_state_tree_root(),
            max_state_leaf_index=self.num_sign_ups,
            max_vote_option_index=self.max_vote_option_index,
            ecdh_pub_keys=ecdh_pub_keys,
        )

    def batch_process_message(self, new_state_root: int, ecdh_pub_keys: Sequence[PubKey],
                              proof: Dict[str, Any]):
        self._require_processing_open("batch_process_message")
        if not self.has_unprocessed_messages():
            raise BatchOrderViolation("All messages have already been processed")
        if len(ecdh_pub_keys) != self.message_batch_size:
            raise ValueError(
                f"Expected {self.message_batch_size} ephemeral keys, got {len(ecdh_pub_keys)}")

        signals = self.gen_batch_ust_public_signals(new_state_root, ecdh_pub_keys)
        vkey = self.backend.verifying_key(BATCH_UST_CIRCUIT)
        if not self.backend.verify(vkey, proof, signals):
            logger.warning(f"Rejected batch proof at message index {self.current_message_batch_index}")
            raise ProofRejected("Batch update proof is invalid")

        self.post_sign_up_state_root = new_state_root
        self.current_message_batch_index = min(
            self.current_message_batch_index + self.message_batch_size, self.num_messages)
        self.events.append({'event': 'BatchProcessed', 'state_root': new_state_root})
        logger.info(f"Ledger accepted batch, {self.current_message_batch_index} messages processed")

    # ========================================================================
    # TALLY
    # ========================================================================

    def gen_qvt_public_signals(self, intermediate_state_root: int,
                               new_results_commitment: int) -> List[int]:
        return gen_qvt_public_signals(
            new_results_commitment=new_results_commitment,
            full_state_root=self.get_state_tree_root(),
            intermediate_path_index=self.current_qvt_batch_num,
            intermediate_state_root=intermediate_state_root,
            current_results_commitment=self.current_results_commitment,
        )

    def prove_vote_tally_batch(self, intermediate_state_root: int, new_results_commitment: int,
                               proof: Dict[str, Any]):
        self._require_processing_open("prove_vote_tally_batch")
        if self.has_unprocessed_messages():
            raise PhaseViolation("Tallying requires every message to be processed")
        if not self.has_untallied_state_leaves():
            raise BatchOrderViolation("All state leaves have already been tallied")

        signals = self.gen_qvt_public_signals(intermediate_state_root, new_results_commitment)
        vkey = self.backend.verifying_key(QVT_CIRCUIT)
        if not self.backend.verify(vkey, proof, signals):
            logger.warning(f"Rejected tally proof for batch {self.current_qvt_batch_num}")
            raise ProofRejected("Vote tally proof is invalid")

        self.current_results_commitment = new_results_commitment
        self.current_qvt_batch_num += 1
        self.events.append({'event': 'TallyBatchProved', 'commitment': new_results_commitment})
        logger.info(f"Ledger accepted tally batch {self.current_qvt_batch_num - 1}")

    def verify_tally_result(self, depth: int, index: int, leaf: int,
                            path_elements: Sequence[Sequence[int]], salt: int) -> bool:
        return verify_tally_result(depth, index, leaf, path_elements, salt,
                                   self.current_results_commitment)
