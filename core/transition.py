"""
State transition function shared by the batch engine and the reference
circuit. Both sides call process_command, so an off-chain root and a
witness-derived root can only disagree if the witness itself is wrong.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from primitives.keys import Signature
from tree.merkle import MerklePath, compute_root

from .domainobjs import Command, StateLeaf
from .errors import (
    CommandRejected,
    InsufficientCredits,
    InvalidPublicKey,
    InvalidSignature,
    NonceMismatch,
    SkipReason,
    StateIndexOutOfRange,
    StateRootMismatch,
    VoteOptionOutOfRange,
)

logger = logging.getLogger(__name__)

VOTE_OPTION_TREE_ARITY = 5
BLANK_STATE_INDEX = 0


@dataclass(frozen=True)
class MessageOutcome:
    """Per-message result tag: applied, or skipped with a reason"""
    message_index: int
    state_index: int
    reason: Optional[SkipReason] = None

    @property
    def applied(self) -> bool:
        return self.reason is None

    @property
    def status(self) -> str:
        if self.applied:
            return "applied"
        return f"skipped: {self.reason.value}"


@dataclass(frozen=True)
class TransitionResult:
    new_leaf: StateLeaf
    new_vote_option_credit: int
    reason: Optional[SkipReason] = None

    @property
    def applied(self) -> bool:
        return self.reason is None


def credit_cost(vote_weight: int) -> int:
    return vote_weight * vote_weight


def route_state_index(command: Optional[Command], num_sign_ups: int) -> int:
    """Leaf rewritten by a message: its own target if in range, else the blank slot"""
    if command is None:
        return BLANK_STATE_INDEX
    if 1 <= command.state_index <= num_sign_ups:
        return command.state_index
    return BLANK_STATE_INDEX


def validate_command(command: Command, signature: Signature, state_leaf: StateLeaf,
                     num_sign_ups: int, max_vote_option_index: int):
    """Raise the CommandRejected subclass for the first failed check"""
    if not 1 <= command.state_index <= num_sign_ups:
        raise StateIndexOutOfRange(
            f"State index {command.state_index} not in 1..{num_sign_ups}")

    if not command.new_pub_key.is_valid():
        raise InvalidPublicKey("New public key is not a point on the curve")

    if not command.verify_signature(signature, state_leaf.pub_key):
        raise InvalidSignature(
            f"Signature does not match the key registered at index {command.state_index}")

    if command.nonce != state_leaf.nonce + 1:
        raise NonceMismatch(
            f"Nonce {command.nonce} != expected {state_leaf.nonce + 1}")

    if command.vote_option_index > max_vote_option_index:
        raise VoteOptionOutOfRange(
            f"Vote option {command.vote_option_index} > {max_vote_option_index}")

    if credit_cost(command.vote_weight) > state_leaf.voice_credit_balance:
        raise InsufficientCredits(
            f"Weight {command.vote_weight} costs {credit_cost(command.vote_weight)} credits, "
            f"balance is {state_leaf.voice_credit_balance}")


def process_command(command: Command, signature: Signature, state_leaf: StateLeaf,
                    vote_option_credit: int, vote_option_path: MerklePath,
                    num_sign_ups: int, max_vote_option_index: int) -> TransitionResult:
    """
    Apply one decrypted command to the leaf it targets.

    Rejected commands return the leaf unchanged with the skip reason. For an
    applied command the vote-option path must open the leaf's vote-option
    root at the chosen option; otherwise StateRootMismatch is raised.
    """
    try:
        validate_command(command, signature, state_leaf, num_sign_ups, max_vote_option_index)
    except CommandRejected as e:
        logger.debug(f"Command for state index {command.state_index} rejected: {e}")
        return TransitionResult(state_leaf, vote_option_credit, e.reason)

    if vote_option_path.leaf_index(VOTE_OPTION_TREE_ARITY) != command.vote_option_index:
        raise StateRootMismatch(
            f"Vote option path opens option {vote_option_path.leaf_index(VOTE_OPTION_TREE_ARITY)}, "
            f"command targets {command.vote_option_index}")

    opened_root = compute_root(vote_option_credit, vote_option_path.path_elements,
                               vote_option_path.path_indices, VOTE_OPTION_TREE_ARITY)
    if opened_root != state_leaf.vote_option_tree_root:
        raise StateRootMismatch("Vote option path does not open the leaf's vote option root")

    cost = credit_cost(command.vote_weight)
    new_credit = vote_option_credit + cost
    new_root = compute_root(new_credit, vote_option_path.path_elements,
                            vote_option_path.path_indices, VOTE_OPTION_TREE_ARITY)

    new_leaf = StateLeaf(
        pub_key=command.new_pub_key,
        vote_option_tree_root=new_root,
        voice_credit_balance=state_leaf.voice_credit_balance - cost,
        nonce=command.nonce,
    )
    return TransitionResult(new_leaf, new_credit)
