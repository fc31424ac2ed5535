"""Error kinds raised by the state-transition and tallying engine."""

from enum import Enum


class SkipReason(Enum):
    """Why a message left the state untouched"""
    STATE_INDEX_OUT_OF_RANGE = "state_index_out_of_range"
    INVALID_PUBLIC_KEY = "invalid_public_key"
    INVALID_SIGNATURE = "invalid_signature"
    NONCE_MISMATCH = "nonce_mismatch"
    VOTE_OPTION_OUT_OF_RANGE = "vote_option_out_of_range"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    UNDECRYPTABLE = "undecryptable"
    PADDING = "padding"


class MaciError(Exception):
    """Base exception for engine operations"""
    pass


# ----------------------------------------------------------------------------
# Per-message rejections: caught by the batch engine, never abort a batch
# ----------------------------------------------------------------------------


class CommandRejected(MaciError):
    reason: SkipReason


class StateIndexOutOfRange(CommandRejected):
    reason = SkipReason.STATE_INDEX_OUT_OF_RANGE


class InvalidPublicKey(CommandRejected):
    reason = SkipReason.INVALID_PUBLIC_KEY


class InvalidSignature(CommandRejected):
    reason = SkipReason.INVALID_SIGNATURE


class NonceMismatch(CommandRejected):
    reason = SkipReason.NONCE_MISMATCH


class VoteOptionOutOfRange(CommandRejected):
    reason = SkipReason.VOTE_OPTION_OUT_OF_RANGE


class InsufficientCredits(CommandRejected):
    reason = SkipReason.INSUFFICIENT_CREDITS


class UndecryptableMessage(CommandRejected):
    reason = SkipReason.UNDECRYPTABLE


# ----------------------------------------------------------------------------
# Fatal conditions
# ----------------------------------------------------------------------------


class IntegrityError(MaciError):
    """Engine and circuit disagree; indicates a protocol or implementation bug"""
    pass


class StateRootMismatch(IntegrityError):
    pass


class CommitmentMismatch(IntegrityError):
    pass


class PhaseViolation(MaciError):
    """Operation attempted outside its protocol phase"""
    pass


class BatchOrderViolation(MaciError):
    """Batch applied out of sequence"""
    pass
