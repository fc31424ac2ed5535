"""State-transition and tallying engine."""

from .domainobjs import (
    Command,
    Message,
    PublishedMessage,
    StateLeaf,
)
from .errors import (
    SkipReason,
    MaciError,
    CommandRejected,
    StateIndexOutOfRange,
    InvalidPublicKey,
    InvalidSignature,
    NonceMismatch,
    VoteOptionOutOfRange,
    InsufficientCredits,
    UndecryptableMessage,
    IntegrityError,
    StateRootMismatch,
    CommitmentMismatch,
    PhaseViolation,
    BatchOrderViolation,
)
from .phases import Phase, PhaseTracker, PhaseSchedule, ManualClock
from .transition import (
    MessageOutcome,
    TransitionResult,
    credit_cost,
    process_command,
    route_state_index,
    validate_command,
)
from .tally import (
    TallyResult,
    gen_tally_tree,
    gen_tally_result_commitment,
    gen_aggregated_tally_tree,
    quadratic_vote_weight,
)
from .verifier import verify_tally_result, verify_tally_batch
from .state import MaciState

__all__ = [
    # Domain objects
    'Command',
    'Message',
    'PublishedMessage',
    'StateLeaf',

    # Errors
    'SkipReason',
    'MaciError',
    'CommandRejected',
    'StateIndexOutOfRange',
    'InvalidPublicKey',
    'InvalidSignature',
    'NonceMismatch',
    'VoteOptionOutOfRange',
    'InsufficientCredits',
    'UndecryptableMessage',
    'IntegrityError',
    'StateRootMismatch',
    'CommitmentMismatch',
    'PhaseViolation',
    'BatchOrderViolation',

    # Phases
    'Phase',
    'PhaseTracker',
    'PhaseSchedule',
    'ManualClock',

    # Transitions
    'MessageOutcome',
    'TransitionResult',
    'credit_cost',
    'process_command',
    'route_state_index',
    'validate_command',

    # Tally
    'TallyResult',
    'gen_tally_tree',
    'gen_tally_result_commitment',
    'gen_aggregated_tally_tree',
    'quadratic_vote_weight',
    'verify_tally_result',
    'verify_tally_batch',

    # Engine
    'MaciState',
]
