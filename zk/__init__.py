"""Reference circuits, public signal layouts and proof backends."""

from .backend import (
    ProofArtifact,
    ProofBackend,
    ReferenceBackend,
    SnarkjsBackend,
    create_backend,
    BATCH_UST_CIRCUIT,
    QVT_CIRCUIT,

    # Exceptions
    ZKError,
    UnknownCircuit,
    ProofGenerationError,
)
from .circuits import (
    BatchUpdateStateTreeCircuit,
    QuadVoteTallyCircuit,
    stringify_big_ints,
)
from .public_signals import (
    gen_batch_ust_public_signals,
    batch_ust_public_signals_from_inputs,
    gen_qvt_public_signals,
    qvt_public_signals_from_inputs,
)

__all__ = [
    # Backends
    'ProofArtifact',
    'ProofBackend',
    'ReferenceBackend',
    'SnarkjsBackend',
    'create_backend',
    'BATCH_UST_CIRCUIT',
    'QVT_CIRCUIT',
    'ZKError',
    'UnknownCircuit',
    'ProofGenerationError',

    # Circuits
    'BatchUpdateStateTreeCircuit',
    'QuadVoteTallyCircuit',
    'stringify_big_ints',

    # Public signals
    'gen_batch_ust_public_signals',
    'batch_ust_public_signals_from_inputs',
    'gen_qvt_public_signals',
    'qvt_public_signals_from_inputs',
]
