"""Reference ledger the coordinator submits roots and proofs to."""

from .ledger import InMemoryLedger, ProofRejected

__all__ = [
    'InMemoryLedger',
    'ProofRejected',
]
