"""Hashing, commitment and key primitives for the voting engine."""

from .hashing import (
    SNARK_FIELD_SIZE,
    Poseidon,
    hash_n,
    hash_left_right,
    hash5,
    gen_random_salt,
    gen_commitment,
    is_field_element,
    bytes_to_field_elements,
)
from .keys import (
    PrivKey,
    PubKey,
    Keypair,
    Signature,
    sign_digest,
    verify_digest,
)

__all__ = [
    # Hashing
    'SNARK_FIELD_SIZE',
    'Poseidon',
    'hash_n',
    'hash_left_right',
    'hash5',
    'gen_random_salt',
    'gen_commitment',
    'is_field_element',
    'bytes_to_field_elements',

    # Keys
    'PrivKey',
    'PubKey',
    'Keypair',
    'Signature',
    'sign_digest',
    'verify_digest',
]
