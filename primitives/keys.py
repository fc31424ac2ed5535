"""
Participant and coordinator key material.

One P-256 key pair both signs commands (ECDSA over SHA-256) and agrees on
message keys with the coordinator (ECDH followed by HKDF).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

CURVE = ec.SECP256R1()
CURVE_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551

LIMB_BITS = 128
LIMB_MASK = (1 << LIMB_BITS) - 1

SHARED_KEY_LENGTH = 32
SHARED_KEY_INFO = b"maci||message-encryption"

SERIALIZED_PRIV_KEY_PREFIX = "macisk."
SERIALIZED_PUB_KEY_PREFIX = "macipk."


def split_limbs(value: int) -> List[int]:
    return [value >> LIMB_BITS, value & LIMB_MASK]


def join_limbs(high: int, low: int) -> int:
    return (high << LIMB_BITS) | low


@dataclass(frozen=True)
class PrivKey:
    """Secret scalar; never leaves its owner"""
    raw: int = field(repr=False)

    def __post_init__(self):
        if not 0 < self.raw < CURVE_ORDER:
            raise ValueError("Private key scalar outside the curve order")

    @classmethod
    def generate(cls) -> 'PrivKey':
        key = ec.generate_private_key(CURVE)
        return cls(key.private_numbers().private_value)

    def as_crypto_key(self) -> ec.EllipticCurvePrivateKey:
        return ec.derive_private_key(self.raw, CURVE)

    def serialize(self) -> str:
        return SERIALIZED_PRIV_KEY_PREFIX + format(self.raw, '064x')

    @classmethod
    def unserialize(cls, serialized: str) -> 'PrivKey':
        if not serialized.startswith(SERIALIZED_PRIV_KEY_PREFIX):
            raise ValueError("Serialized private key must start with 'macisk.'")
        return cls(int(serialized[len(SERIALIZED_PRIV_KEY_PREFIX):], 16))


@dataclass(frozen=True)
class PubKey:
    """Affine curve point; (0, 0) is the blank key of unused state slots"""
    x: int
    y: int

    @classmethod
    def blank(cls) -> 'PubKey':
        return cls(0, 0)

    @classmethod
    def from_crypto_key(cls, key: ec.EllipticCurvePublicKey) -> 'PubKey':
        numbers = key.public_numbers()
        return cls(numbers.x, numbers.y)

    def as_crypto_key(self) -> ec.EllipticCurvePublicKey:
        """Raises ValueError when the point is not on the curve"""
        return ec.EllipticCurvePublicNumbers(self.x, self.y, CURVE).public_key()

    def is_valid(self) -> bool:
        try:
            self.as_crypto_key()
        except ValueError:
            return False
        return True

    def as_field_elements(self) -> List[int]:
        return split_limbs(self.x) + split_limbs(self.y)

    @classmethod
    def from_field_elements(cls, elements: List[int]) -> 'PubKey':
        if len(elements) != 4:
            raise ValueError("A public key is encoded as four limbs")
        return cls(join_limbs(elements[0], elements[1]),
                   join_limbs(elements[2], elements[3]))

    def serialize(self) -> str:
        return SERIALIZED_PUB_KEY_PREFIX + format(self.x, '064x') + format(self.y, '064x')

    @classmethod
    def unserialize(cls, serialized: str) -> 'PubKey':
        if not serialized.startswith(SERIALIZED_PUB_KEY_PREFIX):
            raise ValueError("Serialized public key must start with 'macipk.'")
        body = serialized[len(SERIALIZED_PUB_KEY_PREFIX):]
        if len(body) != 128:
            raise ValueError("Serialized public key has the wrong length")
        return cls(int(body[:64], 16), int(body[64:], 16))


@dataclass(frozen=True)
class Signature:
    r: int
    s: int

    def as_list(self) -> List[int]:
        return [self.r, self.s]

    def to_bytes(self) -> bytes:
        return self.r.to_bytes(32, 'big') + self.s.to_bytes(32, 'big')

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Signature':
        if len(data) != 64:
            raise ValueError("Signature must be 64 bytes")
        return cls(int.from_bytes(data[:32], 'big'), int.from_bytes(data[32:], 'big'))


def sign_digest(priv_key: PrivKey, digest: int) -> Signature:
    """ECDSA signature over a field element digest"""
    der = priv_key.as_crypto_key().sign(
        digest.to_bytes(32, 'big'), ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    return Signature(r, s)


def verify_digest(pub_key: PubKey, digest: int, signature: Signature) -> bool:
    try:
        pub_key.as_crypto_key().verify(
            encode_dss_signature(signature.r, signature.s),
            digest.to_bytes(32, 'big'),
            ec.ECDSA(hashes.SHA256()),
        )
    except (InvalidSignature, ValueError):
        return False
    return True


class Keypair:
    """Private key with its derived public key"""

    def __init__(self, priv_key: Optional[PrivKey] = None):
        self.priv_key = priv_key or PrivKey.generate()
        self.pub_key = PubKey.from_crypto_key(
            self.priv_key.as_crypto_key().public_key())

    def __eq__(self, other) -> bool:
        return isinstance(other, Keypair) and self.priv_key == other.priv_key

    def __repr__(self) -> str:
        return f"Keypair(pub_key={self.pub_key.serialize()[:23]}...)"

    @staticmethod
    def gen_ecdh_shared_key(priv_key: PrivKey, pub_key: PubKey) -> bytes:
        """Symmetric message key: HKDF over ECDH(priv_key, pub_key)"""
        secret = priv_key.as_crypto_key().exchange(ec.ECDH(), pub_key.as_crypto_key())
        return HKDF(
            algorithm=hashes.SHA256(),
            length=SHARED_KEY_LENGTH,
            salt=None,
            info=SHARED_KEY_INFO,
        ).derive(secret)
