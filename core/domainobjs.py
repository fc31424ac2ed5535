"""
Domain objects: commands, encrypted messages and state leaves.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from typing import List, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from primitives.hashing import (
    SNARK_FIELD_SIZE,
    bytes_to_field_elements,
    gen_random_salt,
    hash_n,
    is_field_element,
)
from primitives.keys import Keypair, PrivKey, PubKey, Signature, sign_digest, verify_digest

from .errors import UndecryptableMessage

logger = logging.getLogger(__name__)

MESSAGE_IV_LENGTH = 12
WORD_BYTES = 32
# state index, pub key x, pub key y, vote option, weight, nonce, salt
COMMAND_WORDS = 7
PLAINTEXT_LENGTH = COMMAND_WORDS * WORD_BYTES + 64


@dataclass(frozen=True)
class Command:
    """A signed intent to vote and/or rotate the participant's key"""
    state_index: int
    new_pub_key: PubKey
    vote_option_index: int
    vote_weight: int
    nonce: int
    salt: int

    def __post_init__(self):
        for name in ('state_index', 'vote_option_index', 'vote_weight', 'nonce', 'salt'):
            if not is_field_element(getattr(self, name)):
                raise ValueError(f"Command.{name} must be a field element")

    def as_field_elements(self) -> List[int]:
        return [
            self.state_index,
            *self.new_pub_key.as_field_elements(),
            self.vote_option_index,
            self.vote_weight,
            self.nonce,
            self.salt,
        ]

    @classmethod
    def from_field_elements(cls, elements: List[int]) -> 'Command':
        if len(elements) != 9:
            raise ValueError("A command is encoded as nine field elements")
        return cls(
            state_index=elements[0],
            new_pub_key=PubKey.from_field_elements(elements[1:5]),
            vote_option_index=elements[5],
            vote_weight=elements[6],
            nonce=elements[7],
            salt=elements[8],
        )

    def hash(self) -> int:
        return hash_n(self.as_field_elements())

    def sign(self, priv_key: PrivKey) -> Signature:
        return sign_digest(priv_key, self.hash())

    def verify_signature(self, signature: Signature, pub_key: PubKey) -> bool:
        return verify_digest(pub_key, self.hash(), signature)

    def _to_bytes(self) -> bytes:
        words = [
            self.state_index,
            self.new_pub_key.x,
            self.new_pub_key.y,
            self.vote_option_index,
            self.vote_weight,
            self.nonce,
            self.salt,
        ]
        return b"".join(word.to_bytes(WORD_BYTES, 'big') for word in words)

    def encrypt(self, signature: Signature, shared_key: bytes) -> 'Message':
        iv = os.urandom(MESSAGE_IV_LENGTH)
        plaintext = self._to_bytes() + signature.to_bytes()
        ciphertext = AESGCM(shared_key).encrypt(iv, plaintext, None)
        return Message(iv=iv, ciphertext=ciphertext)


@dataclass(frozen=True)
class Message:
    """An encrypted command as stored in the message log"""
    iv: bytes
    ciphertext: bytes

    def as_field_elements(self) -> List[int]:
        return bytes_to_field_elements(self.iv + self.ciphertext)

    def hash(self) -> int:
        return hash_n(self.as_field_elements())

    def decrypt(self, shared_key: bytes) -> Tuple[Command, Signature]:
        """Inverse of Command.encrypt; raises UndecryptableMessage on any failure"""
        try:
            plaintext = AESGCM(shared_key).decrypt(self.iv, self.ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise UndecryptableMessage(f"Message authentication failed: {e}") from e

        if len(plaintext) != PLAINTEXT_LENGTH:
            raise UndecryptableMessage(
                f"Plaintext is {len(plaintext)} bytes, expected {PLAINTEXT_LENGTH}")

        words = [
            int.from_bytes(plaintext[i:i + WORD_BYTES], 'big')
            for i in range(0, COMMAND_WORDS * WORD_BYTES, WORD_BYTES)
        ]
        try:
            command = Command(
                state_index=words[0],
                new_pub_key=PubKey(words[1], words[2]),
                vote_option_index=words[3],
                vote_weight=words[4],
                nonce=words[5],
                salt=words[6],
            )
        except ValueError as e:
            raise UndecryptableMessage(f"Malformed command: {e}") from e

        signature = Signature.from_bytes(plaintext[COMMAND_WORDS * WORD_BYTES:])
        return command, signature


@dataclass(frozen=True)
class PublishedMessage:
    """A message log entry together with its ephemeral key"""
    message: Message
    enc_pub_key: PubKey


@dataclass(frozen=True)
class StateLeaf:
    """A participant's registered key and voice-credit record"""
    pub_key: PubKey
    vote_option_tree_root: int
    voice_credit_balance: int
    nonce: int

    def as_field_elements(self) -> List[int]:
        return [
            *self.pub_key.as_field_elements(),
            self.vote_option_tree_root,
            self.voice_credit_balance,
            self.nonce,
        ]

    @classmethod
    def from_field_elements(cls, elements: List[int]) -> 'StateLeaf':
        if len(elements) != 7:
            raise ValueError("A state leaf is encoded as seven field elements")
        return cls(
            pub_key=PubKey.from_field_elements(elements[:4]),
            vote_option_tree_root=elements[4],
            voice_credit_balance=elements[5],
            nonce=elements[6],
        )

    def hash(self) -> int:
        return hash_n(self.as_field_elements())

    @classmethod
    def gen_blank_leaf(cls, empty_vote_option_tree_root: int) -> 'StateLeaf':
        return cls(
            pub_key=PubKey.blank(),
            vote_option_tree_root=empty_vote_option_tree_root,
            voice_credit_balance=0,
            nonce=0,
        )

    @classmethod
    def gen_random_leaf(cls) -> 'StateLeaf':
        """Padding leaf written to slot 0 after every processed batch"""
        return cls(
            pub_key=Keypair().pub_key,
            vote_option_tree_root=gen_random_salt(),
            voice_credit_balance=secrets.randbelow(SNARK_FIELD_SIZE),
            nonce=secrets.randbelow(SNARK_FIELD_SIZE),
        )
