"""Tests for keys, commands, encrypted messages and state leaves."""

import pytest

from core.domainobjs import Command, Message, StateLeaf
from core.errors import UndecryptableMessage
from primitives.keys import Keypair, PrivKey, PubKey, Signature


def _command(keypair: Keypair, **overrides) -> Command:
    fields = dict(state_index=1, new_pub_key=keypair.pub_key, vote_option_index=2,
                  vote_weight=3, nonce=1, salt=12345)
    fields.update(overrides)
    return Command(**fields)


def test_ecdh_shared_key_is_symmetric():
    alice, bob = Keypair(), Keypair()
    assert (Keypair.gen_ecdh_shared_key(alice.priv_key, bob.pub_key)
            == Keypair.gen_ecdh_shared_key(bob.priv_key, alice.pub_key))
    assert (Keypair.gen_ecdh_shared_key(alice.priv_key, bob.pub_key)
            != Keypair.gen_ecdh_shared_key(alice.priv_key, Keypair().pub_key))


def test_key_serialization_round_trip():
    keypair = Keypair()
    serialized = keypair.priv_key.serialize()
    assert serialized.startswith("macisk.")
    assert Keypair(PrivKey.unserialize(serialized)) == keypair
    assert PubKey.unserialize(keypair.pub_key.serialize()) == keypair.pub_key
    assert PubKey.from_field_elements(keypair.pub_key.as_field_elements()) == keypair.pub_key
    with pytest.raises(ValueError):
        PrivKey.unserialize("nope")


def test_blank_and_off_curve_keys_are_invalid():
    assert not PubKey.blank().is_valid()
    assert not PubKey(1, 2).is_valid()
    assert Keypair().pub_key.is_valid()


def test_command_signature():
    owner, other = Keypair(), Keypair()
    command = _command(owner)
    signature = command.sign(owner.priv_key)
    assert command.verify_signature(signature, owner.pub_key)
    assert not command.verify_signature(signature, other.pub_key)
    assert not _command(owner, nonce=2).verify_signature(signature, owner.pub_key)


def test_command_rejects_non_field_values():
    with pytest.raises(ValueError):
        _command(Keypair(), vote_weight=-1)


def test_encrypt_decrypt_round_trip():
    voter, coordinator, ephemeral = Keypair(), Keypair(), Keypair()
    command = _command(voter, salt=987654321)
    signature = command.sign(voter.priv_key)

    message = command.encrypt(signature, Keypair.gen_ecdh_shared_key(
        ephemeral.priv_key, coordinator.pub_key))
    decrypted, decrypted_signature = message.decrypt(Keypair.gen_ecdh_shared_key(
        coordinator.priv_key, ephemeral.pub_key))

    assert decrypted == command
    assert decrypted.salt == 987654321
    assert decrypted_signature == signature
    assert decrypted.verify_signature(decrypted_signature, voter.pub_key)


def test_decrypt_with_wrong_key_fails():
    voter = Keypair()
    command = _command(voter)
    message = command.encrypt(command.sign(voter.priv_key), b"\x01" * 32)
    with pytest.raises(UndecryptableMessage):
        message.decrypt(b"\x02" * 32)

    tampered = Message(message.iv, bytes([message.ciphertext[0] ^ 1]) + message.ciphertext[1:])
    with pytest.raises(UndecryptableMessage):
        tampered.decrypt(b"\x01" * 32)


def test_message_hash_binds_ciphertext():
    voter = Keypair()
    command = _command(voter)
    signature = command.sign(voter.priv_key)
    first = command.encrypt(signature, b"\x01" * 32)
    second = command.encrypt(signature, b"\x01" * 32)
    assert first.hash() != second.hash()


def test_signature_bytes_round_trip():
    signature = Signature(123, 456)
    assert Signature.from_bytes(signature.to_bytes()) == signature


def test_state_leaf_encoding():
    leaf = StateLeaf(Keypair().pub_key, 17, 100, 2)
    assert StateLeaf.from_field_elements(leaf.as_field_elements()) == leaf
    assert leaf.hash() != StateLeaf(leaf.pub_key, 17, 100, 3).hash()


def test_blank_and_random_leaves():
    blank = StateLeaf.gen_blank_leaf(5)
    assert blank.pub_key == PubKey.blank()
    assert blank.voice_credit_balance == 0
    assert blank.hash() == StateLeaf.gen_blank_leaf(5).hash()
    assert StateLeaf.gen_random_leaf().hash() != StateLeaf.gen_random_leaf().hash()
