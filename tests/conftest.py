"""Shared fixtures for the engine test suite."""

import logging
from typing import Optional

import pytest

from core.domainobjs import Command
from core.phases import Phase
from core.state import MaciState
from primitives.hashing import gen_random_salt
from primitives.keys import Keypair, PubKey

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

BALANCE = 100


@pytest.fixture(scope="session")
def coordinator() -> Keypair:
    return Keypair()


@pytest.fixture(scope="session")
def voters():
    return [Keypair() for _ in range(3)]


@pytest.fixture
def make_state(coordinator, voters):
    """MaciState with every voter signed up, left in the voting phase"""

    def factory(state_tree_depth: int = 2, message_tree_depth: int = 2,
                vote_option_tree_depth: int = 2, max_vote_option_index: int = 4,
                balance: int = BALANCE) -> MaciState:
        state = MaciState(coordinator, state_tree_depth, message_tree_depth,
                          vote_option_tree_depth, max_vote_option_index)
        for voter in voters:
            state.sign_up(voter.pub_key, balance)
        state.advance_phase(Phase.VOTING)
        return state

    return factory


@pytest.fixture
def make_message(coordinator):
    """Sign and encrypt a vote command to the coordinator"""

    def factory(signer: Keypair, state_index: int, option: int, weight: int, nonce: int = 1,
                new_pub_key: Optional[PubKey] = None, recipient: Optional[PubKey] = None):
        command = Command(
            state_index=state_index,
            new_pub_key=new_pub_key or signer.pub_key,
            vote_option_index=option,
            vote_weight=weight,
            nonce=nonce,
            salt=gen_random_salt(),
        )
        signature = command.sign(signer.priv_key)
        ephemeral = Keypair()
        shared_key = Keypair.gen_ecdh_shared_key(
            ephemeral.priv_key, recipient or coordinator.pub_key)
        return command.encrypt(signature, shared_key), ephemeral.pub_key

    return factory


@pytest.fixture
def voted_state(make_state, make_message, voters):
    """Three voters each cast weight 3 for options 0, 1 and 2; processing open"""
    state = make_state()
    for i, voter in enumerate(voters):
        message, enc_pub_key = make_message(voter, i + 1, option=i, weight=3)
        state.publish_message(message, enc_pub_key)
    state.advance_phase(Phase.PROCESSING)
    return state
