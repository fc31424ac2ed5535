"""Tests for YAML configuration loading and validation."""

import pytest

from config import ConfigError, MaciConfig, TreeConfig, ZKConfig, load_config, save_config
from core.state import MaciState
from primitives.keys import Keypair


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml")
    assert config == MaciConfig()
    assert config.zk_config.backend == "reference"


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "config.yaml"
    original = MaciConfig(
        tree=TreeConfig(3, 5, 1),
        zk_config=ZKConfig(backend="snarkjs", build_dir=tmp_path / "build", proof_timeout=30),
        max_vote_option_index=3,
        message_batch_size=8,
        tally_batch_size=2,
        coordinator_private_key=Keypair().priv_key.serialize(),
    )
    save_config(original, path)
    assert load_config(path) == original


def test_partial_file_keeps_other_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("trees:\n  state_tree_depth: 6\nmessage_batch_size: 16\n")
    config = load_config(path)
    assert config.tree.state_tree_depth == 6
    assert config.tree.vote_option_tree_depth == 2
    assert config.message_batch_size == 16


@pytest.mark.parametrize("content", [
    "trees: [unclosed",
    "- just\n- a list\n",
    "tally_batch_size: 3\n",
    "trees:\n  vote_option_tree_depth: 1\nmax_vote_option_index: 5\n",
    "zk_proofs:\n  backend: groth17\n",
    "coordinator_private_key: not-a-key\n",
])
def test_invalid_files_raise(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)


def test_coordinator_keypair_from_config():
    keypair = Keypair()
    config = MaciConfig(coordinator_private_key=keypair.priv_key.serialize())
    assert config.coordinator_keypair() == keypair

    state = MaciState.from_config(config)
    assert state.coordinator == keypair
    assert state.tally_batch_size == config.tally_batch_size

    with pytest.raises(ConfigError):
        MaciConfig().coordinator_keypair()
