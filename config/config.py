from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from primitives.keys import Keypair, PrivKey


class ConfigError(ValueError):
    """Configuration file is malformed or inconsistent"""
    pass


@dataclass
class TreeConfig:
    state_tree_depth: int = 4
    message_tree_depth: int = 4
    vote_option_tree_depth: int = 2

    def __post_init__(self):
        for name in ('state_tree_depth', 'message_tree_depth', 'vote_option_tree_depth'):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")


@dataclass
class ZKConfig:
    backend: str = "reference"
    build_dir: Path = field(default_factory=lambda: Path("circuits/build"))
    proof_timeout: int = 600

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)
        if self.backend not in ("reference", "snarkjs"):
            raise ConfigError(f"Unknown proof backend: {self.backend}")


@dataclass
class MaciConfig:
    tree: TreeConfig = field(default_factory=TreeConfig)
    zk_config: ZKConfig = field(default_factory=ZKConfig)

    max_vote_option_index: int = 4
    message_batch_size: int = 4
    tally_batch_size: int = 4
    initial_voice_credit_balance: int = 100

    sign_up_duration: int = 3600
    voting_duration: int = 3600

    # macisk.<hex>; one key per election, never reused
    coordinator_private_key: Optional[str] = None

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_benchmarking: bool = True

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        if not 0 <= self.max_vote_option_index < 5 ** self.tree.vote_option_tree_depth:
            raise ConfigError("max_vote_option_index does not fit the vote option tree")
        if self.message_batch_size < 1:
            raise ConfigError("message_batch_size must be positive")
        if self.tally_batch_size < 1 or self.tally_batch_size & (self.tally_batch_size - 1):
            raise ConfigError("tally_batch_size must be a power of two")
        if self.tally_batch_size > 2 ** self.tree.state_tree_depth:
            raise ConfigError("tally_batch_size exceeds the state tree capacity")
        if self.initial_voice_credit_balance < 0:
            raise ConfigError("initial_voice_credit_balance cannot be negative")
        if self.sign_up_duration <= 0 or self.voting_duration <= 0:
            raise ConfigError("Phase durations must be positive")
        if self.coordinator_private_key is not None:
            try:
                PrivKey.unserialize(self.coordinator_private_key)
            except ValueError as e:
                raise ConfigError(f"Invalid coordinator private key: {e}") from e

    def coordinator_keypair(self) -> Keypair:
        if self.coordinator_private_key is None:
            raise ConfigError("No coordinator private key configured")
        return Keypair(PrivKey.unserialize(self.coordinator_private_key))


def load_config(config_path: Optional[Path] = None) -> MaciConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        return MaciConfig()

    with open(config_path, 'r') as f:
        try:
            config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse config file {config_path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    tree_data = config_data.get('trees', {})
    tree = TreeConfig(
        state_tree_depth=tree_data.get('state_tree_depth', 4),
        message_tree_depth=tree_data.get('message_tree_depth', 4),
        vote_option_tree_depth=tree_data.get('vote_option_tree_depth', 2),
    )

    zk_data = config_data.get('zk_proofs', {})
    zk_config = ZKConfig(
        backend=zk_data.get('backend', 'reference'),
        build_dir=Path(zk_data.get('build_dir', 'circuits/build')),
        proof_timeout=zk_data.get('proof_timeout', 600),
    )

    return MaciConfig(
        tree=tree,
        zk_config=zk_config,
        max_vote_option_index=config_data.get('max_vote_option_index', 4),
        message_batch_size=config_data.get('message_batch_size', 4),
        tally_batch_size=config_data.get('tally_batch_size', 4),
        initial_voice_credit_balance=config_data.get('initial_voice_credit_balance', 100),
        sign_up_duration=config_data.get('sign_up_duration', 3600),
        voting_duration=config_data.get('voting_duration', 3600),
        coordinator_private_key=config_data.get('coordinator_private_key'),
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        enable_benchmarking=config_data.get('enable_benchmarking', True),
    )


def save_config(config: MaciConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'trees': {
            'state_tree_depth': config.tree.state_tree_depth,
            'message_tree_depth': config.tree.message_tree_depth,
            'vote_option_tree_depth': config.tree.vote_option_tree_depth,
        },
        'zk_proofs': {
            'backend': config.zk_config.backend,
            'build_dir': str(config.zk_config.build_dir),
            'proof_timeout': config.zk_config.proof_timeout,
        },
        'max_vote_option_index': config.max_vote_option_index,
        'message_batch_size': config.message_batch_size,
        'tally_batch_size': config.tally_batch_size,
        'initial_voice_credit_balance': config.initial_voice_credit_balance,
        'sign_up_duration': config.sign_up_duration,
        'voting_duration': config.voting_duration,
        'coordinator_private_key': config.coordinator_private_key,
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_benchmarking': config.enable_benchmarking,
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
