import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from config.config import MaciConfig, load_config
from core.domainobjs import Command, StateLeaf
from core.phases import ManualClock, Phase, PhaseSchedule
from core.state import MaciState
from core.tally import gen_aggregated_tally_tree, gen_tally_tree
from core.verifier import verify_tally_batch
from ledger.ledger import InMemoryLedger
from primitives.hashing import gen_random_salt
from primitives.keys import Keypair, PubKey
from utils.utils import PerformanceMonitor, create_performance_report, save_results, setup_logging
from zk.backend import BATCH_UST_CIRCUIT, QVT_CIRCUIT, ProofBackend, create_backend

logger = logging.getLogger(__name__)


class ElectionOrchestrator:
    """Drives one election: engine, ledger and prover kept in lockstep"""

    def __init__(self, config: MaciConfig, backend: Optional[ProofBackend] = None,
                 clock: Optional[ManualClock] = None):
        self.config = config

        if config.coordinator_private_key is not None:
            self.coordinator = config.coordinator_keypair()
        else:
            logger.warning("No coordinator key configured, generating one for this election")
            self.coordinator = Keypair()

        self.clock = clock or ManualClock()
        self.schedule = PhaseSchedule(self.clock(), config.sign_up_duration, config.voting_duration)
        self.backend = backend or create_backend(
            config.zk_config.backend, config.zk_config.build_dir, config.zk_config.proof_timeout)

        self.state = MaciState.from_config(config, self.coordinator)
        self.ledger = InMemoryLedger.from_config(
            config, self.coordinator.pub_key, self.schedule, self.clock, self.backend)
        self.performance_monitor = PerformanceMonitor(enabled=config.enable_benchmarking)

        self.results: Dict[str, Any] = {
            'election': {},
            'batch_outcomes': [],
            'tally': [],
            'tally_salt': 0,
            'integrity_checks': {},
        }

        logger.info("Initialized election orchestrator")

    def _advance_clock_past(self, deadline: float):
        remaining = deadline - self.clock()
        if remaining >= 0:
            self.clock.advance(remaining + 1)

    # ========================================================================
    # PHASES
    # ========================================================================

    async def sign_up_voters(self, voters: List[Keypair]) -> List[int]:
        with self.performance_monitor.start_operation("sign_up"):
            indices = []
            roots_match = True
            for voter in voters:
                index = self.state.sign_up(voter.pub_key, self.config.initial_voice_credit_balance)
                ledger_index = self.ledger.sign_up(voter.pub_key, self.config.initial_voice_credit_balance)
                if index != ledger_index or self.state.gen_state_root() != self.ledger.get_state_tree_root():
                    logger.error(f"State root diverged after sign-up {index}")
                    roots_match = False
                indices.append(index)

            self.results['integrity_checks']['sign_up_state_roots_match'] = roots_match
            logger.info(f"Signed up {len(voters)} voters")
            return indices

    async def cast_votes(self, voters: List[Keypair], state_indices: List[int],
                         choices: List[int], weights: List[int]):
        self._advance_clock_past(self.schedule.sign_up_deadline)
        self.state.advance_phase(Phase.VOTING)

        with self.performance_monitor.start_operation("publish_messages"):
            roots_match = True
            for voter, state_index, option, weight in zip(voters, state_indices, choices, weights):
                command = Command(
                    state_index=state_index,
                    new_pub_key=voter.pub_key,
                    vote_option_index=option,
                    vote_weight=weight,
                    nonce=1,
                    salt=gen_random_salt(),
                )
                signature = command.sign(voter.priv_key)
                ephemeral = Keypair()
                shared_key = Keypair.gen_ecdh_shared_key(ephemeral.priv_key, self.coordinator.pub_key)
                message = command.encrypt(signature, shared_key)

                self.state.publish_message(message, ephemeral.pub_key)
                self.ledger.publish_message(message, ephemeral.pub_key)
                if self.state.gen_message_root() != self.ledger.get_message_tree_root():
                    roots_match = False

            self.results['integrity_checks']['message_roots_match'] = roots_match
            logger.info(f"Published {len(voters)} messages")

    async def process_messages(self):
        self._advance_clock_past(self.schedule.voting_deadline)
        self.state.advance_phase(Phase.PROCESSING)
        batch_size = self.config.message_batch_size
        signals_match = True

        while self.ledger.has_unprocessed_messages():
            with self.performance_monitor.start_operation("process_batch"):
                start = self.state.num_processed_messages
                random_leaf = StateLeaf.gen_random_leaf()

                inputs = self.state.gen_batch_update_circuit_inputs(start, batch_size, random_leaf)
                artifact = await self.backend.prove(BATCH_UST_CIRCUIT, inputs)
                new_root = self.state.process_batch(start, batch_size, random_leaf,
                                                    circuit_root=artifact.output)

                ecdh_keys = [PubKey.from_field_elements(k) for k in inputs['ecdh_public_key']]
                if self.ledger.gen_batch_ust_public_signals(new_root, ecdh_keys) != artifact.public_signals:
                    signals_match = False
                self.ledger.batch_process_message(new_root, ecdh_keys, artifact.proof)

        self.results['batch_outcomes'] = [
            [{'message_index': o.message_index, 'state_index': o.state_index, 'status': o.status}
             for o in outcomes]
            for outcomes in self.state.batch_outcomes
        ]
        self.results['integrity_checks']['batch_public_signals_match'] = signals_match
        self.results['integrity_checks']['processed_state_roots_match'] = (
            self.state.gen_state_root() == self.ledger.get_state_tree_root())

    async def tally_votes(self):
        self.state.advance_phase(Phase.TALLYING)
        batch_size = self.config.tally_batch_size
        signals_match = True

        while self.ledger.has_untallied_state_leaves():
            with self.performance_monitor.start_operation("tally_batch"):
                start = self.state.num_tallied_leaves
                new_salt = gen_random_salt()

                inputs = self.state.gen_tally_circuit_inputs(
                    start, batch_size, self.state.current_results_salt, new_salt)
                artifact = await self.backend.prove(QVT_CIRCUIT, inputs)
                result = self.state.apply_tally_batch(start, batch_size, new_salt,
                                                      circuit_commitment=artifact.output)

                expected = self.ledger.gen_qvt_public_signals(
                    result.intermediate_state_root, result.commitment)
                if expected != artifact.public_signals:
                    signals_match = False
                self.ledger.prove_vote_tally_batch(
                    result.intermediate_state_root, result.commitment, artifact.proof)

        self.state.advance_phase(Phase.FINALIZED)
        self.results['tally'] = list(self.state.current_results)
        self.results['tally_salt'] = self.state.current_results_salt
        self.results['integrity_checks']['tally_public_signals_match'] = signals_match

    def verify_results(self) -> bool:
        """Check every option's tally against the ledger's final commitment"""
        with self.performance_monitor.start_operation("verify_results"):
            depth = self.config.tree.vote_option_tree_depth
            tally = self.results['tally']
            salt = self.results['tally_salt']
            tree = gen_tally_tree(tally, depth)

            per_option = all(
                self.ledger.verify_tally_result(depth, option, tally[option],
                                                tree.gen_merkle_path(option).path_elements, salt)
                for option in range(self.config.max_vote_option_index + 1)
            )
            self.results['integrity_checks']['tally_leaves_verified'] = per_option

            if depth >= 2:
                aggregated = gen_aggregated_tally_tree(tally, depth)
                batch_ok = all(
                    verify_tally_batch(depth, group, tally[group * 5:group * 5 + 5],
                                       aggregated.gen_merkle_path(group).path_elements, salt,
                                       self.ledger.current_results_commitment)
                    for group in range(aggregated.next_index)
                )
                self.results['integrity_checks']['tally_batches_verified'] = batch_ok

            passed = all(self.results['integrity_checks'].values())
            self.results['integrity_checks']['all_checks_passed'] = passed
            return passed

    async def run_election(self, voters: List[Keypair], choices: List[int],
                           weights: List[int]) -> Dict[str, Any]:
        logger.info(f"Starting election with {len(voters)} voters")
        election_start = time.time()

        state_indices = await self.sign_up_voters(voters)
        await self.cast_votes(voters, state_indices, choices, weights)
        await self.process_messages()
        await self.tally_votes()
        self.verify_results()

        self.results['election'] = {
            'voters': len(voters),
            'state_root': str(self.state.gen_state_root()),
            'message_root': str(self.state.gen_message_root()),
            'results_commitment': str(self.ledger.current_results_commitment),
            'coordinator': self.coordinator.pub_key.serialize(),
            'duration_seconds': round(time.time() - election_start, 3),
        }

        logger.info(f"Election completed in {time.time() - election_start:.3f}s")
        return self.results


def generate_ballots(num_voters: int, config: MaciConfig, seed: Optional[int] = None):
    """Random option per voter and the largest weight the balance affords, capped at 5"""
    rng = np.random.default_rng(seed)
    choices = rng.integers(0, config.max_vote_option_index + 1, size=num_voters)
    max_weight = min(5, int(np.sqrt(config.initial_voice_credit_balance)))
    weights = rng.integers(1, max_weight + 1, size=num_voters) if max_weight > 0 \
        else np.zeros(num_voters, dtype=int)
    return [int(c) for c in choices], [int(w) for w in weights]


async def run_demo(config: MaciConfig, num_voters: int, seed: Optional[int] = None) -> bool:
    print("=" * 80)
    print("ANTI-COLLUSION QUADRATIC VOTING - ELECTION DEMONSTRATION")
    print("=" * 80)

    capacity = 2 ** config.tree.state_tree_depth - 1
    if num_voters > capacity:
        print(f"State tree of depth {config.tree.state_tree_depth} holds at most {capacity} voters")
        return False

    orchestrator = ElectionOrchestrator(config)
    voters = [Keypair() for _ in range(num_voters)]
    choices, weights = generate_ballots(num_voters, config, seed)

    print(f"\nRunning election: {num_voters} voters, "
          f"{config.max_vote_option_index + 1} options, backend '{config.zk_config.backend}'")
    results = await orchestrator.run_election(voters, choices, weights)

    print("\nFinal Tally:")
    for option in range(config.max_vote_option_index + 1):
        print(f"  Option {option}: {results['tally'][option]}")

    print("\nIntegrity Checks:")
    for check, passed in results['integrity_checks'].items():
        print(f"  {check}: {'PASSED' if passed else 'FAILED'}")

    report_path = config.results_dir / "election_report.json"
    save_results(results, report_path)

    print(f"\nFull results saved to: {report_path}")

    if config.enable_benchmarking:
        monitor = orchestrator.performance_monitor
        perf_path = config.results_dir / "performance_report.txt"
        perf_path.write_text(create_performance_report(monitor))
        monitor.save_metrics(config.results_dir / "performance_metrics.json")
        print(f"Performance report: {perf_path}")

    return results['integrity_checks']['all_checks_passed']


def main():
    parser = argparse.ArgumentParser(
        description='Anti-collusion quadratic voting engine')
    parser.add_argument('--voters', type=int, default=5,
                        help='Number of voters')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--backend', choices=['reference', 'snarkjs'],
                        help='Override the configured proof backend')
    parser.add_argument('--seed', type=int, default=None,
                        help='Seed for ballot generation')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])

    args = parser.parse_args()

    config = load_config(Path(args.config))
    if args.backend:
        config.zk_config.backend = args.backend

    setup_logging(args.log_level, config.log_dir / "maci.log")

    success = asyncio.run(run_demo(config, args.voters, args.seed))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
