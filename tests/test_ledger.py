"""Tests for the in-memory ledger, the proof backends and a full election run."""

import asyncio
import json

import pytest

from config.config import MaciConfig, TreeConfig
from core.domainobjs import Message, StateLeaf
from core.errors import PhaseViolation, StateRootMismatch
from core.phases import Phase
from ledger.ledger import ProofRejected
from main import ElectionOrchestrator, generate_ballots, run_demo
from primitives.keys import Keypair, PubKey
from zk.backend import BATCH_UST_CIRCUIT, ReferenceBackend, UnknownCircuit


@pytest.fixture
def config(tmp_path):
    return MaciConfig(
        tree=TreeConfig(state_tree_depth=2, message_tree_depth=2, vote_option_tree_depth=2),
        message_batch_size=2,
        tally_batch_size=2,
        log_dir=tmp_path / "logs",
        results_dir=tmp_path / "results",
    )


@pytest.fixture
def orchestrator(config):
    return ElectionOrchestrator(config)


def _open_processing(orchestrator, voters, choices, weights):
    indices = asyncio.run(orchestrator.sign_up_voters(voters))
    asyncio.run(orchestrator.cast_votes(voters, indices, choices, weights))
    orchestrator._advance_clock_past(orchestrator.schedule.voting_deadline)
    orchestrator.state.advance_phase(Phase.PROCESSING)


def test_full_election(orchestrator):
    voters = [Keypair() for _ in range(3)]
    results = asyncio.run(orchestrator.run_election(voters, [0, 1, 1], [2, 3, 1]))

    assert results['tally'][:5] == [2, 4, 0, 0, 0]
    assert results['integrity_checks']['all_checks_passed']
    assert results['integrity_checks']['tally_batches_verified']
    assert [[o['status'] for o in batch] for batch in results['batch_outcomes']] == [
        ["applied", "applied"],
        ["applied", "skipped: padding"],
    ]
    assert orchestrator.state.current_phase == Phase.FINALIZED
    assert orchestrator.ledger.current_results_commitment == orchestrator.state.current_results_commitment
    assert [e['event'] for e in orchestrator.ledger.events].count('TallyBatchProved') == 2


def test_ledger_gates_entry_points_on_clock(orchestrator):
    voter = Keypair()
    ledger = orchestrator.ledger
    ledger.sign_up(voter.pub_key, 100)

    message = Message(iv=bytes(12), ciphertext=bytes(16))
    with pytest.raises(PhaseViolation):
        ledger.publish_message(message, Keypair().pub_key)

    orchestrator._advance_clock_past(orchestrator.schedule.sign_up_deadline)
    with pytest.raises(PhaseViolation):
        ledger.sign_up(Keypair().pub_key, 100)
    with pytest.raises(PhaseViolation):
        ledger.batch_process_message(0, [PubKey.blank()] * 2, {})


def test_ledger_rejects_proof_for_other_root(orchestrator):
    voters = [Keypair() for _ in range(3)]
    _open_processing(orchestrator, voters, [0, 1, 2], [1, 1, 1])

    inputs = orchestrator.state.gen_batch_update_circuit_inputs(0, 2, StateLeaf.gen_random_leaf())
    artifact = asyncio.run(orchestrator.backend.prove(BATCH_UST_CIRCUIT, inputs))
    ecdh_keys = [PubKey.from_field_elements(k) for k in inputs['ecdh_public_key']]
    ledger = orchestrator.ledger

    with pytest.raises(ProofRejected):
        ledger.batch_process_message(artifact.output ^ 1, ecdh_keys, artifact.proof)
    with pytest.raises(ValueError):
        ledger.batch_process_message(artifact.output, ecdh_keys[:1], artifact.proof)

    assert ledger.gen_batch_ust_public_signals(artifact.output, ecdh_keys) == artifact.public_signals
    ledger.batch_process_message(artifact.output, ecdh_keys, artifact.proof)
    assert ledger.get_state_tree_root() == artifact.output
    assert ledger.has_unprocessed_messages()


def test_reference_backend_refuses_inconsistent_witness(orchestrator):
    voters = [Keypair() for _ in range(2)]
    _open_processing(orchestrator, voters, [0, 1], [1, 1])

    inputs = orchestrator.state.gen_batch_update_circuit_inputs(0, 2, StateLeaf.gen_random_leaf())
    inputs['initial_state_root'] += 1
    with pytest.raises(StateRootMismatch):
        asyncio.run(orchestrator.backend.prove(BATCH_UST_CIRCUIT, inputs))


def test_reference_backend_verification():
    backend = ReferenceBackend()
    other = ReferenceBackend()

    with pytest.raises(UnknownCircuit):
        backend.verifying_key("unknown")
    with pytest.raises(UnknownCircuit):
        asyncio.run(backend.prove("unknown", {}))

    vkey = backend.verifying_key(BATCH_UST_CIRCUIT)
    proof = {
        'protocol': 'reference',
        'circuit': BATCH_UST_CIRCUIT,
        'digest': backend._digest(vkey, [1, 2, 3]),
    }
    assert backend.verify(vkey, proof, [1, 2, 3])
    assert not backend.verify(vkey, proof, [1, 2, 4])
    assert not other.verify(other.verifying_key(BATCH_UST_CIRCUIT), proof, [1, 2, 3])


def test_generate_ballots_is_seeded(config):
    first = generate_ballots(10, config, seed=3)
    assert first == generate_ballots(10, config, seed=3)
    choices, weights = first
    assert all(0 <= c <= config.max_vote_option_index for c in choices)
    assert all(1 <= w <= 5 for w in weights)


def test_run_demo_writes_reports(config):
    assert asyncio.run(run_demo(config, 3, seed=11))
    assert (config.results_dir / "election_report.json").exists()
    assert (config.results_dir / "election_report_summary.txt").exists()
    assert (config.results_dir / "performance_report.txt").exists()
    metrics = json.loads((config.results_dir / "performance_metrics.json").read_text())
    assert metrics['summary']['operations']['process_batch']['count'] >= 1


def test_run_demo_without_benchmarking(config):
    config.enable_benchmarking = False
    assert asyncio.run(run_demo(config, 3, seed=11))
    assert (config.results_dir / "election_report.json").exists()
    assert not (config.results_dir / "performance_report.txt").exists()
    assert not (config.results_dir / "performance_metrics.json").exists()


def test_run_demo_refuses_too_many_voters(config):
    assert not asyncio.run(run_demo(config, 4))
