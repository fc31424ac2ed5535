"""
Proof Backends
==============
Turn circuit witnesses into (proof, public signals) and check them.

- ReferenceBackend: development backend driven by the reference circuits.
  Its proofs are keyed digests over the public signals, not zero-knowledge.
- SnarkjsBackend: compiled circom circuits proven with snarkjs groth16.
"""

import hashlib
import json
import logging
import secrets
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from .circuits import BatchUpdateStateTreeCircuit, QuadVoteTallyCircuit, stringify_big_ints
from .public_signals import batch_ust_public_signals_from_inputs, qvt_public_signals_from_inputs

logger = logging.getLogger(__name__)

BATCH_UST_CIRCUIT = BatchUpdateStateTreeCircuit.name
QVT_CIRCUIT = QuadVoteTallyCircuit.name

# ============================================================================
# EXCEPTIONS
# ============================================================================


class ZKError(Exception):
    """Base exception for ZK operations"""
    pass


class UnknownCircuit(ZKError):
    """No circuit registered under the requested name"""
    pass


class ProofGenerationError(ZKError):
    """Proof generation failed"""
    pass


# ============================================================================
# ARTIFACTS AND PROTOCOL
# ============================================================================


@dataclass
class ProofArtifact:
    """Container for proof and metadata"""
    circuit_name: str
    proof: Dict[str, Any]
    public_signals: List[int]
    generation_time: float
    timestamp: float = field(default_factory=time.time)

    @property
    def output(self) -> int:
        """First public signal: the new state root or the new results commitment"""
        return self.public_signals[0]


class ProofBackend(Protocol):
    async def prove(self, circuit_name: str, inputs: Dict[str, Any]) -> ProofArtifact:
        ...

    def verify(self, verifying_key: Dict[str, Any], proof: Dict[str, Any],
               public_signals: List[int]) -> bool:
        ...

    def verifying_key(self, circuit_name: str) -> Dict[str, Any]:
        ...


# ============================================================================
# REFERENCE BACKEND
# ============================================================================


class ReferenceBackend:
    """Computes outputs with the reference circuits and signs the public signals"""

    PROTOCOL = "reference"

    def __init__(self):
        batch_circuit = BatchUpdateStateTreeCircuit()
        tally_circuit = QuadVoteTallyCircuit()

        self._circuits: Dict[str, Callable[[Dict[str, Any]], List[int]]] = {
            BATCH_UST_CIRCUIT: lambda inputs: batch_ust_public_signals_from_inputs(
                inputs, batch_circuit.calculate_root(inputs)),
            QVT_CIRCUIT: lambda inputs: qvt_public_signals_from_inputs(
                inputs, tally_circuit.calculate_commitment(inputs)),
        }
        self._key_id = secrets.token_bytes(32)

    def verifying_key(self, circuit_name: str) -> Dict[str, Any]:
        if circuit_name not in self._circuits:
            raise UnknownCircuit(f"No circuit named {circuit_name}")
        return {
            'protocol': self.PROTOCOL,
            'circuit': circuit_name,
            'key_id': self._key_id.hex(),
        }

    @staticmethod
    def _digest(verifying_key: Dict[str, Any], public_signals: List[int]) -> str:
        payload = json.dumps({
            'circuit': verifying_key['circuit'],
            'public_signals': [str(s) for s in public_signals],
        }, sort_keys=True).encode()
        key = bytes.fromhex(verifying_key['key_id'])
        return hashlib.blake2b(payload, key=key, digest_size=32).hexdigest()

    async def prove(self, circuit_name: str, inputs: Dict[str, Any]) -> ProofArtifact:
        start_time = time.time()
        if circuit_name not in self._circuits:
            raise UnknownCircuit(f"No circuit named {circuit_name}")

        # Inconsistent witnesses raise IntegrityError and are never proven
        public_signals = self._circuits[circuit_name](inputs)
        proof = {
            'protocol': self.PROTOCOL,
            'circuit': circuit_name,
            'digest': self._digest(self.verifying_key(circuit_name), public_signals),
        }

        generation_time = time.time() - start_time
        logger.info(f"Generated reference proof for {circuit_name} in {generation_time:.2f}s")
        return ProofArtifact(circuit_name, proof, public_signals, generation_time)

    def verify(self, verifying_key: Dict[str, Any], proof: Dict[str, Any],
               public_signals: List[int]) -> bool:
        if verifying_key.get('protocol') != self.PROTOCOL or proof.get('protocol') != self.PROTOCOL:
            return False
        if proof.get('circuit') != verifying_key.get('circuit'):
            return False
        return secrets.compare_digest(
            proof.get('digest', ''), self._digest(verifying_key, public_signals))


# ============================================================================
# SNARKJS BACKEND
# ============================================================================


class SnarkjsBackend:
    """Groth16 proofs over compiled circom circuits via node and snarkjs"""

    def __init__(self, build_dir: Path, node_binary: str = "node",
                 snarkjs_binary: str = "snarkjs", timeout: Optional[int] = 600):
        self.build_dir = Path(build_dir)
        self.node_binary = node_binary
        self.snarkjs_binary = snarkjs_binary
        self.timeout = timeout
        self._vkey_cache: Dict[str, Dict[str, Any]] = {}

    def _circuit_file(self, circuit_name: str, suffix: str) -> Path:
        return self.build_dir / circuit_name / f"{circuit_name}{suffix}"

    def verifying_key(self, circuit_name: str) -> Dict[str, Any]:
        if circuit_name in self._vkey_cache:
            return self._vkey_cache[circuit_name]

        vkey_file = self._circuit_file(circuit_name, "_verification_key.json")
        if not vkey_file.exists():
            raise UnknownCircuit(f"Verification key not found: {vkey_file}")
        vkey = json.loads(vkey_file.read_text())

        self._vkey_cache[circuit_name] = vkey
        return vkey

    def _run(self, cmd: List[str], what: str) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProofGenerationError(f"{what} could not run: {e}") from e
        if result.returncode != 0:
            raise ProofGenerationError(f"{what} failed: {result.stderr}")
        return result

    async def prove(self, circuit_name: str, inputs: Dict[str, Any]) -> ProofArtifact:
        """Generate proof using snarkjs"""
        start_time = time.time()

        circuit_dir = self.build_dir / circuit_name
        wasm_file = circuit_dir / f"{circuit_name}_js" / f"{circuit_name}.wasm"
        witness_js = circuit_dir / f"{circuit_name}_js" / "generate_witness.js"
        zkey_file = self._circuit_file(circuit_name, ".zkey")
        if not wasm_file.exists() or not zkey_file.exists():
            raise UnknownCircuit(f"Circuit artifacts for {circuit_name} not found in {circuit_dir}")

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)

            input_file = temp_path / "input.json"
            with open(input_file, 'w') as f:
                json.dump(stringify_big_ints(inputs), f)

            wtns_file = temp_path / "witness.wtns"
            self._run([self.node_binary, str(witness_js), str(wasm_file),
                       str(input_file), str(wtns_file)], "Witness generation")

            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            self._run([self.snarkjs_binary, 'groth16', 'prove', str(zkey_file),
                       str(wtns_file), str(proof_file), str(public_file)], "Proof generation")

            proof = json.loads(proof_file.read_text())
            public_signals = [int(s) for s in json.loads(public_file.read_text())]

        generation_time = time.time() - start_time
        logger.info(f"Generated proof for {circuit_name} in {generation_time:.2f}s")
        return ProofArtifact(circuit_name, proof, public_signals, generation_time)

    def verify(self, verifying_key: Dict[str, Any], proof: Dict[str, Any],
               public_signals: List[int]) -> bool:
        start_time = time.time()

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            vkey_file = temp_path / "vkey.json"
            public_file = temp_path / "public.json"
            proof_file = temp_path / "proof.json"

            vkey_file.write_text(json.dumps(verifying_key))
            public_file.write_text(json.dumps([str(s) for s in public_signals]))
            proof_file.write_text(json.dumps(proof))

            cmd = [self.snarkjs_binary, 'groth16', 'verify',
                   str(vkey_file), str(public_file), str(proof_file)]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.error(f"Verification could not run: {e}")
                return False

        is_valid = result.returncode == 0 and "OK!" in result.stdout
        logger.info(f"Verified proof in {time.time() - start_time:.3f}s: {is_valid}")
        return is_valid


def create_backend(name: str, build_dir: Optional[Path] = None,
                   timeout: Optional[int] = 600) -> ProofBackend:
    if name == "reference":
        return ReferenceBackend()
    if name == "snarkjs":
        return SnarkjsBackend(build_dir or Path("circuits/build"), timeout=timeout)
    raise ZKError(f"Unknown proof backend: {name}")
