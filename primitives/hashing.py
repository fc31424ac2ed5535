"""
Poseidon Hashing and Commitments over the BN254 Scalar Field
=============================================================
Every tree node, state leaf, message digest and tally commitment in the
protocol is produced by the functions in this module.

The permutation parameters are the circomlib ones: round constants and the
Cauchy MDS matrix for each width are drawn from the Grain LFSR seeded with
(field, S-box, field bits, width, full rounds, partial rounds), so hashes
agree with the compiled Poseidon circuits.
"""

import functools
import logging
import secrets
from typing import List, Sequence

import galois
import numpy as np

logger = logging.getLogger(__name__)

# ============================================================================
# FIELD PARAMETERS
# ============================================================================

# BN254 scalar field prime (the SNARK field)
SNARK_FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BITS = 254

# 5 generates the multiplicative group of the BN254 scalar field
SnarkField = galois.GF(SNARK_FIELD_SIZE, primitive_element=5, verify=False)

FULL_ROUNDS = 8
# Partial rounds per state width t = 2..17 (circomlib table)
PARTIAL_ROUNDS = [56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68]
MAX_INPUTS = len(PARTIAL_ROUNDS)

# Grain seed tags: prime field, x^alpha S-box
PRIME_FIELD_TAG = 1
SBOX_TAG = 0

FIELD_CHUNK_BYTES = 31


def is_field_element(value: int) -> bool:
    return isinstance(value, int) and 0 <= value < SNARK_FIELD_SIZE


# ============================================================================
# PARAMETER GENERATION
# ============================================================================


class GrainLFSR:
    """80-bit Grain LFSR seeded from the Poseidon instance, emitting self-shrunk bits"""

    STATE_BITS = 80
    WARMUP = 160

    def __init__(self, width: int, partial_rounds: int):
        seed = (
            f"{PRIME_FIELD_TAG:02b}"
            f"{SBOX_TAG:04b}"
            f"{FIELD_BITS:012b}"
            f"{width:012b}"
            f"{FULL_ROUNDS:010b}"
            f"{partial_rounds:010b}"
            + "1" * 30
        )
        # bit k of the register is the k-th oldest bit of the sequence
        self._register = sum(int(bit) << k for k, bit in enumerate(seed))
        for _ in range(self.WARMUP):
            self._clock()

    def _clock(self) -> int:
        r = self._register
        new_bit = ((r >> 62) ^ (r >> 51) ^ (r >> 38) ^ (r >> 23) ^ (r >> 13) ^ r) & 1
        self._register = (r >> 1) | (new_bit << (self.STATE_BITS - 1))
        return new_bit

    def next_bit(self) -> int:
        # Self-shrinking: emit the second bit of each pair whose first bit is 1
        while self._clock() == 0:
            self._clock()
        return self._clock()

    def next_int(self, num_bits: int = FIELD_BITS) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | self.next_bit()
        return value

    def next_field_element(self) -> int:
        """Rejection-sampled element below the field size"""
        value = self.next_int()
        while value >= SNARK_FIELD_SIZE:
            value = self.next_int()
        return value


def cauchy_mds_matrix(lfsr: GrainLFSR, width: int) -> List[List[int]]:
    """M[i][j] = 1 / (x_i + y_j) for 2t distinct LFSR draws split into xs and ys"""
    while True:
        draws = [lfsr.next_int() % SNARK_FIELD_SIZE for _ in range(2 * width)]
        while len(set(draws)) != len(draws):
            draws = [lfsr.next_int() % SNARK_FIELD_SIZE for _ in range(2 * width)]

        xs = SnarkField(draws[:width])
        ys = SnarkField(draws[width:])
        denominators = xs[:, np.newaxis] + ys[np.newaxis, :]
        if np.any(denominators == 0):
            continue

        matrix = np.reciprocal(denominators)
        return [[int(value) for value in row] for row in matrix.tolist()]


# ============================================================================
# POSEIDON PERMUTATION
# ============================================================================


class Poseidon:
    """Poseidon sponge of a fixed width with x^5 S-boxes"""

    def __init__(self, width: int):
        if width < 2 or width > MAX_INPUTS + 1:
            raise ValueError(f"Unsupported Poseidon width {width}")

        self.width = width
        self.partial_rounds = PARTIAL_ROUNDS[width - 2]
        self.total_rounds = FULL_ROUNDS + self.partial_rounds

        # Constants first, then the matrix, from one LFSR stream
        lfsr = GrainLFSR(width, self.partial_rounds)
        self.round_constants = [
            lfsr.next_field_element() for _ in range(width * self.total_rounds)
        ]
        self.mds_matrix = cauchy_mds_matrix(lfsr, width)

    def _mix(self, state: List[int]) -> List[int]:
        return [
            sum(m * s for m, s in zip(row, state)) % SNARK_FIELD_SIZE
            for row in self.mds_matrix
        ]

    def permute(self, state: List[int]) -> List[int]:
        half_full = FULL_ROUNDS // 2
        constants = self.round_constants

        for r in range(self.total_rounds):
            offset = r * self.width
            state = [(s + constants[offset + i]) % SNARK_FIELD_SIZE
                     for i, s in enumerate(state)]

            if r < half_full or r >= half_full + self.partial_rounds:
                state = [pow(s, 5, SNARK_FIELD_SIZE) for s in state]
            else:
                state[0] = pow(state[0], 5, SNARK_FIELD_SIZE)

            state = self._mix(state)

        return state

    def hash(self, inputs: Sequence[int]) -> int:
        if len(inputs) != self.width - 1:
            raise ValueError(
                f"Poseidon width {self.width} expects {self.width - 1} inputs, got {len(inputs)}")
        return self.permute([0] + list(inputs))[0]


@functools.lru_cache(maxsize=None)
def _poseidon(width: int) -> Poseidon:
    logger.debug(f"Deriving Poseidon parameters for width {width}")
    return Poseidon(width)


# ============================================================================
# HASH PRIMITIVES
# ============================================================================


def hash_n(inputs: Sequence[int]) -> int:
    """Hash 1..16 field elements into one field element"""
    if not 1 <= len(inputs) <= MAX_INPUTS:
        raise ValueError(f"hash_n takes 1 to {MAX_INPUTS} inputs, got {len(inputs)}")

    for value in inputs:
        if not is_field_element(value):
            raise ValueError(f"Value {value} outside field bounds")

    return _poseidon(len(inputs) + 1).hash(inputs)


def hash_left_right(left: int, right: int) -> int:
    return hash_n([left, right])


def hash5(values: Sequence[int]) -> int:
    """5-ary hash; shorter inputs are padded with zeros"""
    if len(values) > 5:
        raise ValueError(f"hash5 takes at most 5 values, got {len(values)}")
    return hash_n(list(values) + [0] * (5 - len(values)))


def gen_random_salt() -> int:
    return secrets.randbelow(SNARK_FIELD_SIZE)


def gen_commitment(value: int, salt: int) -> int:
    """Salted hiding commitment to a field element"""
    return hash_left_right(value, salt)


def bytes_to_field_elements(data: bytes) -> List[int]:
    """Pack bytes into big-endian 31-byte chunks, each below the field size"""
    return [
        int.from_bytes(data[i:i + FIELD_CHUNK_BYTES], 'big')
        for i in range(0, len(data), FIELD_CHUNK_BYTES)
    ]
