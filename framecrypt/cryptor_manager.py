"""Per-generation cryptor management for a single key ratchet."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Callable

from .cryptor import AesGcmCryptor, create_cryptor

__all__ = [
    "RATCHET_GENERATION_SHIFT_BITS",
    "GENERATION_WRAP",
    "MAX_GENERATION_GAP",
    "MAX_MISSING_NONCES",
    "MAX_FRAMES_PER_SECOND",
    "CRYPTOR_EXPIRY",
    "KeyRatchet",
    "CryptorManager",
    "compute_wrapped_generation",
    "compute_wrapped_big_nonce",
]

log = logging.getLogger(__name__)

RATCHET_GENERATION_BYTES = 1
RATCHET_GENERATION_SHIFT_BITS = 8 * (4 - RATCHET_GENERATION_BYTES)
GENERATION_WRAP = 1 << (8 * RATCHET_GENERATION_BYTES)
MAX_GENERATION_GAP = 250
MAX_MISSING_NONCES = 1000
MAX_FRAMES_PER_SECOND = 50 + 2 * 60
CRYPTOR_EXPIRY = 10.0

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF


class KeyRatchet(ABC):
    """Source of per-generation encryption keys."""

    @abstractmethod
    def get_key(self, generation: int) -> bytes:
        """Return the key for the generation."""

    @abstractmethod
    def delete_key(self, generation: int) -> None:
        """Forget the key for the generation."""


def compute_wrapped_generation(oldest: int, generation: int) -> int:
    """Expand a wrapped generation to a full one relative to the oldest known."""
    remainder = oldest % GENERATION_WRAP
    factor = oldest // GENERATION_WRAP + (1 if generation < remainder else 0)
    return (factor * GENERATION_WRAP + generation) & _U32


def compute_wrapped_big_nonce(generation: int, nonce: int) -> int:
    """Combine a full generation with the counter bits of a truncated nonce."""
    masked_nonce = nonce & ((1 << RATCHET_GENERATION_SHIFT_BITS) - 1)
    return ((generation << RATCHET_GENERATION_SHIFT_BITS) | masked_nonce) & _U64


@dataclass
class _ExpiringCryptor:
    cryptor: AesGcmCryptor | None
    expiry: float


class CryptorManager:
    """Hands out cryptors per key generation and tracks processed nonces."""

    def __init__(
        self, key_ratchet: KeyRatchet, clock: Callable[[], float] | None = None
    ) -> None:
        self._clock = clock or time.monotonic
        self._key_ratchet = key_ratchet
        self._cryptors: dict[int, _ExpiringCryptor] = {}
        self._ratchet_creation = self._clock()
        self._ratchet_expiry = math.inf
        self._oldest_generation = 0
        self._newest_generation = 0
        self._newest_processed_nonce: int | None = None
        self._missing_nonces: deque[int] = deque()

    def update_expiry(self, expiry: float) -> None:
        """Set the clock time after which this manager is expired."""
        self._ratchet_expiry = expiry

    def is_expired(self) -> bool:
        return self._clock() > self._ratchet_expiry

    def can_process_nonce(self, generation: int, nonce: int) -> bool:
        """Whether the nonce is newer than any seen, or one that was skipped."""
        if self._newest_processed_nonce is None:
            return True
        big_nonce = compute_wrapped_big_nonce(generation, nonce)
        return big_nonce > self._newest_processed_nonce or big_nonce in self._missing_nonces

    def compute_wrapped_generation(self, generation: int) -> int:
        return compute_wrapped_generation(self._oldest_generation, generation)

    def get_cryptor(self, generation: int) -> AesGcmCryptor | None:
        """Return the cryptor for the generation, or None if it is not acceptable."""
        self._cleanup_expired_cryptors()

        if generation < self._oldest_generation:
            log.info(
                "Received frame with old generation: %d, oldest generation: %d",
                generation,
                self._oldest_generation,
            )
            return None

        if generation > self._newest_generation + MAX_GENERATION_GAP:
            log.info(
                "Received frame with future generation: %d, newest generation: %d",
                generation,
                self._newest_generation,
            )
            return None

        lifetime_sec = int(self._clock() - self._ratchet_creation)
        max_lifetime_generations = (
            MAX_FRAMES_PER_SECOND * lifetime_sec
        ) >> RATCHET_GENERATION_SHIFT_BITS
        if generation > max_lifetime_generations:
            log.info(
                "Received frame with generation %d beyond ratchet max lifetime "
                "generations: %d, ratchet lifetime: %ds",
                generation,
                max_lifetime_generations,
                lifetime_sec,
            )
            return None

        entry = self._cryptors.get(generation)
        if entry is None:
            entry = self._make_expiring_cryptor(generation)
            self._cryptors[generation] = entry
        return entry.cryptor

    def report_cryptor_success(self, generation: int, nonce: int) -> None:
        """Record a successful decryption for the generation and nonce."""
        big_nonce = compute_wrapped_big_nonce(generation, nonce)

        if self._newest_processed_nonce is None:
            self._newest_processed_nonce = big_nonce
        elif big_nonce > self._newest_processed_nonce:
            missing = min(big_nonce - self._newest_processed_nonce - 1, MAX_MISSING_NONCES)
            while self._missing_nonces and len(self._missing_nonces) + missing > MAX_MISSING_NONCES:
                self._missing_nonces.popleft()
            self._missing_nonces.extend(range(big_nonce - missing, big_nonce))
            self._newest_processed_nonce = big_nonce
        else:
            try:
                self._missing_nonces.remove(big_nonce)
            except ValueError:
                pass

        if generation <= self._newest_generation or generation not in self._cryptors:
            return
        log.info("Reporting cryptor success, generation: %d", generation)
        self._newest_generation = generation

        expiry_time = self._clock() + CRYPTOR_EXPIRY
        for gen, entry in self._cryptors.items():
            if gen < self._newest_generation:
                entry.expiry = min(entry.expiry, expiry_time)

    def _make_expiring_cryptor(self, generation: int) -> _ExpiringCryptor:
        key = self._key_ratchet.get_key(generation)
        expiry = math.inf
        if generation < self._newest_generation:
            log.info("Creating cryptor for old generation: %d", generation)
            expiry = self._clock() + CRYPTOR_EXPIRY
        else:
            log.info("Creating cryptor for new generation: %d", generation)
        return _ExpiringCryptor(create_cryptor(key), expiry)

    def _cleanup_expired_cryptors(self) -> None:
        now = self._clock()
        expired = [gen for gen, entry in self._cryptors.items() if entry.expiry < now]
        for gen in expired:
            log.info("Removing expired cryptor, generation: %d", gen)
            del self._cryptors[gen]

        while (
            self._oldest_generation < self._newest_generation
            and self._oldest_generation not in self._cryptors
        ):
            log.info("Deleting key for old generation: %d", self._oldest_generation)
            self._key_ratchet.delete_key(self._oldest_generation)
            self._oldest_generation += 1