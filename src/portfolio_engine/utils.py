from __future__ import annotations

from typing import List, Optional

import numpy as np


def seed_sequence(seed: Optional[int]) -> np.random.SeedSequence:
    """Seed source for a run; ``None`` draws fresh OS entropy."""

    return np.random.SeedSequence(seed)


def spawn_generators(seed: np.random.SeedSequence, count: int) -> List[np.random.Generator]:
    """Independent child generators, one per sampling chunk."""

    return [np.random.default_rng(child) for child in seed.spawn(count)]


def mirror_upper(matrix: np.ndarray) -> np.ndarray:
    """Copy the upper triangle onto the lower one so the result is exactly symmetric."""

    out = np.array(matrix, dtype=float, copy=True)
    lower = np.tril_indices_from(out, k=-1)
    out[lower] = out.T[lower]
    return out


def safe_ratio(numerator: np.ndarray, denominator: np.ndarray, floor: float = 1e-12) -> np.ndarray:
    """Elementwise ratio that is 0 wherever ``denominator <= floor``."""

    num = np.asarray(numerator, dtype=float)
    den = np.asarray(denominator, dtype=float)
    return np.divide(num, den, out=np.zeros(np.broadcast(num, den).shape), where=den > floor)
