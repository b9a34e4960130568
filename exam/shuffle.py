"""Deterministic answer shuffling for multiple-choice questions.

The order a user sees is never stored at render time. It is recomputed from
``(session_id, question_index)`` whenever it is needed, so the render path and
the answer-decoding path must both go through :func:`generate_shuffle`.

The seed is reproducible by anyone who knows the session id. That is
accepted: the shuffle stops answers being passed around as "press B", it is
not meant to resist someone recomputing it.
"""
from __future__ import annotations

import hashlib
import random

from .types import Permutation


def shuffle_seed(session_id: int, question_index: int) -> int:
    """Stable across processes and interpreter versions, unlike ``hash()``."""
    digest = hashlib.sha256(f"{session_id}:{question_index}".encode("ascii")).digest()
    return int.from_bytes(digest[:8], "big")


def generate_shuffle(session_id: int, question_index: int, answer_count: int) -> Permutation:
    """Return ``perm`` where ``perm[displayed_position] == original_answer_index``."""

    indices = list(range(max(answer_count, 0)))
    if answer_count <= 1:
        return indices

    rng = random.Random(shuffle_seed(session_id, question_index))
    # Fisher-Yates, last index down to 1
    for i in range(answer_count - 1, 0, -1):
        j = rng.randrange(i + 1)
        indices[i], indices[j] = indices[j], indices[i]
    return indices


def decode_position(session_id: int, question_index: int, answer_count: int, position: int) -> int:
    permutation = generate_shuffle(session_id, question_index, answer_count)
    return permutation[position]


__all__ = ["shuffle_seed", "generate_shuffle", "decode_position"]
