# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Sample-set records exchanged with the (external) classifier trainer.

A sample set is the list of labeled pose samples that a kinematic sampler
produced for one sampling space, together with the global min / max of the
samples. libsvm treats the first label it sees as the positive class, so
reachable samples are stored first (in their original order) and unreachable
samples are filled in from the end of the list. Training on such a set makes
"reachable" the positive side of the decision function.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from diff_rmap.core.sampling import get_sample_space
from diff_rmap.core.types import SamplingSpace


@dataclass(frozen=True)
class SampleRecord:
    position: np.ndarray
    is_reachable: bool


@dataclass
class SampleSet:
    sampling_space: SamplingSpace
    samples: List[SampleRecord] = field(default_factory=list)
    sample_min: np.ndarray = None
    sample_max: np.ndarray = None

    @classmethod
    def from_samples(
        cls,
        sampling_space,
        samples: Sequence,
        reachabilities: Sequence[bool],
    ) -> "SampleSet":
        """Build a sample set with reachable samples first."""
        space = get_sample_space(sampling_space)
        samples = np.asarray(samples, dtype=float).reshape(-1, space.sample_dim)
        if len(reachabilities) != samples.shape[0]:
            raise ValueError(
                f"{samples.shape[0]} samples but {len(reachabilities)} reachability flags"
            )

        num = samples.shape[0]
        records: List[SampleRecord] = [None] * num
        reachable_idx = 0
        unreachable_idx = 0
        for sample, is_reachable in zip(samples, reachabilities):
            if is_reachable:
                msg_idx = reachable_idx
                reachable_idx += 1
            else:
                msg_idx = num - 1 - unreachable_idx
                unreachable_idx += 1
            records[msg_idx] = SampleRecord(position=sample.copy(), is_reachable=bool(is_reachable))

        if num > 0:
            sample_min = samples.min(axis=0)
            sample_max = samples.max(axis=0)
        else:
            sample_min = np.zeros(space.sample_dim)
            sample_max = np.zeros(space.sample_dim)
        return cls(
            sampling_space=space.sampling_space,
            samples=records,
            sample_min=sample_min,
            sample_max=sample_max,
        )

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def num_reachable(self) -> int:
        return sum(1 for r in self.samples if r.is_reachable)

    def training_data(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Classifier inputs and ±1 labels, in record order.

        :returns: ``(inputs, labels)`` with shapes ``(n, input_dim)`` and ``(n,)``.
        """
        space = get_sample_space(self.sampling_space)
        if not self.samples:
            return np.zeros((0, space.input_dim)), np.zeros((0,))
        positions = jnp.asarray(np.stack([r.position for r in self.samples]))
        inputs = np.asarray(jax.vmap(space.sample_to_input)(positions))
        labels = np.array([1.0 if r.is_reachable else -1.0 for r in self.samples])
        return inputs, labels
