# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Grid indexing utilities for reachable-set grids.

A reachable-set grid discretizes the bounding box ``[sample_min,
sample_min + sample_range]`` of a sampling space into ``divide_nums[i]`` cells
per sample dimension. Cells are addressed either by their multi-dimensional
index or by a linear index in row-major (C) order, which is also the order of
the grid's flat value array.

Key functions
-------------
grid_divide_ratios_to_idxs(ratios, divide_nums)
    Fractional position in [0, 1] -> cell index (floor, clamped).

loop_grid(divide_nums, sample_min, sample_range, restricted_dims, fixed_idxs)
    Lazy, restartable iteration over ``(linear index, cell-center sample)``.
    With ``restricted_dims`` only those dimensions are iterated and the others
    stay at ``fixed_idxs``, which yields 2-D slices of higher-dimensional grids.

calc_grid_cube_scale(divide_nums, sample_range)
    Cell size per dimension (rendering only).

Grid bookkeeping is integer work on small arrays, so it is done in NumPy
rather than JAX.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np


def _as_divide_nums(divide_nums: Sequence[int]) -> np.ndarray:
    divide_nums = np.asarray(divide_nums, dtype=int)
    if divide_nums.ndim != 1 or np.any(divide_nums < 1):
        raise ValueError(f"divide_nums must be a 1-D sequence of positive ints, got {divide_nums}")
    return divide_nums


def grid_divide_ratios_to_idxs(ratios: Sequence[float], divide_nums: Sequence[int]) -> np.ndarray:
    """
    Map per-dimension ratios in [0, 1] to cell indices.

    Indices are truncated toward the lower cell and clamped to
    ``[0, divide_nums[i] - 1]``; a non-finite ratio (degenerate range) maps to
    the nearest end of the grid.
    """
    divide_nums = _as_divide_nums(divide_nums)
    ratios = np.nan_to_num(np.asarray(ratios, dtype=float), nan=0.0, posinf=1.0, neginf=0.0)
    if ratios.shape != divide_nums.shape:
        raise ValueError(f"ratios shape {ratios.shape} does not match divide_nums {divide_nums.shape}")
    idxs = np.floor(ratios * divide_nums).astype(int)
    return np.clip(idxs, 0, divide_nums - 1)


def grid_idxs_to_linear(idxs: Sequence[int], divide_nums: Sequence[int]) -> int:
    return int(np.ravel_multi_index(tuple(int(i) for i in idxs), tuple(_as_divide_nums(divide_nums))))


def grid_linear_to_idxs(grid_idx: int, divide_nums: Sequence[int]) -> np.ndarray:
    return np.asarray(np.unravel_index(int(grid_idx), tuple(_as_divide_nums(divide_nums))), dtype=int)


def grid_idxs_to_sample(
    idxs: Sequence[int],
    divide_nums: Sequence[int],
    sample_min: Sequence[float],
    sample_range: Sequence[float],
) -> np.ndarray:
    """Sample at the center of a cell."""
    divide_nums = _as_divide_nums(divide_nums)
    idxs = np.asarray(idxs, dtype=float)
    return np.asarray(sample_min, dtype=float) + np.asarray(sample_range, dtype=float) * (idxs + 0.5) / divide_nums


def calc_grid_cube_scale(divide_nums: Sequence[int], sample_range: Sequence[float]) -> np.ndarray:
    return np.asarray(sample_range, dtype=float) / _as_divide_nums(divide_nums)


@dataclass(frozen=True)
class GridLoop:
    """
    Iterable over grid cells. Each ``iter()`` call starts a new pass, so one
    GridLoop can be traversed any number of times.
    """
    divide_nums: Tuple[int, ...]
    sample_min: np.ndarray
    sample_range: np.ndarray
    loop_dims: Tuple[int, ...]
    fixed_idxs: Tuple[int, ...]

    def __len__(self) -> int:
        return int(np.prod([self.divide_nums[d] for d in self.loop_dims], dtype=int))

    def __iter__(self) -> Iterator[Tuple[int, np.ndarray]]:
        axes = [
            range(n) if d in self.loop_dims else (self.fixed_idxs[d],)
            for d, n in enumerate(self.divide_nums)
        ]
        for idxs in itertools.product(*axes):
            grid_idx = int(np.ravel_multi_index(idxs, self.divide_nums))
            sample = grid_idxs_to_sample(idxs, self.divide_nums, self.sample_min, self.sample_range)
            yield grid_idx, sample


def loop_grid(
    divide_nums: Sequence[int],
    sample_min: Sequence[float],
    sample_range: Sequence[float],
    restricted_dims: Optional[Sequence[int]] = None,
    fixed_idxs: Optional[Sequence[int]] = None,
) -> GridLoop:
    """
    Build an iterable over ``(linear index, cell-center sample)`` pairs.

    :param divide_nums: Number of cells per sample dimension.
    :param sample_min: Lower corner of the grid bounding box.
    :param sample_range: Extent of the bounding box per dimension.
    :param restricted_dims: Dimensions to iterate over (all when ``None``).
    :param fixed_idxs: Full index vector; entries of non-iterated dimensions
        hold those dimensions fixed. Required when ``restricted_dims`` is given.
    """
    divide_nums = _as_divide_nums(divide_nums)
    dim = divide_nums.shape[0]
    sample_min = np.asarray(sample_min, dtype=float)
    sample_range = np.asarray(sample_range, dtype=float)
    if sample_min.shape != (dim,) or sample_range.shape != (dim,):
        raise ValueError("sample_min / sample_range must match divide_nums")

    if restricted_dims is None:
        loop_dims = tuple(range(dim))
        fixed = (0,) * dim
    else:
        loop_dims = tuple(sorted(set(int(d) for d in restricted_dims)))
        if any(d < 0 or d >= dim for d in loop_dims):
            raise ValueError(f"restricted_dims {restricted_dims} out of range for {dim} dimensions")
        if fixed_idxs is None:
            raise ValueError("fixed_idxs is required when restricted_dims is given")
        fixed = tuple(int(i) for i in fixed_idxs)
        if len(fixed) != dim:
            raise ValueError(f"fixed_idxs must have {dim} entries, got {len(fixed)}")
        for d in range(dim):
            if d not in loop_dims and not 0 <= fixed[d] < divide_nums[d]:
                raise ValueError(f"fixed index {fixed[d]} out of range in dimension {d}")

    return GridLoop(
        divide_nums=tuple(int(n) for n in divide_nums),
        sample_min=sample_min,
        sample_range=sample_range,
        loop_dims=loop_dims,
        fixed_idxs=fixed,
    )
