# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Visualization utilities for diff-rmap.

Lightweight Matplotlib rendering of a planner's
:class:`~diff_rmap.planning.base.PlanningOutput`, meant for debugging and for
the scripts in ``experiments/``. Everything is drawn top-down (x–y plane):

    • poses as points with a short heading arrow (the local x axis)
    • foot contact polygons, colored by stance when left / right lists exist
    • reachable-grid footprints as faint clouds, one disk per grid cell

The planners never import this module; pass :func:`plot_planning_output` (or
a closure around it) as the ``on_publish`` callback to watch a run.

Module contents:
    - `plot_planning_output()`: Draw one output snapshot on an axes.
    - `plot_reachable_points()`: Draw reachable-grid footprints.
    - `set_equal_bounds()`: Equal-aspect bounds around a set of points.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import PatchCollection
from matplotlib.patches import Circle, Polygon as MplPolygon

from diff_rmap.planning.base import PlanningOutput

HEADING_LENGTH = 0.1    # [m]
LEFT_COLOR = "C2"
RIGHT_COLOR = "C3"


def set_equal_bounds(ax, points: np.ndarray, margin: float = 1.1) -> None:
    """Dynamic bounds with equal aspect around ``points`` (n, >=2)."""
    if points.size == 0:
        return
    min_x, max_x = points[:, 0].min(), points[:, 0].max()
    min_y, max_y = points[:, 1].min(), points[:, 1].max()
    max_range = max(max_x - min_x, max_y - min_y) / 2.0
    if max_range < 1e-3:
        max_range = 1.0
    mid_x = 0.5 * (max_x + min_x)
    mid_y = 0.5 * (max_y + min_y)
    ax.set_xlim(mid_x - max_range * margin, mid_x + max_range * margin)
    ax.set_ylim(mid_y - max_range * margin, mid_y + max_range * margin)


def _draw_polygons(ax, polygons: Iterable[np.ndarray], color: str) -> None:
    for poly in polygons:
        ax.add_patch(MplPolygon(np.asarray(poly)[:, :2], closed=True, fill=False, edgecolor=color, linewidth=1.2))


def plot_reachable_points(
    ax,
    points_list: Sequence[np.ndarray],
    alternate_colors: bool = False,
    cell_scale: Optional[Sequence[float]] = None,
) -> None:
    """
    Draw each footprint of ``points_list`` as a faint cloud.

    With ``cell_scale`` (grid cell extent, see
    :func:`~diff_rmap.core.grid.calc_grid_cube_scale`) every point becomes a
    disk as wide as the smaller planar cell side, so the cloud covers the
    reachable area at any zoom; otherwise fixed-size markers are used.
    """
    radius = None
    if cell_scale is not None:
        radius = 0.5 * float(np.min(np.asarray(cell_scale, dtype=float)[:2]))
    for i, points in enumerate(points_list):
        points = np.asarray(points)
        if points.size == 0:
            continue
        color = (LEFT_COLOR if i % 2 == 1 else RIGHT_COLOR) if alternate_colors else "C1"
        if radius is None:
            ax.scatter(points[:, 0], points[:, 1], s=4, c=color, alpha=0.15, linewidths=0)
            continue
        disks = [Circle((float(x), float(y)), radius) for x, y in points[:, :2]]
        ax.add_collection(PatchCollection(disks, facecolor=color, edgecolor="none", alpha=0.15))


def plot_planning_output(
    output: PlanningOutput,
    ax=None,
    title: Optional[str] = None,
    show: bool = False,
):
    """
    Top-down rendering of one planner output.

    :param output: Snapshot produced by a planner's ``make_output()``.
    :param ax: Axes to draw on; a new figure is created when ``None``.
    :param title: Optional axes title.
    :param show: Call ``plt.show()`` after drawing.
    :returns: The axes drawn on.
    """
    if ax is None:
        _, ax = plt.subplots()
    ax.set_aspect("equal")

    if output.reachable_grid_points:
        plot_reachable_points(
            ax,
            output.reachable_grid_points,
            alternate_colors=bool(output.left_polygons),
            cell_scale=output.reachable_grid_cell_scale,
        )

    if output.left_polygons or output.right_polygons:
        _draw_polygons(ax, output.left_polygons, LEFT_COLOR)
        _draw_polygons(ax, output.right_polygons, RIGHT_COLOR)
    else:
        _draw_polygons(ax, output.polygons, "C0")

    extent = []
    for pose in output.poses:
        pose = np.asarray(pose)
        x, y = float(pose[0, 3]), float(pose[1, 3])
        heading = pose[:2, 0] * HEADING_LENGTH
        ax.scatter(x, y, s=20, c="k")
        ax.arrow(x, y, float(heading[0]), float(heading[1]), width=0.005, color="k")
        extent.append([x, y])
    for poly in output.polygons:
        extent.extend(np.asarray(poly)[:, :2].tolist())

    ax.set_xlabel("x [m]")
    ax.set_ylabel("y [m]")
    if title is not None:
        ax.set_title(title)
    set_equal_bounds(ax, np.asarray(extent, dtype=float).reshape(-1, 2))

    if show:
        plt.show()
    return ax
