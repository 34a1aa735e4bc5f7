"""Procedural petal mesh: a 3x3 vertex grid bent out of plane.

The petal spans [-1, 1] in x and y. Each of the nine vertices is pushed along
z by its bend offset, giving the flat picture a slight curl. Eight triangles
fan around the center vertex.
"""

import numpy as np

# Fan around the center vertex (index 4), walking the border clockwise
PETAL_FACES = np.array([
    [0, 4, 1],
    [1, 4, 2],
    [2, 4, 5],
    [5, 4, 8],
    [8, 4, 7],
    [7, 4, 6],
    [6, 4, 3],
    [3, 4, 0],
], dtype=np.int32)


def generate_petal_mesh(
    bend_offsets=None,
    bend_multiplier: float = 0.1,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Generate the petal grid.

    Vertex ``3 * row + col`` sits at x = col - 1, y = 1 - row: row-major from
    the top-left corner.

    Args:
        bend_offsets: 9 z offsets in vertex order; None gives a flat petal
        bend_multiplier: scale applied to every offset

    Returns:
        vertices: (9, 3) float32
        texcoords: (9, 2) float32 in [0, 1], image top at the petal's +y edge
        faces: (8, 3) int32 triangle indices
    """
    if bend_offsets is None:
        bend_offsets = np.zeros(9)
    offsets = np.asarray(bend_offsets, dtype=np.float64)
    if offsets.shape != (9,):
        raise ValueError(f"Need 9 bend offsets, got shape {offsets.shape}")

    rows, cols = np.meshgrid(np.arange(3), np.arange(3), indexing="ij")
    x = (cols - 1).reshape(-1).astype(np.float64)
    y = (1 - rows).reshape(-1).astype(np.float64)
    z = offsets * bend_multiplier

    vertices = np.stack([x, y, z], axis=-1).astype(np.float32)
    texcoords = np.stack([(x + 1.0) / 2.0, (1.0 - y) / 2.0], axis=-1).astype(np.float32)
    return vertices, texcoords, PETAL_FACES.copy()
