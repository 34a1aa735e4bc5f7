"""Procedural petal texture atlas.

Draws the default atlas referenced by the generated configuration: an 8x8
grid of 128 pixel cells. Rows 0-3 hold sixteen wide petals of 2x1 cells and
rows 4-7 hold eight larger petals of 2x2 cells, matching
``petals.config.DEFAULT_PETAL_COORDINATES``.
"""

import argparse
import logging

import numpy as np
from PIL import Image, ImageDraw

from petals.config import DEFAULT_ATLAS_FILENAME, DEFAULT_PETAL_COORDINATES

logger = logging.getLogger(__name__)

GRID_CELLS = 8
CELL_SIZE = 128
SUPERSAMPLE = 4


def petal_color(rng: np.random.Generator) -> tuple[int, int, int]:
    """A random pale pink, from near-white to cherry blossom."""
    base = np.array([255.0, 183.0, 197.0])
    white = np.array([255.0, 240.0, 245.0])
    t = rng.random()
    return tuple(int(c) for c in np.round(base * (1.0 - t) + white * t))


def draw_petal(draw: ImageDraw.ImageDraw, box, color, notch: bool):
    """One petal filling ``box`` (pixels), tip notched toward +x."""
    x0, y0, x1, y1 = box
    w, h = x1 - x0, y1 - y0
    margin_x, margin_y = 0.06 * w, 0.1 * h
    draw.ellipse(
        [x0 + margin_x, y0 + margin_y, x1 - margin_x, y1 - margin_y],
        fill=color + (255,),
    )
    # Darker base where the petal joined the flower
    base = tuple(max(0, c - 40) for c in color) + (255,)
    draw.ellipse(
        [x0 + margin_x, y0 + 0.35 * h, x0 + 0.3 * w, y1 - 0.35 * h],
        fill=base,
    )
    if notch:
        tip_x = x1 - margin_x
        mid_y = y0 + h / 2
        draw.polygon(
            [(tip_x + 1, mid_y - 0.12 * h), (tip_x - 0.12 * w, mid_y), (tip_x + 1, mid_y + 0.12 * h)],
            fill=(0, 0, 0, 0),
        )


def generate_atlas(seed: int = 0) -> Image.Image:
    """Render the atlas as a straight-alpha RGBA image."""
    rng = np.random.default_rng(seed)
    size = GRID_CELLS * CELL_SIZE * SUPERSAMPLE
    cell = CELL_SIZE * SUPERSAMPLE
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    for x, y, w, h in DEFAULT_PETAL_COORDINATES:
        box = (x * cell, y * cell, (x + w) * cell, (y + h) * cell)
        draw_petal(draw, box, petal_color(rng), notch=bool(rng.random() < 0.7))

    return img.resize((GRID_CELLS * CELL_SIZE,) * 2, Image.Resampling.LANCZOS)


def write_atlas(path: str = DEFAULT_ATLAS_FILENAME, seed: int = 0):
    generate_atlas(seed).save(path)
    logger.info("Wrote petal atlas to %s", path)


def main():
    parser = argparse.ArgumentParser(description="Generate the default petal texture atlas")
    parser.add_argument("--output", default=DEFAULT_ATLAS_FILENAME, help="Output PNG path")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for petal colors")
    args = parser.parse_args()

    write_atlas(args.output, args.seed)
    print(f"Saved {args.output}")


if __name__ == "__main__":
    main()
