"""Petal variant catalog: which picture in which texture each petal shows."""

import logging
import os
from dataclasses import dataclass

import numpy as np
from PIL import Image

from petals.config import PetalTextureConfig
from petals.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PetalVariant:
    """One petal picture: a normalized sub-rectangle of a source texture."""

    texture_index: int
    u: float
    v: float
    width: float
    height: float
    scale: float = 1.0

    @property
    def aspect_ratio(self) -> float:
        """Width / height of the picture."""
        return self.width / self.height


class VariantCatalog:
    """Immutable list of petal variants plus the texture files they reference."""

    def __init__(self, variants: list[PetalVariant], texture_paths: list[str]):
        if not variants:
            raise ConfigurationError("The petal variant catalog is empty")
        for i, variant in enumerate(variants):
            if not 0 <= variant.texture_index < len(texture_paths):
                raise ConfigurationError(
                    f"Variant {i} references texture {variant.texture_index}, "
                    f"but only {len(texture_paths)} textures are defined"
                )
        self._variants = tuple(variants)
        self.texture_paths = list(texture_paths)

    @classmethod
    def from_config(
        cls,
        textures: list[PetalTextureConfig],
        check_files: bool = True,
    ) -> "VariantCatalog":
        """Build the catalog from the ``[[petal_textures]]`` configuration entries.

        Grid coordinates are converted to normalized texture coordinates with the
        per-texture multipliers. A variant's scale is the texture scale times the
        picture height in grid cells, so taller pictures become larger petals.
        """
        variants = []
        paths = []
        for texture_index, texture in enumerate(textures):
            if check_files and not os.path.isfile(texture.file):
                raise ConfigurationError(f"Petal texture file not found: {texture.file}")
            paths.append(texture.file)
            for x, y, w, h in texture.petal_coordinates:
                variants.append(
                    PetalVariant(
                        texture_index=texture_index,
                        u=x * texture.x_multiplier,
                        v=y * texture.y_multiplier,
                        width=w * texture.x_multiplier,
                        height=h * texture.y_multiplier,
                        scale=texture.scale * h,
                    )
                )
        logger.debug("Built %d petal variants from %d textures", len(variants), len(paths))
        return cls(variants, paths)

    def __len__(self) -> int:
        return len(self._variants)

    def __getitem__(self, index: int) -> PetalVariant:
        return self._variants[index]

    def __iter__(self):
        return iter(self._variants)

    @property
    def n_textures(self) -> int:
        return len(self.texture_paths)

    def rects(self) -> np.ndarray:
        """(n_variants, 4) float32 array of (u, v, width, height)."""
        return np.array([[v.u, v.v, v.width, v.height] for v in self._variants], dtype=np.float32)

    def texture_indices(self) -> np.ndarray:
        return np.array([v.texture_index for v in self._variants], dtype=np.uint32)

    def aspect_ratios(self) -> np.ndarray:
        return np.array([v.aspect_ratio for v in self._variants], dtype=np.float64)

    def scales(self) -> np.ndarray:
        return np.array([v.scale for v in self._variants], dtype=np.float64)


def premultiply_alpha(rgba: np.ndarray) -> np.ndarray:
    """Multiply color channels by alpha for premultiplied-alpha blending.

    Args:
        rgba: (H, W, 4) uint8 image

    Returns:
        (H, W, 4) uint8 image with rgb scaled by a / 255
    """
    out = rgba.astype(np.uint16)
    out[..., :3] = out[..., :3] * out[..., 3:4] // 255
    return out.astype(np.uint8)


def load_texture_images(paths: list[str]) -> np.ndarray:
    """Load petal textures as one premultiplied RGBA stack.

    Textures are resized to the size of the largest one so they can share a
    texture array; normalized sub-rectangles are unaffected by the resize.

    Returns:
        (n_textures, H, W, 4) uint8 array
    """
    images = []
    for path in paths:
        try:
            with Image.open(path) as img:
                images.append(img.convert("RGBA"))
        except OSError as e:
            raise ConfigurationError(f"Cannot load petal texture {path}: {e}") from e

    width = max(img.width for img in images)
    height = max(img.height for img in images)
    layers = []
    for path, img in zip(paths, images):
        if img.size != (width, height):
            logger.debug("Resizing %s from %dx%d to %dx%d", path, img.width, img.height, width, height)
            img = img.resize((width, height), Image.Resampling.LANCZOS)
        layers.append(premultiply_alpha(np.asarray(img, dtype=np.uint8)))
    return np.stack(layers)
