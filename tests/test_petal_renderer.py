"""Tests for the GL-free parts of the petal renderer."""

import numpy as np

from petals.config import PetalTextureConfig
from petals.variants import VariantCatalog
from viewer.petal_renderer import (
    PetalRenderer,
    bgra_rows_top_first,
    build_shader_sources,
    variant_block_data,
)


def make_catalog():
    texture = PetalTextureConfig(
        file="atlas.png",
        x_multiplier=0.125,
        y_multiplier=0.125,
        petal_coordinates=[[0.0, 0.0, 2.0, 1.0], [2.0, 0.0, 2.0, 1.0], [0.0, 4.0, 2.0, 2.0]],
    )
    return VariantCatalog.from_config([texture], check_files=False)


class TestShaderSources:
    def test_array_sizes_filled(self):
        vertex, fragment = build_shader_sources(n_variants=24, n_petals=7000)
        assert "variant_rects[24]" in vertex
        assert "packed_indices[1750]" in vertex
        assert "N_PETAL_VARIANTS" not in vertex
        assert "N_VEC4_OF_PETAL_INDICES" not in vertex
        assert "sampler2DArray" in fragment

    def test_partial_slot_rounds_up(self):
        vertex, _ = build_shader_sources(n_variants=1, n_petals=5)
        assert "packed_indices[2]" in vertex

    def test_reads_index_by_instance(self):
        vertex, _ = build_shader_sources(n_variants=1, n_petals=4)
        assert "packed_indices[gl_InstanceID / 4][gl_InstanceID % 4]" in vertex


class TestVariantBlock:
    def test_layout(self):
        catalog = make_catalog()
        data = variant_block_data(catalog)
        # std140: 16 bytes per vec4 rect, then 16 bytes per uvec4 layer
        assert data.nbytes == 2 * 16 * len(catalog)
        rects = np.frombuffer(data[: 16 * 3].tobytes(), dtype=np.float32).reshape(3, 4)
        np.testing.assert_allclose(rects[1], [0.25, 0.0, 0.25, 0.125])
        layers = np.frombuffer(data[16 * 3:].tobytes(), dtype=np.uint32).reshape(3, 4)
        np.testing.assert_array_equal(layers[:, 0], [0, 0, 0])


class TestReadback:
    def test_flip_rows(self):
        width, height = 2, 3
        image = np.arange(height * width * 4, dtype=np.uint8).reshape(height, width, 4)
        flipped = bgra_rows_top_first(image.tobytes(), width, height)
        result = np.frombuffer(flipped, dtype=np.uint8).reshape(height, width, 4)
        np.testing.assert_array_equal(result[0], image[2])
        np.testing.assert_array_equal(result[2], image[0])


class TestPetalRenderer:
    def test_mesh_prepared_without_gl(self):
        renderer = PetalRenderer(make_catalog(), n_petals=8, window_size=(640, 360))
        assert renderer.vertices.shape == (9, 3)
        assert renderer.faces.shape == (8, 3)
        assert renderer.export_size is None
