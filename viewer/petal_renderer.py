"""OpenGL instanced petal renderer with an optional offscreen export target."""

import ctypes
import logging

import numpy as np

from data.generate_petal import generate_petal_mesh
from petals.errors import BackendError
from petals.packing import n_slots
from petals.variants import VariantCatalog, load_texture_images

logger = logging.getLogger(__name__)

# Lazy imports: OpenGL may not be available in headless/test environments
_gl = None
_shaders = None
_gl_error = None


def _import_gl():
    global _gl, _shaders, _gl_error
    if _gl is None:
        import OpenGL.GL as GL
        import OpenGL.error
        from OpenGL.GL import shaders
        _gl = GL
        _shaders = shaders
        _gl_error = OpenGL.error.GLError
    return _gl, _shaders


VERTEX_SHADER = """
#version 330 core

layout(location = 0) in vec3 a_position;
layout(location = 1) in vec2 a_texcoord;
// Pose matrix, one column per attribute, advanced once per instance
layout(location = 2) in vec4 a_pose0;
layout(location = 3) in vec4 a_pose1;
layout(location = 4) in vec4 a_pose2;
layout(location = 5) in vec4 a_pose3;

uniform mat4 u_view_projection;

layout(std140) uniform PetalVariants {
    vec4 variant_rects[N_PETAL_VARIANTS];
    uvec4 variant_layers[N_PETAL_VARIANTS];
};

layout(std140) uniform VariantIndices {
    uvec4 packed_indices[N_VEC4_OF_PETAL_INDICES];
};

out vec3 v_texcoord;

void main() {
    mat4 pose = mat4(a_pose0, a_pose1, a_pose2, a_pose3);
    uint variant = packed_indices[gl_InstanceID / 4][gl_InstanceID % 4];
    vec4 rect = variant_rects[variant];
    v_texcoord = vec3(rect.xy + a_texcoord * rect.zw, float(variant_layers[variant].x));
    gl_Position = u_view_projection * pose * vec4(a_position, 1.0);
}
"""

FRAGMENT_SHADER = """
#version 330 core

in vec3 v_texcoord;
uniform sampler2DArray u_textures;
out vec4 frag_color;

void main() {
    // Textures hold premultiplied alpha
    vec4 color = texture(u_textures, v_texcoord);
    if (color.a < 1.0 / 255.0)
        discard;
    frag_color = color;
}
"""

CLEAR_COLOR = (0.05, 0.05, 0.1, 1.0)

VARIANTS_BINDING = 0
INDICES_BINDING = 1


def build_shader_sources(n_variants: int, n_petals: int) -> tuple[str, str]:
    """Fill the array sizes the shaders are compiled with."""
    vertex = (
        VERTEX_SHADER
        .replace("N_PETAL_VARIANTS", str(n_variants))
        .replace("N_VEC4_OF_PETAL_INDICES", str(n_slots(n_petals)))
    )
    return vertex, FRAGMENT_SHADER


def variant_block_data(catalog: VariantCatalog) -> np.ndarray:
    """std140 bytes of the PetalVariants block: all rects, then all layers."""
    layers = np.zeros((len(catalog), 4), dtype=np.uint32)
    layers[:, 0] = catalog.texture_indices()
    return np.frombuffer(catalog.rects().tobytes() + layers.tobytes(), dtype=np.uint8)


def bgra_rows_top_first(pixels: bytes, width: int, height: int) -> bytes:
    """Flip glReadPixels output (bottom row first) to top row first."""
    image = np.frombuffer(pixels, dtype=np.uint8).reshape(height, width, 4)
    return image[::-1].tobytes()


class PetalRenderer:
    """Draws every petal with one instanced call.

    Per-vertex data is the bent 3x3 petal mesh. Per-instance data is the
    sorted pose buffer (vertex attributes) and the packed variant indices
    (a uniform block read with gl_InstanceID).

    Args:
        catalog: petal variants and their texture files
        n_petals: instance count; fixes buffer sizes
        window_size: (width, height) of the live view
        export_size: (width, height) of the offscreen target, or None
        bend_offsets: 9 z offsets of the petal mesh
        bend_multiplier: scale applied to ``bend_offsets``
    """

    def __init__(
        self,
        catalog: VariantCatalog,
        n_petals: int,
        window_size: tuple[int, int],
        export_size: tuple[int, int] = None,
        bend_offsets=None,
        bend_multiplier: float = 0.1,
    ):
        self.catalog = catalog
        self.n_petals = n_petals
        self.window_size = window_size
        self.export_size = export_size
        self.vertices, self.texcoords, self.faces = generate_petal_mesh(bend_offsets, bend_multiplier)

        self._program = None
        self._vao = None
        self._buffers = []
        self._instance_vbo = None
        self._indices_ubo = None
        self._texture = None
        self._fbo = None
        self._color_rb = None
        self._vp_location = None

    def max_uniform_block_size(self) -> int:
        """GL_MAX_UNIFORM_BLOCK_SIZE of the current context."""
        GL, _ = _import_gl()
        return int(GL.glGetIntegerv(GL.GL_MAX_UNIFORM_BLOCK_SIZE))

    def init_gl(self):
        """Create GL objects (call after context creation)."""
        GL, _ = _import_gl()
        try:
            self._build_program()
            self._build_buffers()
            self._load_textures()
            if self.export_size is not None:
                self._build_framebuffer()
        except BackendError:
            raise
        except (RuntimeError, _gl_error) as e:
            raise BackendError(f"OpenGL setup failed: {e}") from e

        GL.glDisable(GL.GL_DEPTH_TEST)
        GL.glDisable(GL.GL_CULL_FACE)
        GL.glEnable(GL.GL_BLEND)
        GL.glBlendFunc(GL.GL_ONE, GL.GL_ONE_MINUS_SRC_ALPHA)
        GL.glPixelStorei(GL.GL_PACK_ALIGNMENT, 1)
        GL.glClearColor(*CLEAR_COLOR)
        logger.info("Renderer ready: %d petals, %d variants", self.n_petals, len(self.catalog))

    def _build_program(self):
        GL, shaders = _import_gl()
        vertex_src, fragment_src = build_shader_sources(len(self.catalog), self.n_petals)
        try:
            vert = shaders.compileShader(vertex_src, GL.GL_VERTEX_SHADER)
            frag = shaders.compileShader(fragment_src, GL.GL_FRAGMENT_SHADER)
            self._program = shaders.compileProgram(vert, frag)
        except RuntimeError as e:
            raise BackendError(f"Petal shader failed to build: {e}") from e

        program = self._program
        self._vp_location = GL.glGetUniformLocation(program, "u_view_projection")
        GL.glUseProgram(program)
        GL.glUniform1i(GL.glGetUniformLocation(program, "u_textures"), 0)
        GL.glUniformBlockBinding(
            program, GL.glGetUniformBlockIndex(program, "PetalVariants"), VARIANTS_BINDING
        )
        GL.glUniformBlockBinding(
            program, GL.glGetUniformBlockIndex(program, "VariantIndices"), INDICES_BINDING
        )

    def _build_buffers(self):
        GL, _ = _import_gl()
        self._vao = GL.glGenVertexArrays(1)
        GL.glBindVertexArray(self._vao)

        # Mesh: interleaved position (3) + texcoord (2)
        mesh = np.hstack([self.vertices, self.texcoords]).astype(np.float32)
        vbo = GL.glGenBuffers(1)
        GL.glBindBuffer(GL.GL_ARRAY_BUFFER, vbo)
        GL.glBufferData(GL.GL_ARRAY_BUFFER, mesh.nbytes, mesh, GL.GL_STATIC_DRAW)
        GL.glVertexAttribPointer(0, 3, GL.GL_FLOAT, GL.GL_FALSE, 20, ctypes.c_void_p(0))
        GL.glEnableVertexAttribArray(0)
        GL.glVertexAttribPointer(1, 2, GL.GL_FLOAT, GL.GL_FALSE, 20, ctypes.c_void_p(12))
        GL.glEnableVertexAttribArray(1)

        faces = self.faces.astype(np.uint32)
        ebo = GL.glGenBuffers(1)
        GL.glBindBuffer(GL.GL_ELEMENT_ARRAY_BUFFER, ebo)
        GL.glBufferData(GL.GL_ELEMENT_ARRAY_BUFFER, faces.nbytes, faces, GL.GL_STATIC_DRAW)

        # Instances: one 4x4 column-major pose per petal
        self._instance_vbo = GL.glGenBuffers(1)
        GL.glBindBuffer(GL.GL_ARRAY_BUFFER, self._instance_vbo)
        GL.glBufferData(GL.GL_ARRAY_BUFFER, self.n_petals * 64, None, GL.GL_STREAM_DRAW)
        for column in range(4):
            location = 2 + column
            GL.glVertexAttribPointer(
                location, 4, GL.GL_FLOAT, GL.GL_FALSE, 64, ctypes.c_void_p(16 * column)
            )
            GL.glEnableVertexAttribArray(location)
            GL.glVertexAttribDivisor(location, 1)
        GL.glBindVertexArray(0)

        variants = variant_block_data(self.catalog)
        variants_ubo = GL.glGenBuffers(1)
        GL.glBindBuffer(GL.GL_UNIFORM_BUFFER, variants_ubo)
        GL.glBufferData(GL.GL_UNIFORM_BUFFER, variants.nbytes, variants, GL.GL_STATIC_DRAW)
        GL.glBindBufferBase(GL.GL_UNIFORM_BUFFER, VARIANTS_BINDING, variants_ubo)

        self._indices_ubo = GL.glGenBuffers(1)
        GL.glBindBuffer(GL.GL_UNIFORM_BUFFER, self._indices_ubo)
        GL.glBufferData(GL.GL_UNIFORM_BUFFER, 16 * n_slots(self.n_petals), None, GL.GL_STREAM_DRAW)
        GL.glBindBufferBase(GL.GL_UNIFORM_BUFFER, INDICES_BINDING, self._indices_ubo)
        GL.glBindBuffer(GL.GL_UNIFORM_BUFFER, 0)

        self._buffers = [vbo, ebo, self._instance_vbo, variants_ubo, self._indices_ubo]

    def _load_textures(self):
        GL, _ = _import_gl()
        images = load_texture_images(self.catalog.texture_paths)
        n_layers, height, width, _ = images.shape
        self._texture = GL.glGenTextures(1)
        GL.glActiveTexture(GL.GL_TEXTURE0)
        GL.glBindTexture(GL.GL_TEXTURE_2D_ARRAY, self._texture)
        GL.glTexImage3D(
            GL.GL_TEXTURE_2D_ARRAY, 0, GL.GL_RGBA8, width, height, n_layers, 0,
            GL.GL_RGBA, GL.GL_UNSIGNED_BYTE, np.ascontiguousarray(images),
        )
        GL.glTexParameteri(GL.GL_TEXTURE_2D_ARRAY, GL.GL_TEXTURE_MIN_FILTER, GL.GL_LINEAR_MIPMAP_LINEAR)
        GL.glTexParameteri(GL.GL_TEXTURE_2D_ARRAY, GL.GL_TEXTURE_MAG_FILTER, GL.GL_LINEAR)
        GL.glTexParameteri(GL.GL_TEXTURE_2D_ARRAY, GL.GL_TEXTURE_WRAP_S, GL.GL_CLAMP_TO_EDGE)
        GL.glTexParameteri(GL.GL_TEXTURE_2D_ARRAY, GL.GL_TEXTURE_WRAP_T, GL.GL_CLAMP_TO_EDGE)
        GL.glGenerateMipmap(GL.GL_TEXTURE_2D_ARRAY)
        logger.debug("Uploaded %d petal textures at %dx%d", n_layers, width, height)

    def _build_framebuffer(self):
        GL, _ = _import_gl()
        width, height = self.export_size
        self._fbo = GL.glGenFramebuffers(1)
        GL.glBindFramebuffer(GL.GL_FRAMEBUFFER, self._fbo)
        self._color_rb = GL.glGenRenderbuffers(1)
        GL.glBindRenderbuffer(GL.GL_RENDERBUFFER, self._color_rb)
        GL.glRenderbufferStorage(GL.GL_RENDERBUFFER, GL.GL_RGBA8, width, height)
        GL.glFramebufferRenderbuffer(
            GL.GL_FRAMEBUFFER, GL.GL_COLOR_ATTACHMENT0, GL.GL_RENDERBUFFER, self._color_rb
        )
        status = GL.glCheckFramebufferStatus(GL.GL_FRAMEBUFFER)
        GL.glBindFramebuffer(GL.GL_FRAMEBUFFER, 0)
        if status != GL.GL_FRAMEBUFFER_COMPLETE:
            raise BackendError(f"Offscreen framebuffer is incomplete (status 0x{int(status):x})")

    def upload(self, pose_buffer: np.ndarray, variant_buffer: np.ndarray, view_projection: np.ndarray):
        GL, _ = _import_gl()
        GL.glBindBuffer(GL.GL_ARRAY_BUFFER, self._instance_vbo)
        GL.glBufferSubData(GL.GL_ARRAY_BUFFER, 0, pose_buffer.nbytes, pose_buffer)
        GL.glBindBuffer(GL.GL_UNIFORM_BUFFER, self._indices_ubo)
        GL.glBufferSubData(GL.GL_UNIFORM_BUFFER, 0, variant_buffer.nbytes, variant_buffer)
        GL.glBindBuffer(GL.GL_UNIFORM_BUFFER, 0)

        GL.glUseProgram(self._program)
        # numpy matrices are row-major
        GL.glUniformMatrix4fv(
            self._vp_location, 1, GL.GL_TRUE, np.ascontiguousarray(view_projection, dtype=np.float32)
        )

    def _draw(self, instance_count: int):
        GL, _ = _import_gl()
        GL.glClear(GL.GL_COLOR_BUFFER_BIT)
        GL.glUseProgram(self._program)
        GL.glActiveTexture(GL.GL_TEXTURE0)
        GL.glBindTexture(GL.GL_TEXTURE_2D_ARRAY, self._texture)
        GL.glBindVertexArray(self._vao)
        GL.glDrawElementsInstanced(
            GL.GL_TRIANGLES, self.faces.size, GL.GL_UNSIGNED_INT, None, instance_count
        )
        GL.glBindVertexArray(0)

    def draw_live(self, instance_count: int):
        GL, _ = _import_gl()
        GL.glBindFramebuffer(GL.GL_FRAMEBUFFER, 0)
        GL.glViewport(0, 0, *self.window_size)
        self._draw(instance_count)

    def draw_offscreen(self, instance_count: int) -> bytes:
        """Draw into the export framebuffer and read it back as top-first BGRA."""
        GL, _ = _import_gl()
        if self._fbo is None:
            raise BackendError("Offscreen drawing requires an export size")
        width, height = self.export_size
        GL.glBindFramebuffer(GL.GL_FRAMEBUFFER, self._fbo)
        GL.glViewport(0, 0, width, height)
        self._draw(instance_count)
        GL.glReadBuffer(GL.GL_COLOR_ATTACHMENT0)
        pixels = GL.glReadPixels(0, 0, width, height, GL.GL_BGRA, GL.GL_UNSIGNED_BYTE)
        GL.glBindFramebuffer(GL.GL_FRAMEBUFFER, 0)
        GL.glViewport(0, 0, *self.window_size)
        return bgra_rows_top_first(pixels, width, height)

    def cleanup(self):
        """Free OpenGL resources."""
        GL, _ = _import_gl()
        if self._fbo is not None:
            GL.glDeleteFramebuffers(1, [self._fbo])
            GL.glDeleteRenderbuffers(1, [self._color_rb])
            self._fbo = None
        if self._texture is not None:
            GL.glDeleteTextures([self._texture])
            self._texture = None
        if self._buffers:
            GL.glDeleteBuffers(len(self._buffers), self._buffers)
            self._buffers = []
        if self._vao is not None:
            GL.glDeleteVertexArrays(1, [self._vao])
            self._vao = None
        if self._program is not None:
            GL.glDeleteProgram(self._program)
            self._program = None
