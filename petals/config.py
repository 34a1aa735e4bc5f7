"""Configuration for the falling petals simulation, loaded from a TOML document."""

import dataclasses
import logging
import os
import tomllib
import typing
from dataclasses import dataclass, field

from petals.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "config.toml"
DEFAULT_ATLAS_FILENAME = "petal_atlas.png"

# Petal rectangles in the procedural atlas, in grid cells: [x, y, width, height].
DEFAULT_PETAL_COORDINATES = (
    [[float(x), float(y), 2.0, 1.0] for y in range(4) for x in range(0, 8, 2)]
    + [[float(x), float(y), 2.0, 2.0] for y in range(4, 8, 2) for x in range(0, 8, 2)]
)


def _format_coordinates(coords: list[list[float]]) -> str:
    rows = ",\n".join(f"    [{x:.1f}, {y:.1f}, {w:.1f}, {h:.1f}]" for x, y, w, h in coords)
    return f"[\n{rows},\n]"


DEFAULT_CONFIG_TOML = f"""\
# --- Petal parameters -----------------------------------------------------------------------------

# Number of petals.  This must be a multiple of 4: four petal variant indices are packed into each
# 16 byte slot of the uniform buffer handed to the GPU.  Packing lets 4x more petals fit in a
# uniform buffer than one index per slot would.  With a 65536 byte uniform block limit the maximum
# is 16384 petals.
n_petals = 7000
# Range for the scale factor randomly selected for each petal.
min_scale = 1.0
max_scale = 2.0

# Petals are drawn with a 3x3 grid of vertices in the x/y plane.  The bend offsets move each vertex
# along z so petals do not look perfectly flat when seen edge-on.
# Scale factor applied to all of the bend offsets.
petal_bend_vertex_offset_multiplier = 0.1
# Bend offsets for the 9 vertices in row-major order (top-left first, then top-middle, ...).
petal_bend_vertex_offsets = [1.0, 0.2, -0.6, -0.1, 0.0, -0.2, -1.0, 0.3, 0.7]

# Optional seed for the random petal layout.  Remove it for a different layout on every run.
random_seed = 0

# --- Live frame rate ------------------------------------------------------------------------------

# Limit the live rendering frame rate.  This does not affect the frame rate of exported video.
enable_frame_rate_limit = true
frame_rate_limit = 60

# --- Camera parameters ----------------------------------------------------------------------------

# Distance from the camera to the near clipping plane.
camera_near = 1.0
# Distance from the camera to the far clipping plane.
camera_far = 100.0
# Vertical field of view of the camera, in degrees.
camera_fov_y = 60.0

# --- Simulation volume ----------------------------------------------------------------------------

# Half-extents of the box the petals move in.  Each value applies in both the positive and
# negative direction, so the box is twice as large.  The defaults keep the view frustum inside the
# box when the camera starts at (0, 0, max_z) looking in the -z direction.
max_x = 110.0
max_y = 65.0
max_z = 50.0

# --- Camera movement ------------------------------------------------------------------------------

# Distance the camera moves per frame while a movement key is held:
#   w / up arrow    -- forward
#   s / down arrow  -- backward
#   a / left arrow  -- left
#   d / right arrow -- right
#   <spacebar>      -- up
#   c               -- down
player_movement_speed = 0.5
# Degrees of yaw/pitch per pixel of mouse movement.  Mouselook starts disabled; right click toggles
# it on and off (capturing and releasing the mouse).
player_turn_speed = 0.1

# --- Petal movement -------------------------------------------------------------------------------

# Constant distance every petal falls per frame, on top of its other motion.
fall_speed = 0.1
# Period of the mixture of sinusoids used for petal motion, in seconds of exported video.  With
# video_export_fps = 30, a value of 60 repeats the motion every 1800 frames.
movement_period = 60
# Number of frequencies mixed together.  Frequencies run from 1 to this value, so it also caps how
# quickly petal motion can change.
movement_n_frequencies = 60
# Amplitude cap for the highest frequency.  Caps for intermediate frequencies are linearly
# interpolated between this and the low frequency cap.
movement_high_freq_max_amplitude = 0.015
# Amplitude cap for the lowest frequency.
movement_low_freq_max_amplitude = 0.075
# Each petal spins at a constant rate chosen between these values, in degrees per frame.
min_rotation_speed = 1.0
max_rotation_speed = 3.0

# --- Rendering to video ---------------------------------------------------------------------------

# Export the animation to a video file.  This requires ffmpeg on your PATH.  Every frame is drawn a
# second time into an off-screen buffer and piped to ffmpeg; the simulation waits for ffmpeg to
# keep up, so the live view may be choppy while the exported video plays smoothly.
enable_ffmpeg_video_export = false
video_export_file = "falling_petals.mp4"
# Frame rate of the exported video.  The simulation advances one step per frame regardless.
video_export_fps = 30
# Resolution of the exported video.  The width must be a multiple of 64.
video_export_width = 1920
video_export_height = 1080

# --- Petal textures -------------------------------------------------------------------------------

# Each [[petal_textures]] entry is an image holding one or more petal pictures.  Coordinates are
# [x, y, width, height] in grid cells; x_multiplier and y_multiplier convert grid cells to the
# normalized [0, 1] texture range.  A petal's size is scaled by scale * height (in grid cells).
[[petal_textures]]
file = "{DEFAULT_ATLAS_FILENAME}"
scale = 0.5
x_multiplier = 0.125
y_multiplier = 0.125
petal_coordinates = {_format_coordinates(DEFAULT_PETAL_COORDINATES)}
"""


@dataclass
class PetalTextureConfig:
    file: str
    scale: float = 1.0
    x_multiplier: float = 1.0
    y_multiplier: float = 1.0
    petal_coordinates: list[list[float]] = field(default_factory=list)


@dataclass
class PetalsConfig:
    # Petals
    n_petals: int = 7000
    min_scale: float = 1.0
    max_scale: float = 2.0
    petal_bend_vertex_offset_multiplier: float = 0.1
    petal_bend_vertex_offsets: list[float] = field(
        default_factory=lambda: [1.0, 0.2, -0.6, -0.1, 0.0, -0.2, -1.0, 0.3, 0.7]
    )
    petal_textures: list[PetalTextureConfig] = field(default_factory=list)
    random_seed: int | None = None

    # Live frame rate
    enable_frame_rate_limit: bool = True
    frame_rate_limit: int = 60

    # Camera
    camera_near: float = 1.0
    camera_far: float = 100.0
    camera_fov_y: float = 60.0  # degrees

    # Simulation volume half-extents
    max_x: float = 110.0
    max_y: float = 65.0
    max_z: float = 50.0

    # Camera movement
    player_movement_speed: float = 0.5
    player_turn_speed: float = 0.1  # degrees per pixel

    # Petal movement
    fall_speed: float = 0.1
    movement_period: int = 60  # seconds of exported video
    movement_n_frequencies: int = 60
    movement_high_freq_max_amplitude: float = 0.015
    movement_low_freq_max_amplitude: float = 0.075
    min_rotation_speed: float = 1.0  # degrees per frame
    max_rotation_speed: float = 3.0

    # Video export
    enable_ffmpeg_video_export: bool = False
    video_export_file: str = "falling_petals.mp4"
    video_export_fps: int = 30
    video_export_width: int = 1920
    video_export_height: int = 1080

    @property
    def half_extents(self) -> tuple[float, float, float]:
        return (self.max_x, self.max_y, self.max_z)

    @property
    def movement_period_frames(self) -> int:
        """Length of one motion cycle in frames (simulation steps)."""
        return max(1, round(self.movement_period * self.video_export_fps))

    @property
    def export_frame_size(self) -> int:
        """Bytes per exported frame: one BGRA pixel is 4 bytes."""
        return 4 * self.video_export_width * self.video_export_height

    @classmethod
    def from_dict(cls, data: dict, base_dir: str = ".") -> "PetalsConfig":
        """Build a config from a parsed TOML table.

        Missing keys fall back to defaults; unknown keys are rejected so typos
        are not silently ignored. Values are checked against the field types, with
        integers accepted where a float is expected. Relative texture paths are
        resolved against ``base_dir``.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        values = _check_fields(cls, data, "")
        textures = []
        for i, entry in enumerate(values.pop("petal_textures", [])):
            if not isinstance(entry, dict) or "file" not in entry:
                raise ConfigurationError(f"petal_textures[{i}] must be a table with a 'file' key")
            texture_keys = {f.name for f in dataclasses.fields(PetalTextureConfig)}
            bad = sorted(set(entry) - texture_keys)
            if bad:
                raise ConfigurationError(f"petal_textures[{i}] has unknown keys: {', '.join(bad)}")
            entry = _check_fields(PetalTextureConfig, entry, f"petal_textures[{i}].")
            texture = PetalTextureConfig(**entry)
            if not os.path.isabs(texture.file):
                texture.file = os.path.normpath(os.path.join(base_dir, texture.file))
            textures.append(texture)

        try:
            config = cls(petal_textures=textures, **values)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        config.validate()
        return config

    def validate(self):
        """Check every constraint that must hold before the render loop starts."""
        if not isinstance(self.n_petals, int) or self.n_petals <= 0:
            raise ConfigurationError(f"n_petals must be a positive integer, got {self.n_petals!r}")
        if self.n_petals % 4 != 0:
            lower = self.n_petals - self.n_petals % 4
            raise ConfigurationError(
                f"n_petals must be a multiple of 4 (variant indices are packed four per "
                f"16 byte slot), got {self.n_petals}; try {lower or 4} or {lower + 4}"
            )
        if not 0 < self.min_scale <= self.max_scale:
            raise ConfigurationError(
                f"Need 0 < min_scale <= max_scale, got {self.min_scale} and {self.max_scale}"
            )
        if len(self.petal_bend_vertex_offsets) != 9:
            raise ConfigurationError(
                f"petal_bend_vertex_offsets needs 9 values (3x3 grid), "
                f"got {len(self.petal_bend_vertex_offsets)}"
            )
        if not 0 < self.camera_near < self.camera_far:
            raise ConfigurationError(
                f"Need 0 < camera_near < camera_far, got {self.camera_near} and {self.camera_far}"
            )
        if not 0 < self.camera_fov_y < 180:
            raise ConfigurationError(f"camera_fov_y must be in (0, 180) degrees, got {self.camera_fov_y}")
        for name in ("max_x", "max_y", "max_z"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.movement_period <= 0:
            raise ConfigurationError(f"movement_period must be positive, got {self.movement_period}")
        if self.movement_n_frequencies < 1:
            raise ConfigurationError(
                f"movement_n_frequencies must be at least 1, got {self.movement_n_frequencies}"
            )
        if min(self.movement_high_freq_max_amplitude, self.movement_low_freq_max_amplitude) < 0:
            raise ConfigurationError("Movement amplitude caps must not be negative")
        if not 0 <= self.min_rotation_speed <= self.max_rotation_speed:
            raise ConfigurationError(
                f"Need 0 <= min_rotation_speed <= max_rotation_speed, got "
                f"{self.min_rotation_speed} and {self.max_rotation_speed}"
            )
        if self.enable_frame_rate_limit and self.frame_rate_limit <= 0:
            raise ConfigurationError(f"frame_rate_limit must be positive, got {self.frame_rate_limit}")
        if self.video_export_fps <= 0:
            raise ConfigurationError(f"video_export_fps must be positive, got {self.video_export_fps}")
        if self.enable_ffmpeg_video_export:
            if self.video_export_width <= 0 or self.video_export_width % 64 != 0:
                raise ConfigurationError(
                    f"video_export_width must be a positive multiple of 64 so exported rows need "
                    f"no padding, got {self.video_export_width}"
                )
            if self.video_export_height <= 0:
                raise ConfigurationError(
                    f"video_export_height must be positive, got {self.video_export_height}"
                )
            if not self.video_export_file:
                raise ConfigurationError("video_export_file must be set when export is enabled")
        if not self.petal_textures:
            raise ConfigurationError("At least one [[petal_textures]] entry is required")
        for i, texture in enumerate(self.petal_textures):
            _validate_texture(i, texture)


def _check_value(name: str, value, kind):
    """Check a parsed TOML value against a dataclass field type, coercing ints to floats."""
    if kind is bool:
        if not isinstance(value, bool):
            raise ConfigurationError(f"{name} must be true or false, got {value!r}")
        return value
    if kind is int or kind == (int | None):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        return value
    if kind is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"{name} must be a number, got {value!r}")
        return float(value)
    if kind is str:
        if not isinstance(value, str):
            raise ConfigurationError(f"{name} must be a string, got {value!r}")
        return value
    if typing.get_origin(kind) is list:
        if not isinstance(value, list):
            raise ConfigurationError(f"{name} must be a list, got {value!r}")
        (item_kind,) = typing.get_args(kind)
        if dataclasses.is_dataclass(item_kind):
            return value
        return [_check_value(f"{name}[{i}]", item, item_kind) for i, item in enumerate(value)]
    return value


def _check_fields(cls, data: dict, prefix: str) -> dict:
    kinds = {f.name: f.type for f in dataclasses.fields(cls)}
    return {
        key: _check_value(prefix + key, value, kinds[key]) if key in kinds else value
        for key, value in data.items()
    }


def _validate_texture(index: int, texture: PetalTextureConfig):
    where = f"petal_textures[{index}] ({texture.file})"
    if texture.scale <= 0:
        raise ConfigurationError(f"{where}: scale must be positive, got {texture.scale}")
    if texture.x_multiplier <= 0 or texture.y_multiplier <= 0:
        raise ConfigurationError(f"{where}: x_multiplier and y_multiplier must be positive")
    if not texture.petal_coordinates:
        raise ConfigurationError(f"{where}: petal_coordinates is empty")
    tol = 1e-6
    for j, coords in enumerate(texture.petal_coordinates):
        if len(coords) != 4:
            raise ConfigurationError(
                f"{where}: petal_coordinates[{j}] must be [x, y, width, height], got {coords!r}"
            )
        x, y, w, h = coords
        if w <= 0 or h <= 0:
            raise ConfigurationError(f"{where}: petal_coordinates[{j}] has non-positive size {coords!r}")
        u, v = x * texture.x_multiplier, y * texture.y_multiplier
        du, dv = w * texture.x_multiplier, h * texture.y_multiplier
        if u < -tol or v < -tol or u + du > 1.0 + tol or v + dv > 1.0 + tol:
            raise ConfigurationError(
                f"{where}: petal_coordinates[{j}] = {coords!r} falls outside the texture "
                f"(normalized rectangle {u:.3f}, {v:.3f}, {du:.3f}, {dv:.3f})"
            )


def load_config(path: str) -> PetalsConfig:
    """Parse and validate a configuration document.

    Raises:
        ConfigurationError: the file is unreadable, not valid TOML, or violates a constraint
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            f"Cannot parse {path}: {e}. Rename or remove it and rerun to generate a fresh default."
        ) from e
    base_dir = os.path.dirname(os.path.abspath(path))
    config = PetalsConfig.from_dict(data, base_dir=base_dir)
    logger.debug("Loaded configuration from %s", path)
    return config


def write_default_config(path: str):
    """Write the documented default configuration to ``path``."""
    with open(path, "w") as f:
        f.write(DEFAULT_CONFIG_TOML)
    logger.info("Wrote default configuration to %s", path)
