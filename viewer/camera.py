"""Free-fly camera with yaw/pitch look and a locked up vector."""

import math

import numpy as np

WORLD_UP = np.array([0.0, 1.0, 0.0])


class UprightCamera:
    """First-person camera for flying through the petal volume.

    Roll is always zero. Mouselook starts disabled and is toggled with the
    right mouse button.

    Controls:
        Mouse: Look around (only while mouselook is on)
        W/S, up/down arrows: Move forward/backward
        A/D, left/right arrows: Move left/right
        Space/C: Move up/down
    """

    def __init__(
        self,
        position: np.ndarray = None,
        yaw: float = -90.0,
        pitch: float = 0.0,
        fov_y: float = 60.0,
        near: float = 1.0,
        far: float = 100.0,
        aspect: float = 16.0 / 9.0,
        move_speed: float = 0.5,
        turn_speed: float = 0.1,
    ):
        self.position = np.array(position if position is not None else [0.0, 0.0, 0.0], dtype=np.float64)
        self.yaw = yaw  # degrees
        self.pitch = pitch  # degrees
        self.fov_y = fov_y  # degrees
        self.near = near
        self.far = far
        self.aspect = aspect
        self.move_speed = move_speed
        self.turn_speed = turn_speed  # degrees per pixel
        self.mouselook_enabled = False

        self.min_pitch = -89.0
        self.max_pitch = 89.0

        self._update_vectors()

    @classmethod
    def from_config(cls, config, aspect: float) -> "UprightCamera":
        """Camera at the front face of the volume, looking down -z into it."""
        return cls(
            position=np.array([0.0, 0.0, config.max_z]),
            fov_y=config.camera_fov_y,
            near=config.camera_near,
            far=config.camera_far,
            aspect=aspect,
            move_speed=config.player_movement_speed,
            turn_speed=config.player_turn_speed,
        )

    def _update_vectors(self):
        """Recompute forward, right, up vectors from yaw/pitch."""
        yaw_rad = math.radians(self.yaw)
        pitch_rad = math.radians(self.pitch)

        self.forward = np.array([
            math.cos(pitch_rad) * math.cos(yaw_rad),
            math.sin(pitch_rad),
            math.cos(pitch_rad) * math.sin(yaw_rad),
        ])
        self.forward /= np.linalg.norm(self.forward)

        # Pitch never reaches +-90, so forward is never parallel to world up.
        self.right = np.cross(self.forward, WORLD_UP)
        self.right /= np.linalg.norm(self.right)
        self.up = np.cross(self.right, self.forward)

        yaw_only = np.array([math.cos(yaw_rad), 0.0, math.sin(yaw_rad)])
        self.horizontal_forward = yaw_only
        self.horizontal_right = np.cross(yaw_only, WORLD_UP)

    def toggle_mouselook(self) -> bool:
        """Flip mouselook on/off. Returns the new state."""
        self.mouselook_enabled = not self.mouselook_enabled
        return self.mouselook_enabled

    def apply_look_delta(self, dx: float, dy: float):
        """Turn by a mouse delta in pixels; ignored while mouselook is off."""
        if not self.mouselook_enabled:
            return
        self.yaw = (self.yaw + dx * self.turn_speed) % 360.0
        self.pitch -= dy * self.turn_speed  # invert Y
        self.pitch = max(self.min_pitch, min(self.max_pitch, self.pitch))
        self._update_vectors()

    def apply_move(self, direction, dt: float):
        """Move along (forward, right, up) multipliers.

        Forward and right stay in the horizontal plane regardless of pitch; up
        is world +y.

        Args:
            direction: (forward, right, up), each typically -1, 0 or 1
            dt: duration of the movement in frames
        """
        forward, right, up = direction
        distance = self.move_speed * dt
        self.position += distance * (
            forward * self.horizontal_forward
            + right * self.horizontal_right
            + up * WORLD_UP
        )

    def get_view_matrix(self) -> np.ndarray:
        """Get the 4x4 view matrix (world-to-camera)."""
        target = self.position + self.forward
        return self._look_at_matrix(self.position, target, self.up)

    def get_projection_matrix(self) -> np.ndarray:
        return self._perspective_matrix(self.fov_y, self.aspect, self.near, self.far)

    def get_view_projection_matrix(self) -> np.ndarray:
        return self.get_projection_matrix() @ self.get_view_matrix()

    @staticmethod
    def _look_at_matrix(eye: np.ndarray, target: np.ndarray, up: np.ndarray) -> np.ndarray:
        """Compute a look-at view matrix."""
        f = target - eye
        f = f / np.linalg.norm(f)
        r = np.cross(f, up)
        r = r / np.linalg.norm(r)
        u = np.cross(r, f)

        view = np.eye(4)
        view[0, :3] = r
        view[1, :3] = u
        view[2, :3] = -f
        view[0, 3] = -np.dot(r, eye)
        view[1, 3] = -np.dot(u, eye)
        view[2, 3] = np.dot(f, eye)
        return view

    @staticmethod
    def _perspective_matrix(fov_y: float, aspect: float, near: float, far: float) -> np.ndarray:
        """OpenGL-style perspective projection (clip z in [-1, 1])."""
        f = 1.0 / math.tan(math.radians(fov_y) / 2.0)
        proj = np.zeros((4, 4))
        proj[0, 0] = f / aspect
        proj[1, 1] = f
        proj[2, 2] = (far + near) / (near - far)
        proj[2, 3] = 2.0 * far * near / (near - far)
        proj[3, 2] = -1.0
        return proj
