"""Tests for the upright free-fly camera and input state."""

import math

import numpy as np
import pytest

from petals.config import PetalsConfig
from viewer.camera import UprightCamera
from viewer.controls import InputState


class TestUprightCamera:
    def test_initial_position(self):
        cam = UprightCamera(position=np.array([1.0, 2.0, 3.0]))
        np.testing.assert_allclose(cam.position, [1.0, 2.0, 3.0])

    def test_default_looks_down_negative_z(self):
        cam = UprightCamera()
        np.testing.assert_allclose(cam.forward, [0.0, 0.0, -1.0], atol=1e-12)
        np.testing.assert_allclose(cam.up, [0.0, 1.0, 0.0], atol=1e-12)

    def test_from_config(self):
        config = PetalsConfig(max_z=50.0, camera_fov_y=45.0, player_turn_speed=0.2)
        cam = UprightCamera.from_config(config, aspect=2.0)
        np.testing.assert_allclose(cam.position, [0.0, 0.0, 50.0])
        assert cam.fov_y == 45.0
        assert cam.turn_speed == 0.2
        assert cam.aspect == 2.0

    def test_mouselook_starts_disabled(self):
        cam = UprightCamera(yaw=0.0, pitch=0.0)
        cam.apply_look_delta(100.0, 50.0)
        assert cam.yaw == 0.0
        assert cam.pitch == 0.0

    def test_toggle_mouselook(self):
        cam = UprightCamera()
        assert cam.toggle_mouselook() is True
        assert cam.mouselook_enabled
        assert cam.toggle_mouselook() is False

    def test_look_delta(self):
        cam = UprightCamera(yaw=0.0, pitch=0.0, turn_speed=0.1)
        cam.toggle_mouselook()
        cam.apply_look_delta(100.0, 50.0)
        assert cam.yaw == pytest.approx(10.0)
        assert cam.pitch == pytest.approx(-5.0)

    def test_yaw_wraps(self):
        cam = UprightCamera(yaw=350.0, turn_speed=1.0)
        cam.toggle_mouselook()
        cam.apply_look_delta(20.0, 0.0)
        assert cam.yaw == pytest.approx(10.0)

    def test_pitch_clamped(self):
        cam = UprightCamera(pitch=0.0)
        cam.toggle_mouselook()
        # Try to pitch way beyond limits
        cam.apply_look_delta(0.0, -10000.0)
        assert cam.pitch == 89.0
        cam.apply_look_delta(0.0, 20000.0)
        assert cam.pitch == -89.0

    def test_no_roll(self):
        cam = UprightCamera(yaw=37.0, pitch=60.0)
        assert cam.right[1] == pytest.approx(0.0, abs=1e-12)

    def test_move_forward_ignores_pitch(self):
        cam = UprightCamera(position=np.zeros(3), yaw=-90.0, pitch=45.0, move_speed=1.0)
        cam.apply_move((1, 0, 0), dt=2.0)
        np.testing.assert_allclose(cam.position, [0.0, 0.0, -2.0], atol=1e-12)

    def test_move_right_and_up(self):
        cam = UprightCamera(position=np.zeros(3), yaw=-90.0, move_speed=0.5)
        cam.apply_move((0, 1, 1), dt=1.0)
        np.testing.assert_allclose(cam.position, [0.5, 0.5, 0.0], atol=1e-12)

    def test_view_matrix_orthonormal(self):
        cam = UprightCamera(position=np.array([1.0, 2.0, 3.0]), yaw=-45.0, pitch=20.0)
        view = cam.get_view_matrix()
        R = view[:3, :3]
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-10)

    def test_view_maps_eye_to_origin(self):
        cam = UprightCamera(position=np.array([1.0, 2.0, 3.0]), yaw=-45.0, pitch=20.0)
        eye = cam.get_view_matrix() @ np.array([1.0, 2.0, 3.0, 1.0])
        np.testing.assert_allclose(eye[:3], 0.0, atol=1e-10)

    def test_view_projection_center(self):
        """A point straight ahead projects to the middle of the screen."""
        cam = UprightCamera(position=np.array([0.0, 0.0, 50.0]), near=1.0, far=100.0)
        clip = cam.get_view_projection_matrix() @ np.array([0.0, 0.0, 0.0, 1.0])
        ndc = clip[:3] / clip[3]
        np.testing.assert_allclose(ndc[:2], 0.0, atol=1e-10)
        assert -1.0 < ndc[2] < 1.0

    def test_near_far_planes(self):
        cam = UprightCamera(position=np.zeros(3), near=1.0, far=100.0)
        vp = cam.get_view_projection_matrix()
        near = vp @ np.array([0.0, 0.0, -1.0, 1.0])
        far = vp @ np.array([0.0, 0.0, -100.0, 1.0])
        assert near[2] / near[3] == pytest.approx(-1.0)
        assert far[2] / far[3] == pytest.approx(1.0)

    def test_field_of_view(self):
        cam = UprightCamera(position=np.zeros(3), fov_y=90.0, aspect=1.0)
        vp = cam.get_view_projection_matrix()
        # At 90 degrees the top edge is at y = -z
        clip = vp @ np.array([0.0, 5.0, -5.0, 1.0])
        assert clip[1] / clip[3] == pytest.approx(1.0)


class TestInputState:
    def test_no_keys(self):
        assert InputState().movement() == (0, 0, 0)

    def test_wasd_and_arrows(self):
        state = InputState()
        state.handle_key("w", True)
        state.handle_key("right", True)
        state.handle_key("space", True)
        assert state.movement() == (1, 1, 1)
        state.handle_key("w", False)
        state.handle_key("c", True)
        assert state.movement() == (0, 1, 0)

    def test_same_direction_keys_do_not_stack(self):
        state = InputState()
        state.handle_key("w", True)
        state.handle_key("up", True)
        assert state.movement() == (1, 0, 0)

    def test_unknown_keys_ignored(self):
        state = InputState()
        state.handle_key("q", True)
        assert state.pressed == set()

    def test_look_delta_accumulates_and_clears(self):
        state = InputState()
        state.handle_mouse_motion(3, -1)
        state.handle_mouse_motion(2, 4)
        assert state.take_look_delta() == (5, 3)
        assert state.take_look_delta() == (0.0, 0.0)

    def test_clear_look_delta(self):
        state = InputState()
        state.handle_mouse_motion(3, 3)
        state.clear_look_delta()
        assert state.take_look_delta() == (0.0, 0.0)

    def test_key_release_without_press(self):
        state = InputState()
        state.handle_key("a", False)
        assert state.movement() == (0, 0, 0)

    def test_unfocused_ignores_input(self):
        state = InputState()
        state.set_focus(False)
        state.handle_key("w", True)
        state.handle_mouse_motion(5, 5)
        assert state.movement() == (0, 0, 0)
        assert state.take_look_delta() == (0.0, 0.0)

    def test_focus_loss_drops_held_keys_and_look_delta(self):
        state = InputState()
        state.handle_key("w", True)
        state.handle_mouse_motion(4, -2)
        state.set_focus(False)
        state.set_focus(True)
        assert state.focused
        assert state.movement() == (0, 0, 0)
        assert state.take_look_delta() == (0.0, 0.0)

    def test_input_resumes_after_focus_gain(self):
        state = InputState()
        state.set_focus(False)
        state.set_focus(True)
        state.handle_key("d", True)
        state.handle_mouse_motion(1, 2)
        assert state.movement() == (0, 1, 0)
        assert state.take_look_delta() == (1, 2)
