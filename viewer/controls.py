"""Keyboard and mouse state, independent of the windowing library."""

# key name -> (forward, right, up) contribution
MOVEMENT_KEYS = {
    "w": (1, 0, 0),
    "up": (1, 0, 0),
    "s": (-1, 0, 0),
    "down": (-1, 0, 0),
    "d": (0, 1, 0),
    "right": (0, 1, 0),
    "a": (0, -1, 0),
    "left": (0, -1, 0),
    "space": (0, 0, 1),
    "c": (0, 0, -1),
}


def _clamp(v: int) -> int:
    return max(-1, min(1, v))


class InputState:
    """Held movement keys plus mouse motion accumulated since the last frame.

    While the window is unfocused, key and mouse input is ignored and no
    movement or look delta is reported.
    """

    def __init__(self):
        self.pressed: set[str] = set()
        self.focused = True
        self._look_dx = 0.0
        self._look_dy = 0.0

    def set_focus(self, focused: bool):
        """Record a focus change, dropping held keys and pending mouse motion."""
        self.focused = focused
        # Key releases are not delivered to an unfocused window
        self.pressed.clear()
        self.clear_look_delta()

    def handle_key(self, name: str, pressed: bool):
        if name not in MOVEMENT_KEYS or not self.focused:
            return
        if pressed:
            self.pressed.add(name)
        else:
            self.pressed.discard(name)

    def handle_mouse_motion(self, dx: float, dy: float):
        if not self.focused:
            return
        self._look_dx += dx
        self._look_dy += dy

    def clear_look_delta(self):
        self._look_dx = 0.0
        self._look_dy = 0.0

    def take_look_delta(self) -> tuple[float, float]:
        """Return and reset the accumulated mouse motion."""
        delta = (self._look_dx, self._look_dy)
        self.clear_look_delta()
        return delta

    def movement(self) -> tuple[int, int, int]:
        """(forward, right, up) multipliers; opposing keys cancel."""
        if not self.focused:
            return 0, 0, 0
        forward = right = up = 0
        for name in self.pressed:
            f, r, u = MOVEMENT_KEYS[name]
            forward += f
            right += r
            up += u
        return _clamp(forward), _clamp(right), _clamp(up)
