"""Error types raised by the petal pipeline.

Configuration problems are detected before the render loop starts. Backend and
encoder failures are fatal once they occur and are never retried.
"""


class ConfigurationError(ValueError):
    """The configuration document cannot produce a valid run."""


class BackendError(RuntimeError):
    """The graphics backend failed (context, shader, framebuffer, readback)."""


class EncoderError(RuntimeError):
    """The external video encoder is missing, died, or rejected input."""
