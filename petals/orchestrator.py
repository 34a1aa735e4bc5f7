"""Per-frame driver: simulate, sort, pack, draw and optionally export.

One tick runs, in order:

1. one simulation step
2. depth sort and instance packing
3. upload and the live draw
4. when exporting, the offscreen draw, its blocking readback and a blocking
   write to the encoder

The encoder write is the only backpressure point: if the encoder falls
behind, ticks slow down to match it. A shutdown request is checked between
stages and no further stage is submitted once it has been seen.
"""

import enum
import logging
import time
from typing import Callable, Optional, Protocol

import numpy as np

from petals.packing import InstancePacker
from petals.simulation import SimulationState
from petals.sorting import DepthSorter

logger = logging.getLogger(__name__)


class OrchestratorState(enum.Enum):
    RUNNING = "running"
    EXPORTING = "exporting"
    DRAINING = "draining"
    STOPPED = "stopped"


class Renderer(Protocol):
    def upload(self, pose_buffer: np.ndarray, variant_buffer: np.ndarray, view_projection: np.ndarray):
        ...

    def draw_live(self, instance_count: int):
        ...

    def draw_offscreen(self, instance_count: int) -> bytes:
        """Render into the export target and return its BGRA pixels, top row first."""
        ...


class FrameSink(Protocol):
    def open(self):
        ...

    def write_frame(self, frame: bytes):
        ...

    def close(self):
        ...


class FrameLimiter:
    """Sleeps so that consecutive calls to ``wait`` are at least 1 / rate apart.

    A late frame resets the deadline to now; lost time is not made up.
    """

    def __init__(
        self,
        rate: float,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ValueError(f"Frame rate limit must be positive, got {rate}")
        self.interval = 1.0 / rate
        self._clock = clock
        self._sleep = sleep
        self._deadline = None

    def reset(self):
        self._deadline = self._clock() + self.interval

    def wait(self):
        if self._deadline is None:
            self.reset()
        now = self._clock()
        if now < self._deadline:
            self._sleep(self._deadline - now)
            self._deadline += self.interval
        else:
            self._deadline = now + self.interval


class FrameOrchestrator:
    """Runs the simulation and render passes in lockstep, one step per frame.

    Args:
        simulation: petal state, advanced once per tick
        sorter: produces the draw order
        packer: owns the instance buffers
        renderer: graphics backend
        view_projection: returns the current 4x4 view-projection matrix
        encoder: frame sink; export is enabled iff this is given
        frame_rate_limit: live frames per second, or None for no limit
        export_fps: exported frames per second, used for progress logging
        present: called after the live draw, e.g. to swap window buffers
    """

    def __init__(
        self,
        simulation: SimulationState,
        sorter: DepthSorter,
        packer: InstancePacker,
        renderer: Renderer,
        view_projection: Callable[[], np.ndarray],
        encoder: Optional[FrameSink] = None,
        frame_rate_limit: Optional[float] = None,
        export_fps: int = 30,
        present: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.simulation = simulation
        self.sorter = sorter
        self.packer = packer
        self.renderer = renderer
        self.view_projection = view_projection
        self.encoder = encoder
        self.export_fps = export_fps
        self.present = present
        self.limiter = FrameLimiter(frame_rate_limit, clock, sleep) if frame_rate_limit else None

        self.state = OrchestratorState.EXPORTING if encoder is not None else OrchestratorState.RUNNING
        self.tick_count = 0
        self.frames_forwarded = 0
        self._started = False
        self._in_tick = False
        self._shutdown_requested = False

    @property
    def exporting(self) -> bool:
        return self.state is OrchestratorState.EXPORTING

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def start(self):
        """Open the encoder, if any. Called automatically by the first tick."""
        if self._started:
            return
        self._started = True
        if self.encoder is not None:
            self.encoder.open()
            logger.info("Video export started")

    def request_shutdown(self):
        """Ask the loop to stop; takes effect at the next stage boundary."""
        if not self._shutdown_requested:
            logger.debug("Shutdown requested after %d ticks", self.tick_count)
        self._shutdown_requested = True

    def tick(self) -> bool:
        """Run one frame. Returns False if a shutdown request cut it short."""
        if self._in_tick:
            raise RuntimeError("tick() called while a previous tick is still in flight")
        if self.state in (OrchestratorState.DRAINING, OrchestratorState.STOPPED):
            raise RuntimeError(f"Cannot tick in state {self.state.name}")
        if self._shutdown_requested:
            return False

        self._in_tick = True
        try:
            self.start()
            sim = self.simulation
            sim.advance(1)
            if self._shutdown_requested:
                return False

            order = self.sorter.sort(sim.positions)
            pose_buffer, variant_buffer = self.packer.pack(sim.pose_matrices(), sim.variant_ids, order)
            if self._shutdown_requested:
                return False

            n = sim.n_petals
            self.renderer.upload(pose_buffer, variant_buffer, self.view_projection())
            self.renderer.draw_live(n)
            if self.present is not None:
                self.present()

            if self.exporting:
                if self._shutdown_requested:
                    return False
                frame = self.renderer.draw_offscreen(n)
                self.encoder.write_frame(frame)
                self.frames_forwarded += 1
                if self.frames_forwarded % self.export_fps == 0:
                    logger.info("Exported %d s of video", self.frames_forwarded // self.export_fps)

            self.tick_count += 1
            return True
        finally:
            self._in_tick = False

    def run(self, max_frames: Optional[int] = None, poll_events: Optional[Callable[[], None]] = None):
        """Tick until a shutdown request or ``max_frames`` ticks, then shut down.

        Args:
            max_frames: stop after this many completed ticks
            poll_events: called before every tick; may call ``request_shutdown``
        """
        if self.limiter is not None:
            self.limiter.reset()
        try:
            while not self._shutdown_requested:
                if max_frames is not None and self.tick_count >= max_frames:
                    break
                if poll_events is not None:
                    poll_events()
                if self._shutdown_requested:
                    break
                self.tick()
                if self.limiter is not None:
                    self.limiter.wait()
        except BaseException:
            # Propagate the original error rather than a close failure
            try:
                self.shutdown()
            except Exception as e:
                logger.exception("Encoder shutdown failed while handling an earlier error: %s", e)
            raise
        self.shutdown()

    def shutdown(self):
        """Drain the encoder and stop. Safe to call more than once."""
        if self.state is OrchestratorState.STOPPED:
            return
        self._shutdown_requested = True
        self.state = OrchestratorState.DRAINING
        try:
            if self.encoder is not None and self._started:
                logger.info("Finishing video export (%d frames)", self.frames_forwarded)
                self.encoder.close()
        finally:
            self.state = OrchestratorState.STOPPED
            logger.debug("Stopped after %d ticks", self.tick_count)
