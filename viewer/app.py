"""Falling petals viewer application.

Controls:
    Right click: Toggle mouselook (captures the mouse)
    Mouse: Look around while mouselook is on
    W/A/S/D or arrows: Move forward/left/backward/right
    Space/C: Move up/down
    ESC: Quit

Headless mode (--headless):
    Runs the simulation and packing pipeline without a window or GPU,
    useful for testing.

If the configuration file does not exist, a documented default and the
petal atlas it references are written next to it and the program exits.
"""

import argparse
import logging
import os
import sys

import numpy as np

from data.generate_atlas import write_atlas
from export.encoder import FFmpegEncoder
from petals.config import (
    DEFAULT_ATLAS_FILENAME,
    DEFAULT_CONFIG_FILENAME,
    PetalsConfig,
    load_config,
    write_default_config,
)
from petals.errors import BackendError, ConfigurationError, EncoderError
from petals.logging_config import configure_logging
from petals.orchestrator import FrameOrchestrator
from petals.packing import DEFAULT_UNIFORM_BLOCK_LIMIT, InstancePacker
from petals.simulation import SimulationState
from petals.sorting import DepthSorter
from petals.variants import VariantCatalog
from viewer.camera import UprightCamera
from viewer.controls import InputState

logger = logging.getLogger(__name__)

WINDOW_SIZE = (1280, 720)


class NullRenderer:
    """Renderer that draws nothing; keeps the last uploaded buffers."""

    def __init__(self, export_size: tuple[int, int] = None):
        self.export_size = export_size
        self.pose_buffer = None
        self.variant_buffer = None
        self.view_projection = None
        self.live_draws = 0
        self.offscreen_draws = 0

    def upload(self, pose_buffer, variant_buffer, view_projection):
        self.pose_buffer = pose_buffer
        self.variant_buffer = variant_buffer
        self.view_projection = view_projection

    def draw_live(self, instance_count: int):
        self.live_draws += 1

    def draw_offscreen(self, instance_count: int) -> bytes:
        self.offscreen_draws += 1
        width, height = self.export_size
        return bytes(4 * width * height)


def write_default_files(config_path: str):
    """Write the default configuration and the atlas it references."""
    directory = os.path.dirname(os.path.abspath(config_path))
    os.makedirs(directory, exist_ok=True)
    write_default_config(config_path)
    write_atlas(os.path.join(directory, DEFAULT_ATLAS_FILENAME))


def build_simulation(config: PetalsConfig, check_files: bool = True):
    """Catalog plus spawned simulation state for ``config``."""
    catalog = VariantCatalog.from_config(config.petal_textures, check_files=check_files)
    rng = np.random.default_rng(config.random_seed)
    simulation = SimulationState.spawn(config, catalog, rng)
    return catalog, simulation


def run_headless(config: PetalsConfig, num_frames: int = 60, output_path: str = None) -> FrameOrchestrator:
    """Run the pipeline without a display.

    Simulates, sorts and packs ``num_frames`` frames against a renderer that
    draws nothing. Video export is skipped since there are no pixels.

    Args:
        config: validated configuration
        num_frames: Number of frames to simulate
        output_path: If set, save the final packed buffers to this .npz file

    Returns:
        The stopped orchestrator, for inspecting counters and state
    """
    _, simulation = build_simulation(config, check_files=False)
    camera = UprightCamera.from_config(config, aspect=WINDOW_SIZE[0] / WINDOW_SIZE[1])
    renderer = NullRenderer()
    orchestrator = FrameOrchestrator(
        simulation=simulation,
        sorter=DepthSorter.from_view_direction(camera.forward),
        packer=InstancePacker(config.n_petals, DEFAULT_UNIFORM_BLOCK_LIMIT),
        renderer=renderer,
        view_projection=camera.get_view_projection_matrix,
        export_fps=config.video_export_fps,
    )
    orchestrator.run(max_frames=num_frames)

    if output_path:
        np.savez(
            output_path,
            positions=simulation.positions,
            pose_buffer=renderer.pose_buffer,
            variant_buffer=renderer.variant_buffer,
        )
        logger.info("Saved packed buffers to %s", output_path)

    return orchestrator


def run_viewer(config: PetalsConfig):
    """Launch the interactive OpenGL viewer."""
    try:
        import pygame
        from pygame.locals import (
            DOUBLEBUF,
            KEYDOWN,
            KEYUP,
            MOUSEBUTTONDOWN,
            MOUSEMOTION,
            OPENGL,
            QUIT,
            WINDOWFOCUSGAINED,
            WINDOWFOCUSLOST,
            K_ESCAPE,
        )
    except ImportError as e:
        print(f"Error: {e}")
        print("Install pygame and PyOpenGL: pip install pygame PyOpenGL")
        sys.exit(1)

    from viewer.petal_renderer import PetalRenderer

    catalog, simulation = build_simulation(config)

    pygame.init()
    pygame.display.gl_set_attribute(pygame.GL_CONTEXT_MAJOR_VERSION, 3)
    pygame.display.gl_set_attribute(pygame.GL_CONTEXT_MINOR_VERSION, 3)
    pygame.display.gl_set_attribute(pygame.GL_CONTEXT_PROFILE_MASK, pygame.GL_CONTEXT_PROFILE_CORE)
    try:
        pygame.display.set_mode(WINDOW_SIZE, DOUBLEBUF | OPENGL)
    except pygame.error as e:
        pygame.quit()
        raise BackendError(f"Cannot create an OpenGL 3.3 window: {e}") from e
    pygame.display.set_caption("Falling Petals - Right click=Mouselook | WASD/Space/C | ESC=Quit")

    export_size = None
    if config.enable_ffmpeg_video_export:
        export_size = (config.video_export_width, config.video_export_height)

    renderer = PetalRenderer(
        catalog,
        config.n_petals,
        WINDOW_SIZE,
        export_size=export_size,
        bend_offsets=config.petal_bend_vertex_offsets,
        bend_multiplier=config.petal_bend_vertex_offset_multiplier,
    )
    try:
        packer = InstancePacker(config.n_petals, renderer.max_uniform_block_size())
        renderer.init_gl()

        camera = UprightCamera.from_config(config, aspect=WINDOW_SIZE[0] / WINDOW_SIZE[1])
        controls = InputState()

        encoder = None
        if config.enable_ffmpeg_video_export:
            encoder = FFmpegEncoder(
                config.video_export_file,
                config.video_export_width,
                config.video_export_height,
                config.video_export_fps,
            )

        frame_rate_limit = config.frame_rate_limit if config.enable_frame_rate_limit else None
        orchestrator = FrameOrchestrator(
            simulation=simulation,
            sorter=DepthSorter.from_view_direction(camera.forward),
            packer=packer,
            renderer=renderer,
            view_projection=camera.get_view_projection_matrix,
            encoder=encoder,
            frame_rate_limit=frame_rate_limit,
            export_fps=config.video_export_fps,
            present=pygame.display.flip,
        )

        def set_mouse_capture(enabled: bool):
            pygame.event.set_grab(enabled)
            pygame.mouse.set_visible(not enabled)

        def poll_events():
            for event in pygame.event.get():
                if event.type == QUIT:
                    orchestrator.request_shutdown()
                elif event.type == KEYDOWN:
                    if event.key == K_ESCAPE:
                        orchestrator.request_shutdown()
                    else:
                        controls.handle_key(pygame.key.name(event.key), True)
                elif event.type == KEYUP:
                    controls.handle_key(pygame.key.name(event.key), False)
                elif event.type == MOUSEBUTTONDOWN and event.button == 3:
                    set_mouse_capture(camera.toggle_mouselook())
                    controls.clear_look_delta()
                elif event.type == MOUSEMOTION and camera.mouselook_enabled:
                    controls.handle_mouse_motion(*event.rel)
                elif event.type == WINDOWFOCUSLOST:
                    controls.set_focus(False)
                    if camera.mouselook_enabled:
                        set_mouse_capture(False)
                elif event.type == WINDOWFOCUSGAINED:
                    controls.set_focus(True)
                    if camera.mouselook_enabled:
                        set_mouse_capture(True)

            camera.apply_look_delta(*controls.take_look_delta())
            # Movement speed is in world units per frame
            camera.apply_move(controls.movement(), 1.0)

        if encoder is not None:
            print(f"Exporting video to {config.video_export_file}")
        orchestrator.run(poll_events=poll_events)
        print(f"Rendered {orchestrator.tick_count} frames")
    finally:
        renderer.cleanup()
        pygame.event.set_grab(False)
        pygame.mouse.set_visible(True)
        pygame.quit()


def main(argv: list[str] = None) -> int:
    parser = argparse.ArgumentParser(description="Falling Petals")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILENAME, help="TOML configuration file")
    parser.add_argument("--headless", action="store_true", help="Run without display")
    parser.add_argument("--num_frames", type=int, default=60, help="Frames for headless mode")
    parser.add_argument("--output", default=None, help="Headless mode: save packed buffers (.npz)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if not os.path.exists(args.config):
        write_default_files(args.config)
        print(f"Wrote default configuration to {args.config}; edit it and run again")
        return 0

    try:
        config = load_config(args.config)
        if args.headless:
            orchestrator = run_headless(config, args.num_frames, args.output)
            print(f"Headless: simulated {orchestrator.tick_count} frames of {config.n_petals} petals")
        else:
            run_viewer(config)
    except (ConfigurationError, BackendError, EncoderError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
