"""
Storyforge Main Entry Point

Run the Storyforge API server, or build one storyboard headlessly.
"""

import sys
import asyncio
import argparse
from pathlib import Path

from storyforge.core.logging_config import setup_logging, get_logger, LogLevel
from storyforge.core.config import StoryforgeConfig, load_config, set_config
from storyforge.core.constants import AppMode, ImageState, VideoState
from storyforge.core.exceptions import StoryforgeError
from storyforge.core.startup import validate_environment


def main():
    """Main entry point for the Storyforge application."""
    parser = argparse.ArgumentParser(
        description="Storyforge - AI storyboard and video studio"
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )

    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host for the API server (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the API server (default: 8000)"
    )

    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Skip API key validation at startup"
    )

    parser.add_argument(
        "--idea",
        type=str,
        help="Build a storyboard for this story idea headlessly, save it and exit"
    )

    parser.add_argument(
        "--scenes",
        type=int,
        help="Scene count for --idea (2-10)"
    )

    parser.add_argument(
        "--videos",
        action="store_true",
        help="With --idea, also render a video clip for every panel"
    )

    args = parser.parse_args()

    # Setup logging
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.verbose:
        log_level = LogLevel.INFO
    else:
        log_level = LogLevel.WARNING

    # Load configuration
    config_path = Path(args.config) if args.config else None
    try:
        config = load_config(config_path)
    except StoryforgeError as e:
        print(f"Could not load config: {e}")
        sys.exit(1)
    set_config(config)

    setup_logging(
        level=log_level,
        log_file=config.logs_dir / "storyforge.log",
        verbose=args.verbose or config.verbose_logging,
    )
    logger = get_logger("main")
    logger.info("Starting Storyforge...")

    # Validate environment (API keys, etc.)
    if not args.skip_validation:
        validation_result = validate_environment(config)
        if not validation_result.valid:
            logger.error("Environment validation failed:")
            for error in validation_result.errors:
                logger.error(f"  - {error}")
            print("\nEnvironment validation failed. Missing required configuration:")
            for error in validation_result.errors:
                print(f"  ✗ {error}")
            if validation_result.warnings:
                print("\nWarnings:")
                for warning in validation_result.warnings:
                    print(f"  ⚠ {warning}")
            print("\nRun with --skip-validation to bypass (not recommended)")
            sys.exit(1)

        for warning in validation_result.warnings:
            logger.warning(warning)

    if args.idea:
        sys.exit(asyncio.run(run_headless(args, config)))

    from storyforge.api.main import start_server
    print(f"Starting API server on http://localhost:{args.port}")
    start_server(host=args.host, port=args.port, config=config)


async def run_headless(args, config: StoryforgeConfig) -> int:
    """Idea -> storyboard -> images (-> videos) -> saved project."""
    from storyforge.orchestrator import StudioOrchestrator

    logger = get_logger("main")
    orchestrator = StudioOrchestrator.from_config(config)
    try:
        orchestrator.set_mode(AppMode.STORYBOARD)
        orchestrator.update_form(story_idea=args.idea)
        if args.scenes:
            orchestrator.set_generation_config(
                orchestrator.generation_config.evolve(scene_count=args.scenes)
            )

        panels = await orchestrator.generate_storyboard_from_idea()
        print(f"Storyboard: {len(panels)} scenes")
        await orchestrator.pipeline.wait_until_idle()

        if args.videos:
            started = await orchestrator.generate_all_videos()
            print(f"Rendered {started} video jobs")

        for index, panel in enumerate(orchestrator.panels):
            marker = "✓" if panel.image_state == ImageState.READY else "✗"
            video = f" | video: {panel.video_state.value}" if panel.video_state != VideoState.NONE else ""
            print(f"  {marker} [{index + 1}] {panel.description}{video}")
            if panel.video_error:
                print(f"      {panel.video_error}")

        record = orchestrator.save_project()
        print(f"Saved project {record.id}: {record.title}")
        return 0
    except StoryforgeError as e:
        logger.error(f"Headless run failed: {e}")
        print(f"Error: {e.message}")
        return 1
    finally:
        await orchestrator.close()


if __name__ == "__main__":
    main()
