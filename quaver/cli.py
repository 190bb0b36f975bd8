"""
Quaver CLI entry point.

Provides command-line interface for running Quaver.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from quaver import __version__
from quaver.api import ServerAPIError
from quaver.app import Quaver
from quaver.backends import BackendNotFoundError
from quaver.config import VALID_BACKENDS, Config, ConfigError, load_config

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_SERVER_ERROR = 2
EXIT_BACKEND_ERROR = 3


def setup_logging(level: str = "info") -> None:
    """Configure logging to stdout."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="quaver",
        description="Headless music player for Subsonic servers with WebSocket remote control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  quaver --list-devices
  quaver --list-devices --json
  quaver --config config.yaml
  quaver --server-url https://music.example.com --server-username me --server-password secret --query "miles davis"

Environment Variables:
  QUAVER_BACKEND, QUAVER_AUTOPLAY, QUAVER_RESUME, QUAVER_QUEUE_PATH
  QUAVER_MPV_PATH, QUAVER_EMBEDDED_DEVICE
  QUAVER_REMOTE_HOST, QUAVER_REMOTE_PORT, QUAVER_REMOTE_USERNAME, QUAVER_REMOTE_PASSWORD
  QUAVER_SERVER_URL, QUAVER_SERVER_USERNAME, QUAVER_SERVER_PASSWORD, QUAVER_LOG_LEVEL
""",
    )

    # General
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Device listing mode
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio output devices for the embedded backend and exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON (used with --list-devices)",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("./config.yaml"),
        metavar="PATH",
        help="Path to config file (default: ./config.yaml)",
    )

    # Player
    player_group = parser.add_argument_group("Player")
    player_group.add_argument(
        "--backend",
        choices=sorted(VALID_BACKENDS),
        help="Playback backend (default: mpv)",
    )
    player_group.add_argument(
        "--device",
        metavar="TEXT",
        help="Audio output device for the embedded backend (index or name)",
    )
    player_group.add_argument(
        "--resume",
        action="store_true",
        default=None,
        help="Restore the queue saved on the last clean shutdown",
    )
    player_group.add_argument(
        "--no-autoplay",
        action="store_false",
        dest="autoplay",
        default=None,
        help="Do not start playing when songs are added to an empty queue",
    )
    player_group.add_argument(
        "--query",
        metavar="TEXT",
        help="Search the media server and queue the results on startup",
    )

    # Remote
    remote_group = parser.add_argument_group("Remote Control")
    remote_group.add_argument(
        "--remote-host",
        metavar="TEXT",
        help="Remote server bind address (default: 0.0.0.0)",
    )
    remote_group.add_argument(
        "--remote-port",
        type=int,
        metavar="INT",
        help="Remote server port (default: 4333)",
    )
    remote_group.add_argument(
        "--remote-username",
        metavar="TEXT",
        help="Username remote clients must authenticate with",
    )
    remote_group.add_argument(
        "--remote-password",
        metavar="TEXT",
        help="Password remote clients must authenticate with",
    )

    # Media server
    server_group = parser.add_argument_group("Media Server")
    server_group.add_argument(
        "--server-url",
        metavar="URL",
        help="Subsonic-compatible server URL",
    )
    server_group.add_argument(
        "--server-username",
        metavar="TEXT",
        help="Media server username",
    )
    server_group.add_argument(
        "--server-password",
        metavar="TEXT",
        help="Media server password",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        metavar="LEVEL",
        help="Log level: debug, info, warning, error",
    )

    return parser.parse_args(argv)


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def args_to_dict(args: argparse.Namespace) -> dict:
    """Convert argparse namespace to nested config dict."""
    result: dict = {}

    # Map CLI args to config paths
    mappings = {
        "backend": ("player", "backend"),
        "resume": ("player", "resume"),
        "autoplay": ("player", "autoplay"),
        "device": ("embedded", "device"),
        "remote_host": ("remote", "host"),
        "remote_port": ("remote", "port"),
        "remote_username": ("remote", "username"),
        "remote_password": ("remote", "password"),
        "server_url": ("server", "url"),
        "server_username": ("server", "username"),
        "server_password": ("server", "password"),
        "log_level": ("logging", "level"),
    }

    for arg_name, path in mappings.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        _set_nested(result, path, value)

    return result


def log_config(config: Config) -> None:
    """Log configuration summary (without sensitive data)."""
    logger.info(f"Backend: {config.player.backend}")
    if config.remote.enabled:
        auth = "with auth" if config.remote.requires_auth else "no auth"
        logger.info(f"Remote server: {config.remote.host}:{config.remote.port} ({auth})")
    else:
        logger.info("Remote server: disabled")
    if config.server.url:
        logger.info(f"Media server: {config.server.url} ({config.server.username})")
    if config.player.resume:
        logger.info("Queue resume: enabled")


def run_list_devices(json_output: bool) -> int:
    """
    List audio output devices.

    Args:
        json_output: Output as JSON if True

    Returns:
        Exit code
    """
    try:
        from quaver.backends.embedded import list_output_devices
    except (ImportError, OSError) as e:
        print(f"Embedded backend unavailable: {e}", file=sys.stderr)
        return EXIT_BACKEND_ERROR

    try:
        devices = list_output_devices()
    except (ImportError, OSError) as e:
        print(f"Cannot query audio devices: {e}", file=sys.stderr)
        return EXIT_BACKEND_ERROR

    if json_output:
        output = {
            "devices": [
                {
                    "index": d.index,
                    "name": d.name,
                    "channels": d.channels,
                    "default_samplerate": d.default_samplerate,
                    "default": d.is_default,
                }
                for d in devices
            ],
            "count": len(devices),
        }
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    if not devices:
        print("No audio output devices found.")
        return EXIT_SUCCESS

    print(f"Found {len(devices)} output device(s):\n")
    for d in devices:
        print(f"  {d}")
    print("\nConfig example (add to config.yaml):")
    print("  player:")
    print("    backend: embedded")
    print("  embedded:")
    print(f'    device: "{devices[0].index}"')
    return EXIT_SUCCESS


def run_serve(args: argparse.Namespace) -> int:
    """
    Run the player.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    # Setup basic logging first (will be reconfigured after config load)
    setup_logging("info")

    logger.info(f"Quaver v{__version__}")

    try:
        cli_config = args_to_dict(args)
        config = load_config(args.config, cli_config)

        # Reconfigure logging with loaded level
        setup_logging(config.logging.level)

        log_config(config)

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        app = Quaver(config, query=args.query)
        asyncio.run(app.run())
        return EXIT_SUCCESS

    except ServerAPIError as e:
        logger.error(f"Media server error: {e}")
        return EXIT_SERVER_ERROR

    except BackendNotFoundError as e:
        logger.error(f"Backend error: {e}")
        return EXIT_BACKEND_ERROR

    except (ConnectionError, OSError) as e:
        logger.error(f"Network error: {e}")
        return EXIT_BACKEND_ERROR

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_SUCCESS

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return EXIT_BACKEND_ERROR


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0=success, 1=config error, 2=server error, 3=backend/network error
    """
    args = parse_args(argv)

    if args.list_devices:
        return run_list_devices(args.json_output)
    return run_serve(args)


if __name__ == "__main__":
    sys.exit(main())
