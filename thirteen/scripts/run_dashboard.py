"""
Run the live replication dashboard.
"""
from __future__ import annotations

import argparse
import os
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live

try:
    # When executed as a module: python -m thirteen.scripts.run_dashboard
    from ..controllers.fleet_controller import FleetConfig, FleetController
    from ..scripts.dashboard_view import build_layout
    from ..utils.inventory import InstanceDescriptor, discover_instances, load_static_inventory
except ImportError:
    # When executed directly: python scripts/run_dashboard.py
    current_file = Path(__file__).resolve()
    package_root = current_file.parent.parent  # thirteen/
    repo_root = package_root.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    from thirteen.controllers.fleet_controller import FleetConfig, FleetController
    from thirteen.scripts.dashboard_view import build_layout
    from thirteen.utils.inventory import InstanceDescriptor, discover_instances, load_static_inventory

DEFAULT_CONFIG = Path.home() / ".thirteen.yaml"


def load_config(path: Path) -> FleetConfig:
    """
    Read the YAML config. THIRTEEN_DB_USER / THIRTEEN_DB_PASSWORD from the
    environment (or .env) take precedence over the file.
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data: Dict[str, Any] = yaml.safe_load(f) or {}
    env_user = os.getenv("THIRTEEN_DB_USER")
    env_password = os.getenv("THIRTEEN_DB_PASSWORD")
    if env_user:
        data["user"] = env_user
    if env_password:
        data["password"] = env_password
    try:
        return FleetConfig(**data)
    except ValidationError as e:
        raise SystemExit(f"Invalid config {path}:\n{e}")


def find_instances(config: FleetConfig) -> List[InstanceDescriptor]:
    if config.inventory:
        logger.info("Using static inventory of {} instance(s)", len(config.inventory))
        return load_static_inventory(config.inventory)
    logger.info("Looking for MySQL instances tagged {} in {}", config.classes, config.regions)
    return discover_instances(config.classes, config.regions, class_tag=config.class_tag)


def _watch_for_quit(stop: threading.Event) -> None:
    """Set `stop` when q is pressed. stdin must already be in cbreak mode."""
    while not stop.is_set():
        ch = sys.stdin.read(1)
        if ch in ("q", "Q", ""):
            stop.set()


def run(controller: FleetController, config: FleetConfig, stop: Optional[threading.Event] = None) -> None:
    """Aggregate and redraw every render_interval until stop is set."""
    stop = stop or threading.Event()
    console = Console()
    saved_tty = None
    if sys.stdin.isatty():
        import termios
        import tty

        saved_tty = termios.tcgetattr(sys.stdin.fileno())
        tty.setcbreak(sys.stdin.fileno())
        threading.Thread(target=_watch_for_quit, args=(stop,), name="keyboard", daemon=True).start()

    def frame():
        controller.on_tick()
        return build_layout(
            controller.snapshot(), stale_after=config.stale_after, width=max(10, console.width - 4)
        )

    try:
        with Live(frame(), console=console, refresh_per_second=4, screen=True) as live:
            while not stop.wait(config.render_interval):
                live.update(frame())
    finally:
        if saved_tty is not None:
            termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, saved_tty)


def configure_logging(log_file: Optional[str] = None) -> int:
    """
    Reset loguru to a stderr sink plus a rotating file sink. Returns the id of
    the stderr sink so it can be dropped while the full-screen view runs.
    """
    logger.remove()
    console_sink = logger.add(sys.stderr, level="INFO")
    try:
        log_path = Path(log_file) if log_file else Path.cwd() / "logs" / "thirteen.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path),
            rotation="10 MB",
            retention="10 days",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            level="DEBUG",
        )
        logger.info("File logging enabled: {}", log_path)
    except Exception as e:
        logger.warning("Failed to configure file logging: {}", e)
    return console_sink


def main(argv: Optional[List[str]] = None) -> None:
    # Load environment variables from .env if present
    load_dotenv()
    parser = argparse.ArgumentParser(description="Live MySQL replication dashboard.")
    parser.add_argument("--config", type=str, default=str(DEFAULT_CONFIG), help="Path to YAML config")
    parser.add_argument("--log-file", type=str, default=None, help="Rotating log file (default logs/thirteen.log)")
    args = parser.parse_args(argv)
    console_sink = configure_logging(args.log_file)

    logger.info("Loading thirteen config...")
    config = load_config(Path(args.config).expanduser())

    descriptors = find_instances(config)
    if not descriptors:
        raise SystemExit("No MySQL instances found.")

    controller = FleetController(config)
    if controller.start(descriptors) == 0:
        raise SystemExit("Unable to connect to any instance.")

    # Console sink would scribble over the full-screen view; the file sink stays.
    logger.remove(console_sink)
    try:
        run(controller, config)
    except KeyboardInterrupt:
        pass
    finally:
        logger.add(sys.stderr, level="INFO")
        logger.info("Stopping...")
        controller.stop()


if __name__ == "__main__":
    main()
