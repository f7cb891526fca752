"""
Entry point for a standalone editor-side bridge.

Publishes a snapshot of the project directory (assets grouped by category) and
executes incoming Python fragments in-process. Applications embedding the bridge
build their own StateMirror content and call run_editor_bridge() instead.
"""

import asyncio
import logging
import os
import sys
from typing import Dict, Any, Optional, Tuple

from bridge.config import EditorSettings, load_editor_settings
from bridge.editor.code_executor import PythonCodeExecutor
from bridge.editor.connection_manager import ConnectionManager
from bridge.editor.log_forwarder import LogForwarder
from bridge.main import configure_logging
from bridge.modules.state_mirror import StateMirror
from bridge.observability import setup_tracing
from bridge.protocol import Snapshot

logger = logging.getLogger(__name__)

ASSET_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "scenes": (".scene", ".unity"),
    "prefabs": (".prefab",),
    "scripts": (".py", ".cs"),
}

SKIPPED_DIRECTORIES = {".git", "__pycache__", ".venv", "node_modules"}


def build_project_snapshot(root: str) -> Snapshot:
    """Groups files under ``root`` into asset categories by extension."""
    assets: Dict[str, list] = {category: [] for category in ASSET_CATEGORIES}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
        for filename in sorted(filenames):
            path = os.path.relpath(os.path.join(dirpath, filename), root).replace(os.sep, "/")
            for category, extensions in ASSET_CATEGORIES.items():
                if filename.endswith(extensions):
                    assets[category].append(path)
                    break
    return Snapshot(assets=assets)


async def run_editor_bridge(settings: EditorSettings,
                            state_mirror: StateMirror,
                            namespace: Optional[Dict[str, Any]] = None,
                            stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Runs the editor side of the bridge until ``stop_event`` is set (or forever).

    Args:
        settings: Editor bridge configuration
        state_mirror: Local state the host application keeps up to date
        namespace: Extra names made available to executed fragments
        stop_event: Optional event that ends the bridge when set
    """
    forwarder = LogForwarder(max_queue_size=settings.log_queue_size, enabled=settings.logging_enabled)
    logging.getLogger().addHandler(forwarder)
    manager = ConnectionManager(
        settings=settings,
        state_mirror=state_mirror,
        executor=PythonCodeExecutor(namespace=namespace, diagnostic_tag=settings.diagnostic_tag),
        log_forwarder=forwarder,
    )
    try:
        if not await manager.start():
            logger.warning(f"Initial connection failed ({manager.last_error}); "
                           f"retrying every {settings.reconnect_interval_seconds:g}s")
        await (stop_event or asyncio.Event()).wait()
    finally:
        await manager.stop()
        logging.getLogger().removeHandler(forwarder)


async def amain():
    settings = load_editor_settings()
    configure_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_to_file=settings.log_to_file,
        log_file_path=settings.log_file_path,
        max_lines_per_file=settings.log_max_lines_per_file,
        max_log_files=settings.log_max_files
    )
    setup_tracing()

    project_root = os.getcwd()
    state_mirror = StateMirror()
    state_mirror.publish(build_project_snapshot(project_root))
    logger.info(f"Publishing project snapshot for {project_root}")
    await run_editor_bridge(settings, state_mirror, namespace={"state_mirror": state_mirror})


def main():
    """Synchronous entry point."""
    try:
        asyncio.run(amain())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received. Editor bridge stopped.")
    except Exception as e:
        logger.critical(f"Critical error during editor bridge execution: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
