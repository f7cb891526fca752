"""
Main entry point for the bridge control process.
Starts the endpoint the editor connects to and the HTTP routes exposing the query façade.
"""

import logging
import asyncio
import os
import sys
from logging.handlers import RotatingFileHandler

from aiohttp import web

# Basic logging until we load configuration
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from bridge.config import DEFAULT_LOG_FORMAT, load_settings
from bridge.context import BridgeContext
from bridge.observability import setup_tracing

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("socketio", "engineio", "aiohttp.access")

# Bytes per line used to turn a line budget into a rotation size
APPROX_BYTES_PER_LINE = 100


def _rotating_file_handler(log_file_path: str, max_lines_per_file: int, max_log_files: int) -> RotatingFileHandler:
    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    # backupCount excludes the live file
    return RotatingFileHandler(
        filename=log_file_path,
        maxBytes=max_lines_per_file * APPROX_BYTES_PER_LINE,
        backupCount=max(max_log_files - 1, 0),
        encoding='utf-8'
    )


def configure_logging(log_level: str = "INFO", log_format: str = DEFAULT_LOG_FORMAT,
                      log_to_file: bool = False, log_file_path: str = "logs/bridge.log",
                      max_lines_per_file: int = 5000, max_log_files: int = 10):
    """
    Replaces the root handlers with a console handler and, optionally, a rotating
    log file. Socket.IO and aiohttp access logs are held at WARNING or above.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log message format string
        log_to_file: Whether to also write to ``log_file_path``
        log_file_path: Path to log file (directory will be created if needed)
        max_lines_per_file: Approximate lines per log file before rotation
        max_log_files: Number of log files kept, including the live one
    """
    numeric_level = logging.getLevelName(log_level.upper())
    if not isinstance(numeric_level, int):
        logging.basicConfig(level=logging.INFO, format=log_format, force=True)
        logger.error(f"Invalid log level: {log_level}. Using INFO instead.")
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)
    handlers = [logging.StreamHandler()]
    file_error = None
    if log_to_file:
        try:
            handlers.append(_rotating_file_handler(log_file_path, max_lines_per_file, max_log_files))
        except OSError as e:
            file_error = e

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if file_error is not None:
        logger.warning(f"Failed to set up file logging at {log_file_path}: {file_error}. Logging to console only.")
    logger.info(f"Logging configured: level={log_level.upper()}, "
                f"file={log_file_path if log_to_file and file_error is None else 'off'}")


async def amain():
    """Asynchronous main entry point."""
    settings = load_settings()

    configure_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_to_file=settings.log_to_file,
        log_file_path=settings.log_file_path,
        max_lines_per_file=settings.log_max_lines_per_file,
        max_log_files=settings.log_max_files
    )
    setup_tracing()

    logger.info("Initializing BridgeContext...")
    context = BridgeContext(settings)
    app = context.create_app()

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.host, settings.port)

    try:
        await site.start()
        logger.info(f"Bridge server started on http://{settings.host}:{settings.port}")
        logger.info(f"  Editor endpoint: Socket.IO on http://{settings.host}:{settings.port}/socket.io/")
        logger.info(f"  GET  http://{settings.host}:{settings.port}/health - Connection status")
        logger.info(f"  GET  http://{settings.host}:{settings.port}/snapshot?mode=Full|ScriptsOnly|NoScripts - Editor state")
        logger.info(f"  POST http://{settings.host}:{settings.port}/commands - Execute a code fragment")
        logger.info(f"  GET  http://{settings.host}:{settings.port}/logs - Query editor logs")
        await asyncio.Event().wait()  # Run until cancelled
    except asyncio.CancelledError:
        logger.info("Bridge server cancelled. Initiating shutdown...")
    finally:
        logger.info("Bridge process shutting down...")
        await context.shutdown()
        await runner.cleanup()
        logger.info("Shutdown sequence complete.")


def main():
    """Synchronous entry point."""
    try:
        asyncio.run(amain())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received. Bridge stopped.")
    except Exception as e:
        logger.critical(f"Critical error during bridge execution: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
