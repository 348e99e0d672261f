#!/usr/bin/env python
"""Main entry point for the Unfold note store server."""
import argparse
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from unfold_store import __version__
from unfold_store.config import StoreConfig, config
from unfold_store.exceptions import ConfigurationError, SchemaError
from unfold_store.models.db_models import init_db
from unfold_store.observability import configure_logging
from unfold_store.server.mcp_server import UnfoldMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Unfold note store server")
    parser.add_argument(
        "--app-data-dir",
        help="Directory holding the database file",
        type=str,
        default=os.environ.get("UNFOLD_APP_DATA_DIR")
    )
    parser.add_argument(
        "--app-local-data-dir",
        help="Directory holding the images directory",
        type=str,
        default=os.environ.get("UNFOLD_APP_LOCAL_DATA_DIR")
    )
    parser.add_argument(
        "--channel",
        help="Build channel; non-stable channels use their own database file",
        type=str,
        default=os.environ.get("UNFOLD_CHANNEL")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path (overrides data dir and channel)",
        type=str,
        default=None
    )
    parser.add_argument(
        "--schema-version",
        help="Stop migrating at this schema version",
        type=int,
        default=None
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments.

    Raises:
        ConfigurationError: If the overrides produce an invalid configuration.
    """
    if args.app_data_dir:
        config.app_data_dir = Path(args.app_data_dir).expanduser()
    if args.app_local_data_dir:
        config.app_local_data_dir = Path(args.app_local_data_dir).expanduser()
    if args.channel:
        config.channel = args.channel
    try:
        StoreConfig.model_validate(config.model_dump())
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def main(argv=None):
    """Run the Unfold note store server."""
    args = parse_args(argv)
    try:
        update_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(2)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    # Open the store; migrations run to completion before anything else
    try:
        database_path = args.database_path or config.get_database_path()
        logger.info(f"Using SQLite database: {database_path}")
        engine = init_db(database_path, target_version=args.schema_version)
    except SchemaError as e:
        logger.error(f"Failed to open note store: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting Unfold MCP server")
        server = UnfoldMcpServer(engine=engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
