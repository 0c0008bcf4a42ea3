"""MCP server exposing dataset synchronization over stdio."""

import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, load_configuration, validate_configuration
from .errors import GitSyncError, InvalidRecord, error_handler
from .git_sync import Origin, Repository
from .git_sync.performance_logger import get_performance_logger


def setup_logging(config: Config) -> None:
    """Setup logging configuration with structured logging."""
    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    loggers = [
        'dataset_sync.init',
        'dataset_sync.git_sync',
        'dataset_sync.error_handler',
    ]

    formatter = StructuredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    for logger_name in loggers:
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, config.log_level))

        if not logger.handlers:
            # stdout carries the MCP protocol, so log to stderr
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.propagate = False


def open_dataset(config: Config) -> Repository:
    """
    Open the configured dataset, creating it when missing.

    A configured remote URL is cloned; otherwise an empty repository is
    initialized.
    """
    logger = logging.getLogger('dataset_sync.init')

    repository = Repository.try_open(config.dataset_dir, config)
    if repository is not None:
        return repository

    if config.remote_url:
        logger.info(f"Cloning dataset from {config.remote_url}")
        return Repository.clone(config.dataset_dir, Origin(config.remote_url, config.remote_token), config)

    logger.info(f"Initializing empty dataset at {config.dataset_dir}")
    return Repository.init(config.dataset_dir, config)


def _configured_origin(config: Config, url: Optional[str], token: Optional[str]) -> Optional[Origin]:
    """
    Origin for a tool call; the configured token only ever travels to the
    configured URL.
    """
    if url is None or url == config.remote_url:
        url = config.remote_url
        if token is None:
            token = config.remote_token
    if not url:
        return None
    return Origin(url=url, token=token)


def register_tools(server: FastMCP, server_config: Config) -> None:
    """Register MCP tools with the server instance."""

    def run(operation: str, action) -> dict:
        context = {"repository_path": str(server_config.dataset_dir), "operation": operation}
        try:
            data = action(open_dataset(server_config))
        except InvalidRecord as e:
            return error_handler.handle_validation_error(e, context).to_dict()
        except GitSyncError as e:
            return error_handler.handle_git_sync_error(e, context).to_dict()
        return error_handler.create_success_response(operation, data, context)

    @server.tool()
    def repository_status() -> dict:
        """
        Report the dataset's HEAD, upstream ahead/behind counts, working-tree
        changes and default branch.
        """
        return run("repository_status", lambda repository: repository.status().to_dict())

    @server.tool()
    def commit() -> dict:
        """
        Stage and commit every change in the dataset.

        Returns:
            Dictionary containing the resulting commit id
        """
        return run("commit", lambda repository: {"commit": repository.commit()})

    @server.tool()
    def pull(switch: bool = True) -> dict:
        """
        Fast-forward the dataset's default branch from its remote.

        Args:
            switch: Switch to the default branch first instead of failing when on another branch

        Returns:
            Dictionary with the outcome state (up_to_date, created_unborn,
            fast_forwarded) and branch
        """
        return run("pull", lambda repository: repository.pull(switch=switch).to_dict())

    @server.tool()
    def resolve(url: Optional[str] = None, token: Optional[str] = None) -> dict:
        """
        Fetch, fast-forward and push the dataset against a token-authenticated remote.

        An empty remote is bootstrapped by the push. ``ok`` is false when the
        histories have diverged.

        Args:
            url: Remote URL (defaults to the configured remote)
            token: Access token sent as an Authorization header over HTTP(S)
        """
        origin = _configured_origin(server_config, url, token)
        if origin is None:
            return error_handler.handle_validation_error(
                InvalidRecord("no remote URL given or configured"),
                {"repository_path": str(server_config.dataset_dir)}
            ).to_dict()
        return run("resolve", lambda repository: repository.resolve(origin).to_dict())

    @server.tool()
    def sync() -> dict:
        """Like resolve, against the dataset's default remote with negotiated credentials."""
        return run("sync", lambda repository: repository.sync().to_dict())

    init_logger = logging.getLogger('dataset_sync.init')
    init_logger.info("MCP tools registered successfully")


def initialize_server() -> FastMCP:
    """Initialize MCP server with stdio transport."""
    try:
        server_config = load_configuration()
        validation_issues = validate_configuration(server_config)

        setup_logging(server_config)
        init_logger = logging.getLogger('dataset_sync.init')

        if validation_issues:
            for issue in validation_issues:
                if issue.startswith("ERROR:"):
                    init_logger.error(issue[7:])
                elif issue.startswith("WARNING:"):
                    init_logger.warning(issue[9:])

            error_count = sum(1 for issue in validation_issues if issue.startswith("ERROR:"))
            if error_count > 0:
                init_logger.critical(f"Server startup failed due to {error_count} configuration error(s)")
                sys.exit(1)

        init_logger.info("Configuration loaded successfully")

        server = FastMCP("Dataset Sync", log_level=server_config.log_level)
        register_tools(server, server_config)

        init_logger.info(f"Dataset sync MCP server initialized for {server_config.dataset_dir}")
        return server

    except Exception as e:
        if 'init_logger' not in locals():
            logging.basicConfig(level=logging.ERROR)
            init_logger = logging.getLogger('dataset_sync.init')

        init_logger.critical(f"Server initialization failed: {e}", exc_info=True)
        raise


def main():
    """Main entry point for the dataset-sync server."""
    startup_logger = None

    try:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        startup_logger = logging.getLogger('dataset_sync.startup')
        startup_logger.info("Dataset Sync MCP Server")

        server = initialize_server()

        startup_logger.info("Starting server with stdio transport")
        try:
            server.run(transport="stdio")
        finally:
            get_performance_logger().log_performance_summary()

    except KeyboardInterrupt:
        if startup_logger:
            startup_logger.info("Server stopped by user (Ctrl+C)")
    except SystemExit:
        raise
    except Exception as e:
        if startup_logger:
            startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
