import click
from pathlib import Path
import logging
import sys

__version__ = "0.1.0"


@click.command()
@click.option("--repository", "-r", type=Path, help="Default repository directory for context detection")
@click.option("-v", "--verbose", count=True)
@click.option(
    "--enable-file-logging",
    is_flag=True,
    help="Enable logging to file in logs/ directory",
)
@click.option(
    "--structured-logs",
    is_flag=True,
    help="Emit log records as JSON lines on stderr",
)
def main(repository: Path | None, verbose: int, enable_file_logging: bool, structured_logs: bool) -> None:
    """MCP Forgejo Server - Forgejo/Gitea repository tools for MCP"""
    import asyncio

    from .configuration import ConfigurationError, load_config_from_env
    from .logging_config import configure_logging
    from .server import serve

    try:
        config = load_config_from_env(repository)
    except ConfigurationError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(2)

    logging_level = config.log_level
    if verbose == 1:
        logging_level = "INFO"
    elif verbose >= 2:
        logging_level = "DEBUG"

    log_dir = None
    if enable_file_logging:
        log_dir = (repository if repository else Path.cwd()) / "logs"
    log_file = configure_logging(logging_level, structured=structured_logs, log_dir=log_dir)
    if log_file is not None:
        print(f"📝 Debug logging enabled: {log_file}", file=sys.stderr)
        logging.getLogger(__name__).info(f"📝 File logging enabled: {log_file}")

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("⌨️ Server interrupted by user")


if __name__ == "__main__":
    main()
