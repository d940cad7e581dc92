"""liveserve CLI - development static server with livereload and proxies."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

# Load .env file so LIVESERVE_* variables apply before options are read
load_dotenv()

import click  # noqa: E402

from liveserve import __version__  # noqa: E402
from liveserve.logging import VerbosityLevel  # noqa: E402

if TYPE_CHECKING:
    from liveserve.config import ServerConfig


class LiveServeContext:
    """Shared context for CLI commands."""

    def __init__(self) -> None:
        self.config_path: Path | None = None
        self.verbosity: VerbosityLevel = "normal"
        self.debug: bool = False


pass_context = click.make_pass_decorator(LiveServeContext, ensure=True)


def _parse_proxy(value: str) -> dict[str, Any]:
    source, sep, target = value.partition("=")
    if not sep or not source or not target:
        raise click.BadParameter(f"expected SOURCE=TARGET, got {value!r}", param_hint="--proxy")
    return {"source": source, "target": target}


def _load_config(ctx: LiveServeContext, **overrides: Any) -> ServerConfig:
    """Resolve options from config file, environment and flags, exiting on errors."""
    from liveserve.config import ServerOptions, resolve_config
    from liveserve.errors import ConfigError
    from liveserve.logging import print_error

    try:
        return resolve_config(ServerOptions.load(ctx.config_path, **overrides))
    except ConfigError as e:
        print_error(e.message)
        sys.exit(e.exit_code)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output")
@click.option("--debug", is_flag=True, help="Show full tracebacks on errors")
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.version_option(version=__version__, prog_name="liveserve")
@pass_context
def cli(ctx: LiveServeContext, verbose: bool, quiet: bool, debug: bool, config: Path | None) -> None:
    """liveserve - static files, livereload and proxies for local development.

    \b
    Commands:
      serve        Serve a directory (Ctrl+C to stop)
      config       Show the resolved configuration
      init         Write a starter .liveserve.toml

    Use 'liveserve <command> --help' for details.
    """
    from liveserve.logging import setup_logging

    ctx.debug = debug
    ctx.config_path = config

    if quiet:
        ctx.verbosity = "quiet"
    elif verbose:
        ctx.verbosity = "verbose"
    else:
        ctx.verbosity = "normal"

    setup_logging(ctx.verbosity)


@cli.command("serve")
@click.argument("root", type=click.Path(exists=True, file_okay=False, path_type=Path), default=".")
@click.option("--port", "-p", type=int, default=None, help="HTTP port (default: 8000)")
@click.option("--host", type=str, default=None, help="Bind address (default: localhost)")
@click.option("--https", "use_https", is_flag=True, default=None, help="Serve over TLS")
@click.option("--cert", type=click.Path(path_type=Path), default=None, help="TLS certificate (PEM)")
@click.option("--key", type=click.Path(path_type=Path), default=None, help="TLS private key (PEM)")
@click.option("--default-file", type=str, default=None, help="Directory index file")
@click.option(
    "--directory-listing/--no-directory-listing",
    default=None,
    help="Render listings for directories without an index file",
)
@click.option("--livereload/--no-livereload", default=None, help="Reload browsers on changes")
@click.option(
    "--proxy",
    "proxies",
    multiple=True,
    metavar="SOURCE=TARGET",
    help="Proxy a path prefix to another origin (repeatable)",
)
@click.option("--open", "open_browser", is_flag=True, default=None, help="Open a browser tab")
@pass_context
def serve(
    ctx: LiveServeContext,
    root: Path,
    port: int | None,
    host: str | None,
    use_https: bool | None,
    cert: Path | None,
    key: Path | None,
    default_file: str | None,
    directory_listing: bool | None,
    livereload: bool | None,
    proxies: tuple[str, ...],
    open_browser: bool | None,
) -> None:
    """Serve ROOT until interrupted.

    \b
    Examples:
        liveserve serve                     # Serve the current directory
        liveserve serve dist --livereload   # Reload browsers on changes
        liveserve serve --proxy /api=http://localhost:3000
        liveserve serve --https --open      # Bundled dev certificate
    """
    from liveserve.errors import BindError, ConfigError
    from liveserve.logging import print_error, print_info, print_success
    from liveserve.server.lifecycle import start

    if (cert is None) != (key is None):
        raise click.UsageError("--cert and --key must be given together")

    https: Any = None
    if cert is not None and key is not None:
        https = {"cert": cert, "key": key}
    elif use_https:
        https = True

    config = _load_config(
        ctx,
        port=port,
        host=host,
        https=https,
        default_file=default_file,
        directory_listing=directory_listing,
        livereload=livereload,
        proxies=[_parse_proxy(p) for p in proxies] or None,
        open=open_browser,
    )

    try:
        instance = start(config, root)
    except (BindError, ConfigError) as e:
        print_error(e.message)
        sys.exit(e.exit_code)

    print_success(f"Serving {instance.root} at {config.url}")
    if config.livereload.enabled:
        print_info(f"Livereload on {config.reload_url}")
    for rule in config.proxies:
        print_info(f"Proxy {rule.source} -> {rule.target}")
    print_info("Press Ctrl+C to stop")

    try:
        instance.wait()
    except KeyboardInterrupt:
        pass
    finally:
        instance.stop()
    print_info("Stopped")


@cli.command("config")
@pass_context
def show_config(ctx: LiveServeContext) -> None:
    """Show the configuration serve would use."""
    from rich.table import Table

    from liveserve.logging import console

    config = _load_config(ctx)

    table = Table(title="liveserve configuration")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("URL", config.url)
    table.add_row("Default file", config.default_file)
    table.add_row("Directory listing", "Yes" if config.directory_listing else "No")
    if config.tls:
        table.add_row("Certificate", "bundled" if config.tls.bundled else str(config.tls.cert_file))
    if config.livereload.enabled:
        table.add_row("Livereload", config.reload_url)
    else:
        table.add_row("Livereload", "off")
    for rule in config.proxies:
        table.add_row(f"Proxy {rule.source}", rule.target)
    table.add_row("Open browser", config.open_path if config.open_browser else "No")

    console.print(table)


@cli.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(force: bool) -> None:
    """Write a starter .liveserve.toml in the current directory."""
    from liveserve.config import get_default_config_toml
    from liveserve.errors import ExitCode
    from liveserve.logging import print_error, print_success
    from liveserve.paths import CONFIG_FILE

    target = Path.cwd() / CONFIG_FILE
    if target.exists() and not force:
        print_error(f"{target} already exists (use --force to overwrite)")
        sys.exit(ExitCode.CONFIG_ERROR)

    target.write_text(get_default_config_toml())
    print_success(f"Wrote {target}")


def main() -> None:
    """Entry point for the CLI."""
    debug_mode = "--debug" in sys.argv

    try:
        cli()
    except click.ClickException:
        raise
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        from liveserve.errors import ExitCode
        from liveserve.logging import print_error, print_info

        print_error(f"Error: {e}")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print_info("Run with --debug for full traceback.")
        sys.exit(ExitCode.FATAL_ERROR)


if __name__ == "__main__":
    main()
