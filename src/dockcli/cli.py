"""Main Typer application: global options and command registration.

Entry point: ``dockcli`` (configured via pyproject.toml scripts).
"""

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, List, Optional

import typer
from pydantic import ValidationError

from .command import CommandContext
from .commands import container as container_cmd
from .commands import context as context_cmd
from .commands import plugin as plugin_cmd
from .commands import stack as stack_cmd
from .commands import trust as trust_cmd
from .config import ClientSettings
from .exceptions import DockCliError, InvalidArgumentError, RequestCancelledError

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_VALIDATION = 125

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(
    name="dockcli",
    help="A client for the container engine API with content trust.",
    no_args_is_help=True,
    add_completion=False,
)
container_app = typer.Typer(help="Manage containers.", no_args_is_help=True)
plugin_app = typer.Typer(help="Manage plugins.", no_args_is_help=True)
trust_app = typer.Typer(help="Manage trust on images.", no_args_is_help=True)
stack_app = typer.Typer(help="Manage stacks.", no_args_is_help=True)
context_app = typer.Typer(help="Manage contexts.", no_args_is_help=True)

app.add_typer(container_app, name="container")
app.add_typer(plugin_app, name="plugin")
app.add_typer(trust_app, name="trust")
app.add_typer(stack_app, name="stack")
app.add_typer(context_app, name="context")

POSITIONAL_TAIL = {"allow_interspersed_args": False}


async def build_context(settings: ClientSettings) -> CommandContext:
    return await CommandContext.load(settings, sys.stdout, sys.stderr, sys.stdin)


async def _invoke(
    settings: ClientSettings, action: Callable[[CommandContext], Awaitable[Any]]
) -> None:
    ctx = await build_context(settings)
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def interrupt() -> None:
        logger.debug("interrupt received, cancelling")
        ctx.cancelled.set()
        task.cancel()

    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not available")

    try:
        await action(ctx)
    except asyncio.CancelledError:
        if not ctx.cancelled.is_set():
            raise
        raise RequestCancelledError("context canceled") from None
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await ctx.close()


def run(typer_ctx: typer.Context, action: Callable[[CommandContext], Awaitable[Any]]) -> None:
    """Run a command coroutine, mapping errors to messages and exit codes."""
    settings: ClientSettings = typer_ctx.obj
    try:
        asyncio.run(_invoke(settings, action))
    except InvalidArgumentError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_VALIDATION) from e
    except DockCliError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE) from e


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", help="Location of client config files."
    ),
    host: Optional[str] = typer.Option(None, "-H", "--host", help="Daemon socket to connect to."),
    log_level: Optional[str] = typer.Option(
        None, "-l", "--log-level", help='Set the logging level ("debug", "info", "warning", "error").'
    ),
    debug: bool = typer.Option(False, "-D", "--debug", help="Enable debug mode."),
) -> None:
    """Resolve settings once and configure logging."""
    overrides = {}
    if config is not None:
        overrides["config_dir"] = config
    if host:
        overrides["host"] = host
    if log_level:
        overrides["log_level"] = log_level
    if debug:
        overrides["debug"] = True
    try:
        settings = ClientSettings(**overrides)
    except ValidationError as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(EXIT_VALIDATION) from e

    level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), None
    )
    if not isinstance(level, int):
        typer.echo(f"Error: unable to parse logging level: {settings.log_level}", err=True)
        raise typer.Exit(EXIT_VALIDATION)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    ctx.obj = settings


# -- container ---------------------------------------------------------------


@container_app.command("create", context_settings=POSITIONAL_TAIL)
def container_create(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image to create the container from."),
    command: Optional[List[str]] = typer.Argument(None, help="Command and arguments."),
    name: str = typer.Option("", "--name", help="Assign a name to the container."),
    pull: str = typer.Option(
        container_cmd.PULL_IMAGE_MISSING,
        "--pull",
        help='Pull image before creating ("always", "missing", "never").',
    ),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Suppress the pull output."),
    platform: str = typer.Option("", "--platform", help="Set platform if server is multi-platform capable."),
    disable_content_trust: bool = typer.Option(
        False, "--disable-content-trust", help="Skip image verification."
    ),
    cidfile: str = typer.Option("", "--cidfile", help="Write the container ID to the file."),
    env: Optional[List[str]] = typer.Option(None, "-e", "--env", help="Set environment variables."),
    label: Optional[List[str]] = typer.Option(None, "--label", help="Set meta data on a container."),
    memory: str = typer.Option("", "-m", "--memory", help="Memory limit."),
    dns: Optional[List[str]] = typer.Option(None, "--dns", help="Set custom DNS servers."),
    oom_kill_disable: bool = typer.Option(False, "--oom-kill-disable", help="Disable OOM Killer."),
    entrypoint: Optional[str] = typer.Option(None, "--entrypoint", help="Overwrite the default ENTRYPOINT."),
    workdir: str = typer.Option("", "-w", "--workdir", help="Working directory inside the container."),
    user: str = typer.Option("", "-u", "--user", help="Username or UID."),
    tty: bool = typer.Option(False, "-t", "--tty", help="Allocate a pseudo-TTY."),
    interactive: bool = typer.Option(False, "-i", "--interactive", help="Keep STDIN open."),
    volume: Optional[List[str]] = typer.Option(None, "-v", "--volume", help="Bind mount a volume."),
    use_docker_socket: bool = typer.Option(
        False, "--use-docker-socket", help="Bind mount the engine socket and required auth."
    ),
) -> None:
    """Create a new container."""
    settings: ClientSettings = ctx.obj
    options = container_cmd.CreateOptions(
        image=image,
        command=list(command or []),
        name=name,
        pull=pull,
        quiet=quiet,
        platform=platform,
        untrusted=disable_content_trust or not settings.content_trust,
        cidfile=cidfile,
        env=list(env or []),
        labels=list(label or []),
        memory=memory,
        dns=list(dns or []),
        oom_kill_disable=oom_kill_disable,
        entrypoint=entrypoint,
        workdir=workdir,
        user=user,
        tty=tty,
        interactive=interactive,
        volumes=list(volume or []),
        use_docker_socket=use_docker_socket,
    )
    run(ctx, lambda cmd_ctx: container_cmd.run_create(cmd_ctx, options))


app.command("create", context_settings=POSITIONAL_TAIL, help="Create a new container.")(
    container_create
)


# -- plugin ------------------------------------------------------------------


@plugin_app.command("install", context_settings=POSITIONAL_TAIL)
def plugin_install(
    ctx: typer.Context,
    plugin: str = typer.Argument(..., help="Plugin to install."),
    args: Optional[List[str]] = typer.Argument(None, help="KEY=VALUE settings."),
    grant_all_permissions: bool = typer.Option(
        False, "--grant-all-permissions", help="Grant all permissions necessary to run the plugin."
    ),
    disable: bool = typer.Option(False, "--disable", help="Do not enable the plugin on install."),
    alias: str = typer.Option("", "--alias", help="Local name for plugin."),
    disable_content_trust: bool = typer.Option(
        False, "--disable-content-trust", help="Skip image verification."
    ),
) -> None:
    """Install a plugin."""

    async def action(cmd_ctx: CommandContext) -> None:
        options = plugin_cmd.parse_plugin_options(
            cmd_ctx, plugin, args, alias, grant_all_permissions, disable, disable_content_trust
        )
        await plugin_cmd.run_install(cmd_ctx, options)

    run(ctx, action)


@plugin_app.command("create")
def plugin_create(
    ctx: typer.Context,
    plugin: str = typer.Argument(..., help="Plugin name."),
    directory: str = typer.Argument(..., metavar="DIR", help="Directory with config.json and rootfs."),
    compress: bool = typer.Option(False, "--compress", help="Compress the context using gzip."),
) -> None:
    """Create a plugin from a rootfs and configuration."""
    run(ctx, lambda cmd_ctx: plugin_cmd.run_create(cmd_ctx, plugin, directory, compress))


@plugin_app.command("push")
def plugin_push(
    ctx: typer.Context,
    plugin: str = typer.Argument(..., metavar="PLUGIN[:TAG]", help="Plugin to push."),
    disable_content_trust: bool = typer.Option(
        False, "--disable-content-trust", help="Skip image signing."
    ),
) -> None:
    """Push a plugin to a registry."""

    async def action(cmd_ctx: CommandContext) -> None:
        untrusted = plugin_cmd.plugin_untrusted(cmd_ctx, disable_content_trust)
        await plugin_cmd.run_push(cmd_ctx, plugin, untrusted)

    run(ctx, action)


@plugin_app.command("rm")
def plugin_remove(
    ctx: typer.Context,
    plugins: List[str] = typer.Argument(..., metavar="PLUGIN...", help="Plugins to remove."),
    force: bool = typer.Option(False, "-f", "--force", help="Force the removal of an active plugin."),
) -> None:
    """Remove one or more plugins."""
    run(ctx, lambda cmd_ctx: plugin_cmd.run_remove(cmd_ctx, plugins, force))


# -- trust -------------------------------------------------------------------


@trust_app.command("inspect")
def trust_inspect(
    ctx: typer.Context,
    images: List[str] = typer.Argument(..., metavar="IMAGE[:TAG]...", help="Images to inspect."),
) -> None:
    """Return low-level information about keys and signatures."""
    run(ctx, lambda cmd_ctx: trust_cmd.run_inspect(cmd_ctx, images))


# -- stack -------------------------------------------------------------------


@stack_app.command("ps")
def stack_ps(
    ctx: typer.Context,
    stack: str = typer.Argument(..., help="Stack name."),
    filter_: Optional[List[str]] = typer.Option(None, "-f", "--filter", help="Filter output."),
    no_resolve: bool = typer.Option(False, "--no-resolve", help="Do not map IDs to Names."),
    no_trunc: bool = typer.Option(False, "--no-trunc", help="Do not truncate output."),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only display task IDs."),
) -> None:
    """List the tasks in the stack."""
    run(
        ctx,
        lambda cmd_ctx: stack_cmd.run_ps(cmd_ctx, stack, filter_, no_resolve, no_trunc, quiet),
    )


# -- context -----------------------------------------------------------------


@context_app.command("show")
def context_show(ctx: typer.Context) -> None:
    """Print the name of the current context."""
    run(ctx, context_cmd.run_show)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
