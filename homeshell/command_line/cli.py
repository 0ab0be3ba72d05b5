"""Command line entry points.

``cosh`` is the command delegator on its own; ``homeshell`` groups the shell
helpers and exposes the delegator as ``homeshell cosh``.
"""

import functools
import logging
import os
import platform

import click
from rich.logging import RichHandler
from rich.markdown import Markdown

from homeshell import __version__
from homeshell import config as user_config
from homeshell.delegator import CommandDelegator, DelegatorConfig, DelegatorError
from homeshell.messaging import emit_error, emit_info, emit_success, emit_warning, get_console
from homeshell.tools import archive, filesystem, java, network
from homeshell.tools.command_runner import HelperError

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "HOMESHELL_LOG_LEVEL"

PASSTHROUGH_SETTINGS = {
    "ignore_unknown_options": True,
    "allow_interspersed_args": False,
}


def configure_logging(verbose: bool = False):
    if verbose:
        level = logging.DEBUG
    else:
        level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV, "WARNING").upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=get_console(), show_path=False)],
    )


def handle_errors(func):
    """Report helper and delegator failures and exit with their code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (HelperError, DelegatorError) as e:
            emit_error(str(e))
            raise click.exceptions.Exit(e.exit_code)

    return wrapper


def _exit_with(code: int):
    if code:
        raise click.exceptions.Exit(code)


def _run_delegated(scratch_dir, command, args):
    logger.debug(f"cosh {command} {list(args)}")
    config = DelegatorConfig.from_environment(scratch_dir=scratch_dir)
    delegator = CommandDelegator(config)
    if not delegator.is_engine_available():
        emit_warning(f"'{config.docker_command}' not found on PATH; the delegated run will fail")
    _exit_with(delegator.run(command, list(args)))


_scratch_dir_option = click.option(
    "--scratch-dir",
    type=click.Path(file_okay=False, resolve_path=True),
    default=None,
    help="Use this cache directory instead of $TMPDIR/cosh.",
)


@click.command(context_settings=PASSTHROUGH_SETTINGS)
@_scratch_dir_option
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@handle_errors
def cosh(scratch_dir, command, args):
    """Run COMMAND inside a container that mirrors the host environment."""
    configure_logging()
    _run_delegated(scratch_dir, command, args)


@click.group()
@click.version_option(__version__, prog_name="homeshell")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output.")
def main(verbose):
    """Shell convenience helpers."""
    configure_logging(verbose)


main.add_command(cosh)


@main.command("cosh-status")
def cosh_status():
    """Show the state of the delegator cache."""
    config = DelegatorConfig.from_environment()
    status = CommandDelegator(config).get_status()

    def yes_no(value):
        return "✅ Yes" if value else "❌ No"

    status_text = f"""
# cosh status

**Scratch directory:** `{status['scratch_dir']}`
**Toolchain binary:** `{status['binary']}`
**Bootstrapped:** {yes_no(status['bootstrapped'])}
**Engine on PATH:** {yes_no(status['engine_available'])}
**Checksum pinned:** {yes_no(status['checksum_pinned'])}

**Image:** `{status['image']}`
**Toolchain URL:** {status['toolchain_url']}
"""
    if status["missing_shims"]:
        status_text += "\n**Missing shims:**\n"
        for path in status["missing_shims"]:
            status_text += f"  - `{path}`\n"

    get_console().print(Markdown(status_text))


@main.command()
@click.argument("directories", nargs=-1, required=True)
@handle_errors
def mkd(directories):
    """Create directories and print the last one (for cd "$(homeshell mkd x)")."""
    click.echo(str(filesystem.mkd(directories)))


@main.command()
@click.argument("paths", nargs=-1)
@handle_errors
def fs(paths):
    """Report the size of files or directories."""
    _exit_with(filesystem.fs(paths))


@main.command()
@click.argument("paths", nargs=-1)
@click.option("--pager/--no-pager", default=None, help="Page output through less.")
@handle_errors
def tre(paths, pager):
    """Tree listing that skips .git, node_modules and bower_components."""
    _exit_with(filesystem.tre(paths, paginate=pager))


@main.command()
@click.argument("target")
@handle_errors
def targz(target):
    """Create TARGET.tar.gz using zopfli, pigz or gzip."""
    archive.targz(target)


@main.command()
@click.argument("port", type=int, default=network.DEFAULT_SERVER_PORT)
@click.option("--open", "open_browser", is_flag=True, help="Open the page in a browser.")
@handle_errors
def server(port, open_browser):
    """Serve the current directory over HTTP."""
    _exit_with(network.server(port, open_browser=open_browser))


@main.command()
@click.argument("port", type=int, default=network.DEFAULT_PHP_PORT)
@click.option("--host", default="localhost", show_default=True)
@handle_errors
def phpserver(port, host):
    """Serve the current directory with PHP's built-in server."""
    _exit_with(network.phpserver(port, host))


@main.command()
@click.argument("domain")
@handle_errors
def getcertnames(domain):
    """Show the Common Name and SANs of a domain's TLS certificate."""
    names = network.getcertnames(domain)
    emit_info("Common Name:")
    click.echo(names.common_name or "")
    emit_info("Subject Alternative Name(s):")
    for name in names.alt_names:
        click.echo(name)


@main.command()
@click.argument("domain")
@handle_errors
def digga(domain):
    """Show all DNS records for a domain."""
    _exit_with(network.digga(domain))


@main.command()
@click.argument("version")
@handle_errors
def setjdk(version):
    """Print exports switching to a JDK (use with eval)."""
    lines = java.setjdk(
        version,
        system=platform.system(),
        path_value=os.environ.get("PATH", ""),
        old_java_home=os.environ.get("JAVA_HOME"),
    )
    for line in lines:
        click.echo(line)


@main.group("config")
def config_group():
    """Read and write ~/.homeshell/homeshell.cfg."""


@config_group.command("list")
def config_list():
    values = user_config.get_all_values()
    for key in user_config.get_config_keys():
        click.echo(f"{key} = {values.get(key, '')}")


@config_group.command("get")
@click.argument("key")
def config_get(key):
    value = user_config.get_value(key)
    if value is None:
        raise click.exceptions.Exit(1)
    click.echo(value)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key, value):
    if key not in user_config.CONFIG_KEYS:
        emit_warning(f"'{key}' is not a known setting; storing it anyway")
    user_config.set_config_value(key, value)
    emit_success(f"✅ Set {key}")


@config_group.command("unset")
@click.argument("key")
def config_unset(key):
    if user_config.unset_config_value(key):
        emit_success(f"✅ Removed {key}")
    else:
        emit_warning(f"{key} was not set")


if __name__ == "__main__":
    main()
