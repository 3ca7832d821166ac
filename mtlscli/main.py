"""mtlscli entry points."""

import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

import click
import tomllib

from .alias import wrap_key_manager
from .config import resolve_defaults
from .errors import ConfigParseError, MtlsClientError, TransmissionIOError
from .keystore import load_key_manager
from .options import Configuration, default_chain, format_usage, parse_arguments
from .session import Session, build_ssl_context
from .transmit import run_transmission
from .trust import load_trust_manager
from .utils import ExitCodes, format_success, handle_client_error, report_error


def get_version() -> str:
    """Get version from _version.py (built binary) or pyproject.toml (development)."""
    try:
        from ._version import __version__  # type: ignore[import-not-found]

        return __version__
    except ImportError:
        try:
            pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
            with open(pyproject_path, "rb") as f:
                pyproject_data = tomllib.load(f)
            return pyproject_data["project"]["version"]
        except Exception:
            return "unknown"


def establish_session(configuration: Configuration) -> Session:
    """Load the stores, build the TLS context and connect.

    Args:
        configuration: Parsed run configuration

    Returns:
        A session whose handshake has completed

    Raises:
        CredentialLoadError: If the identity store cannot be loaded
        TrustLoadError: If the trust store cannot be loaded
        HandshakeError: If connecting or the handshake fails
    """
    key_manager = load_key_manager(configuration.keystore, configuration.keystore_password)
    format_success(
        "Identity store loaded",
        {"Path": configuration.keystore, "Aliases": ", ".join(key_manager.store.aliases())},
    )
    trust_manager = load_trust_manager(configuration.truststore, configuration.truststore_password)
    format_success(
        "Trust store loaded",
        {"Path": configuration.truststore, "Anchors": len(trust_manager.anchors)},
    )

    context, alias = build_ssl_context(
        trust_manager, wrap_key_manager(key_manager, configuration.alias)
    )
    if configuration.alias is not None and alias is None:
        click.echo(
            f"✗ Warning: alias '{configuration.alias}' is not valid for any offered key type; "
            "no client certificate will be presented.",
            err=True,
        )

    session = Session(configuration.host, configuration.port, context, alias)
    session.connect()
    format_success(
        f"Connected to {configuration.host}:{configuration.port}",
        {
            "Protocol": session.version(),
            "Cipher": session.cipher(),
            "Client identity": alias or "none",
        },
    )
    return session


def run_client(args: Sequence[str], source: Optional[Iterable[str]] = None) -> None:
    """Parse arguments, connect, and forward input lines to the server.

    Exits the process with an ExitCodes value on any failure.

    Args:
        args: Client options (e.g. ['-host', 'example.test', '-alias', 'clientA'])
        source: Input lines to send (default: stdin)
    """
    chain = default_chain()
    defaults = resolve_defaults()
    try:
        configuration = parse_arguments(args, chain, defaults)
    except ConfigParseError as exc:
        report_error(exc)
        click.echo(format_usage(chain, defaults), err=True)
        sys.exit(ExitCodes.INVALID_INPUT)

    if configuration.alias is not None:
        click.echo(f"Forcing client alias '{configuration.alias}'", err=True)

    try:
        session = establish_session(configuration)
    except MtlsClientError as exc:
        handle_client_error(exc)
    except KeyboardInterrupt:
        click.echo("\n✗ Interrupted", err=True)
        sys.exit(ExitCodes.INTERRUPTED)

    if source is None:
        source = sys.stdin
    click.echo("Connected, now type input (Ctrl-D to finish):", err=True)

    try:
        sent = run_transmission(source, session)
    except TransmissionIOError as exc:
        handle_client_error(exc)
    except KeyboardInterrupt:
        session.close()
        click.echo("\n✗ Interrupted", err=True)
        sys.exit(ExitCodes.INTERRUPTED)

    format_success(f"End of input, sent {sent} line(s)")


CONTEXT_SETTINGS = dict(help_option_names=["--help"], ignore_unknown_options=True)

EPILOG = """\b
Options:
  -host <name>    server host (default 'localhost')
  -port <int>     server port (default 8087)
  -ks <path>      identity store, PKCS#12 file or directory
  -kspass <pw>    identity store password
  -ts <path>      trust store, PKCS#12 file
  -tspass <pw>    trust store password
  -alias <name>   force this client identity

Options are case-insensitive. Defaults may also come from
~/.config/mtlscli/config.json, MTLSCLI_* environment variables,
and (for passwords) the 'mtlscli' keyring service."""


@click.command(context_settings=CONTEXT_SETTINGS, epilog=EPILOG)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def cli(version: bool, args: Tuple[str, ...]) -> None:
    """mtlscli - TLS test client for mutual-authentication setups.

    Connects to a TLS server using the configured identity and trust stores,
    then sends each line read from standard input to the server.
    """
    if version:
        click.echo(f"mtlscli version {get_version()}")
        return
    run_client(list(args))
