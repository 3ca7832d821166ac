"""Shared reporting helpers and exit codes for mtlscli."""

import os
import sys
import traceback
from typing import Any, Dict, NoReturn, Optional

import click

from .errors import (
    ConfigParseError,
    CredentialLoadError,
    HandshakeError,
    MtlsClientError,
    TransmissionIOError,
    TrustLoadError,
)


class ExitCodes:
    """Standard exit codes for CLI operations."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_INPUT = 2
    NETWORK_ERROR = 5
    INTERRUPTED = 130


def debug_enabled() -> bool:
    """Return True when MTLSCLI_DEBUG asks for tracebacks on reported errors."""
    return os.environ.get("MTLSCLI_DEBUG") == "1"


def exit_code_for(exc: MtlsClientError) -> int:
    """Map a client error to the process exit code used when reporting it."""
    if isinstance(exc, ConfigParseError):
        return ExitCodes.INVALID_INPUT
    if isinstance(exc, HandshakeError):
        return ExitCodes.NETWORK_ERROR
    if isinstance(exc, TransmissionIOError):
        # The session was up; losing it mid-stream ends the run normally.
        return ExitCodes.SUCCESS
    return ExitCodes.GENERAL_ERROR


def describe_error(exc: MtlsClientError) -> str:
    """Return the operator-facing category label for a client error."""
    if isinstance(exc, ConfigParseError):
        return "Invalid arguments"
    if isinstance(exc, CredentialLoadError):
        return "Cannot load identity store"
    if isinstance(exc, TrustLoadError):
        return "Cannot load trust store"
    if isinstance(exc, HandshakeError):
        return "Connection failed"
    if isinstance(exc, TransmissionIOError):
        return "Transmission ended"
    return "Error"


def report_error(exc: MtlsClientError) -> None:
    """Print a client error consistently, with the cause chain when available.

    Args:
        exc: The exception to report
    """
    message = f"✗ {describe_error(exc)}: {exc}"
    cause = exc.__cause__
    if cause is not None and str(cause):
        message += f"\n  Cause: {cause.__class__.__name__}: {cause}"
    click.echo(message, err=True)
    if debug_enabled():
        traceback.print_exception(type(exc), exc, exc.__traceback__)


def handle_client_error(exc: MtlsClientError) -> NoReturn:
    """Report a client error and exit with the matching exit code.

    Args:
        exc: The exception to handle
    """
    report_error(exc)
    sys.exit(exit_code_for(exc))


def format_success(message: str, data: Optional[Dict[str, Any]] = None) -> None:
    """Format success messages consistently.

    Args:
        message: Success message to display
        data: Optional data to display with the message
    """
    click.echo(f"✓ {message}", err=True)
    if data:
        for key, value in data.items():
            click.echo(f"  {key}: {value}", err=True)
