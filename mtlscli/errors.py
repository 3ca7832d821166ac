"""Exception types raised by the mtlscli client pipeline."""

from typing import Optional


class MtlsClientError(Exception):
    """Base class for every failure the client reports to the operator."""


class ConfigParseError(MtlsClientError):
    """The command line could not be turned into a Configuration."""

    def __init__(self, position: int, token: Optional[str], reason: str) -> None:
        """Initialize the parse error.

        Args:
            position: Cursor index where parsing stopped
            token: The offending argument, or None if the list ended early
            reason: Short description of what went wrong
        """
        self.position = position
        self.token = token
        self.reason = reason
        if token is None:
            message = f"{reason} at argument {position}"
        else:
            message = f"{reason} at argument {position}: '{token}'"
        super().__init__(message)


class CredentialLoadError(MtlsClientError):
    """The identity store, or a credential selected from it, could not be used."""

    def __init__(self, path: Optional[str], message: str) -> None:
        self.path = path
        super().__init__(f"{message} ({path})" if path is not None else message)


class TrustLoadError(MtlsClientError):
    """The trust store could not be opened or decoded."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{message} ({path})")


class HandshakeError(MtlsClientError):
    """Connecting to the server or completing the TLS handshake failed."""

    def __init__(self, host: str, port: int, message: str) -> None:
        self.host = host
        self.port = port
        super().__init__(f"{host}:{port}: {message}")


class TransmissionIOError(MtlsClientError):
    """Reading input or writing to the established session failed."""

    def __init__(self, lines_sent: int, message: str) -> None:
        self.lines_sent = lines_sent
        super().__init__(f"{message} (after {lines_sent} line(s))")
