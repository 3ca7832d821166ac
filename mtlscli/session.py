"""TLS context construction and the client session."""

import secrets
import socket
import ssl
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    PrivateFormat,
)

from .errors import CredentialLoadError, HandshakeError
from .keystore import KeyManager
from .trust import StoreTrustManager

# Key algorithms offered to the key manager, in preference order.
DEFAULT_CLIENT_KEY_TYPES: Tuple[str, ...] = ("RSA", "EC", "Ed25519", "Ed448")


class SessionState(Enum):
    """Lifecycle of a client session."""

    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    HANDSHAKE_COMPLETE = "handshake-complete"
    CLOSED = "closed"
    FAILED = "failed"


def _install_identity(context: ssl.SSLContext, key_manager: KeyManager, alias: str) -> None:
    """Load the chain and key for alias into context.

    The ssl module only reads credentials from files, so they are written to a
    private temporary directory (key encrypted with a one-time secret) and
    removed before returning.
    """
    chain = key_manager.get_certificate_chain(alias)
    private_key = key_manager.get_private_key(alias)
    if not chain or private_key is None:
        raise CredentialLoadError(
            None, f"Selected alias '{alias}' has no certificate chain or private key"
        )

    secret = secrets.token_bytes(32)
    with tempfile.TemporaryDirectory(prefix="mtlscli-") as workdir:
        cert_file = Path(workdir) / "chain.pem"
        key_file = Path(workdir) / "key.pem"
        cert_file.write_bytes(b"".join(cert.public_bytes(Encoding.PEM) for cert in chain))
        key_file.write_bytes(
            private_key.private_bytes(
                encoding=Encoding.PEM,
                format=PrivateFormat.PKCS8,
                encryption_algorithm=BestAvailableEncryption(secret),
            )
        )
        try:
            context.load_cert_chain(str(cert_file), str(key_file), password=secret)
        except ssl.SSLError as exc:
            raise CredentialLoadError(
                None, f"TLS engine rejected the credential for alias '{alias}'"
            ) from exc


def build_ssl_context(
    trust_manager: StoreTrustManager,
    key_manager: KeyManager,
    key_types: Sequence[str] = DEFAULT_CLIENT_KEY_TYPES,
    issuers: Optional[Sequence[x509.Name]] = None,
) -> Tuple[ssl.SSLContext, Optional[str]]:
    """Build a TLS client context from trust and identity capabilities.

    The server chain is verified against the trust anchors; the host name is
    not checked. The key manager picks the client identity; when it picks
    none, no client certificate is offered.

    Args:
        trust_manager: Trust-decision capability
        key_manager: Identity capability, possibly alias-forcing
        key_types: Acceptable key algorithms, in preference order
        issuers: Acceptable certificate issuers (None accepts any)

    Returns:
        Tuple of (context, selected alias or None)
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    trust_manager.configure(context)

    alias = key_manager.choose_client_alias(key_types, issuers)
    if alias is not None:
        _install_identity(context, key_manager, alias)
    return context, alias


class Session:
    """One TLS connection to the server, from connect to close."""

    def __init__(
        self,
        host: str,
        port: int,
        context: ssl.SSLContext,
        selected_alias: Optional[str] = None,
    ) -> None:
        """Initialize an unconnected session.

        Args:
            host: Server host name or address
            port: Server port
            context: TLS client context from build_ssl_context()
            selected_alias: Alias the context presents, for reporting
        """
        self.host = host
        self.port = port
        self.context = context
        self.selected_alias = selected_alias
        self.state = SessionState.UNCONNECTED
        self._sock: Optional[socket.socket] = None
        self._writer: Optional[BinaryIO] = None

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def connect(self) -> None:
        """Open the TCP connection and complete the TLS handshake.

        Raises:
            HandshakeError: If the connection or handshake fails; the socket
                is closed before this is raised
        """
        if self.state is not SessionState.UNCONNECTED:
            raise RuntimeError(f"Session cannot connect from state '{self.state.value}'")

        try:
            self._sock = socket.create_connection((self.host, self.port))
        except (OSError, ValueError) as exc:
            # ValueError covers host names the IDNA codec rejects.
            self.state = SessionState.FAILED
            raise HandshakeError(self.host, self.port, "Cannot connect") from exc
        self.state = SessionState.CONNECTED

        try:
            tls_sock = self.context.wrap_socket(
                self._sock, server_hostname=self.host, do_handshake_on_connect=False
            )
            self._sock = tls_sock
            tls_sock.do_handshake()
        except (OSError, ValueError) as exc:
            self._release()
            self.state = SessionState.FAILED
            raise HandshakeError(self.host, self.port, "TLS handshake failed") from exc
        self.state = SessionState.HANDSHAKE_COMPLETE

    def _tls(self) -> ssl.SSLSocket:
        if self.state is not SessionState.HANDSHAKE_COMPLETE or not isinstance(
            self._sock, ssl.SSLSocket
        ):
            raise RuntimeError("Session handshake has not completed")
        return self._sock

    def version(self) -> Optional[str]:
        return self._tls().version()

    def cipher(self) -> Optional[str]:
        negotiated = self._tls().cipher()
        return negotiated[0] if negotiated else None

    def peer_certificate(self) -> Optional[x509.Certificate]:
        """Return the server's leaf certificate."""
        der = self._tls().getpeercert(binary_form=True)
        return x509.load_der_x509_certificate(der) if der else None

    def open_writer(self) -> BinaryIO:
        """Return a buffered binary stream writing to the session."""
        if self._writer is None:
            self._writer = self._tls().makefile("wb")  # type: ignore[assignment]
        return self._writer  # type: ignore[return-value]

    def _release(self) -> None:
        writer, self._writer = self._writer, None
        sock, self._sock = self._sock, None
        if writer is not None:
            try:
                writer.close()
            except OSError:
                pass
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def close(self) -> None:
        """Close the connection. Safe to call in any state, any number of times."""
        if self.state in (SessionState.CONNECTED, SessionState.HANDSHAKE_COMPLETE):
            self._release()
            self.state = SessionState.CLOSED
