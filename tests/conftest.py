"""Shared test configuration - runs before any test collection or imports.

Forces the keyring null backend so no test touches a real system keyring,
isolates the MTLSCLI_* environment, and provides a throwaway PKI (CA, server
certificate, client identities) written out as PKCS#12 stores.
"""

import datetime
import ipaddress
import socket
import ssl
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import keyring
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from keyring.backends.null import Keyring as NullKeyring

# Force the null backend BEFORE any test triggers a real keyring call.
keyring.set_keyring(NullKeyring())

STORE_PASSWORD = "password"

MTLSCLI_ENV_VARS = [
    "MTLSCLI_HOST",
    "MTLSCLI_PORT",
    "MTLSCLI_KEYSTORE",
    "MTLSCLI_TRUSTSTORE",
    "MTLSCLI_ALIAS",
    "MTLSCLI_KEYSTORE_PASSWORD",
    "MTLSCLI_TRUSTSTORE_PASSWORD",
    "MTLSCLI_DEBUG",
]


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point the config file at an empty location and clear MTLSCLI_* variables."""
    for name in MTLSCLI_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MTLSCLI_CONFIG", str(tmp_path / "no-such-config.json"))


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_rsa_key() -> rsa.RSAPrivateKey:
    """Generate an RSA key small enough to keep the suite fast."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def make_ca(common_name: str = "mtlscli Test CA") -> "Authority":
    """Create a self-signed certificate authority."""
    key = make_rsa_key()
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(_name(common_name))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return Authority(key=key, cert=cert)


@dataclass
class Authority:
    """A CA key pair that can issue leaf certificates."""

    key: Any
    cert: x509.Certificate

    def issue(self, common_name: str, key: Any, server: bool = False) -> x509.Certificate:
        """Issue a client (or server) certificate for key."""
        now = datetime.datetime.now(datetime.timezone.utc)
        usage = ExtendedKeyUsageOID.SERVER_AUTH if server else ExtendedKeyUsageOID.CLIENT_AUTH
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(common_name))
            .issuer_name(self.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.key.public_key()),
                critical=False,
            )
        )
        if server:
            builder = builder.add_extension(
                x509.SubjectAlternativeName(
                    [
                        x509.DNSName("localhost"),
                        x509.DNSName("example.test"),
                        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                    ]
                ),
                critical=False,
            )
        return builder.sign(self.key, hashes.SHA256())


def write_identity_p12(
    path: Path,
    alias: Optional[str],
    key: Any,
    cert: x509.Certificate,
    cas: Optional[List[x509.Certificate]] = None,
    password: str = STORE_PASSWORD,
) -> Path:
    """Write one private-key entry as a password-protected PKCS#12 file."""
    data = pkcs12.serialize_key_and_certificates(
        alias.encode("utf-8") if alias else None,
        key,
        cert,
        cas,
        BestAvailableEncryption(password.encode("utf-8")),
    )
    path.write_bytes(data)
    return path


def write_trust_p12(
    path: Path, certificates: List[x509.Certificate], password: str = STORE_PASSWORD
) -> Path:
    """Write certificates only (no key) as a password-protected PKCS#12 file."""
    data = pkcs12.serialize_key_and_certificates(
        None, None, None, certificates, BestAvailableEncryption(password.encode("utf-8"))
    )
    path.write_bytes(data)
    return path


@dataclass
class PkiFiles:
    """Files and objects making up the throwaway PKI."""

    ca: Authority
    server_key: Any
    server_cert: x509.Certificate
    server_cert_file: Path
    server_key_file: Path
    ca_file: Path
    keystore: Path
    truststore: Path
    clients: Dict[str, x509.Certificate] = field(default_factory=dict)
    client_keys: Dict[str, Any] = field(default_factory=dict)


@pytest.fixture(scope="session")
def pki(tmp_path_factory: pytest.TempPathFactory) -> PkiFiles:
    """Build a CA, a server identity and a two-entry RSA identity store."""
    root = tmp_path_factory.mktemp("pki")
    ca = make_ca()

    server_key = make_rsa_key()
    server_cert = ca.issue("localhost", server_key, server=True)
    server_cert_file = root / "server.pem"
    server_cert_file.write_bytes(server_cert.public_bytes(Encoding.PEM))
    server_key_file = root / "server-key.pem"
    server_key_file.write_bytes(
        server_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    )
    ca_file = root / "ca.pem"
    ca_file.write_bytes(ca.cert.public_bytes(Encoding.PEM))

    keystore = root / "clientKeys"
    keystore.mkdir()
    clients: Dict[str, x509.Certificate] = {}
    client_keys: Dict[str, Any] = {}
    for alias in ("clientA", "clientB"):
        key = make_rsa_key()
        cert = ca.issue(alias, key)
        write_identity_p12(keystore / f"{alias}.p12", alias, key, cert, [ca.cert])
        clients[alias] = cert
        client_keys[alias] = key

    truststore = write_trust_p12(root / "clientTrust.p12", [ca.cert])

    return PkiFiles(
        ca=ca,
        server_key=server_key,
        server_cert=server_cert,
        server_cert_file=server_cert_file,
        server_key_file=server_key_file,
        ca_file=ca_file,
        keystore=keystore,
        truststore=truststore,
        clients=clients,
        client_keys=client_keys,
    )


class PkiTools:
    """Helper functions exposed to tests through the pki_tools fixture."""

    make_ca = staticmethod(make_ca)
    make_rsa_key = staticmethod(make_rsa_key)
    make_ec_key = staticmethod(make_ec_key)
    write_identity_p12 = staticmethod(write_identity_p12)
    write_trust_p12 = staticmethod(write_trust_p12)
    password = STORE_PASSWORD


@pytest.fixture(scope="session")
def pki_tools() -> PkiTools:
    """Certificate and PKCS#12 helpers for tests that need their own stores."""
    return PkiTools()


class LocalTlsServer:
    """One-shot TLS server on 127.0.0.1 recording the client certificate and bytes received."""

    def __init__(
        self,
        cert_file: Path,
        key_file: Path,
        ca_file: Path,
        verify_mode: ssl.VerifyMode = ssl.CERT_OPTIONAL,
    ) -> None:
        self.context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self.context.load_cert_chain(str(cert_file), str(key_file))
        self.context.load_verify_locations(cafile=str(ca_file))
        self.context.verify_mode = verify_mode
        # No session tickets: the client never reads, and unread data turns its close into a reset.
        self.context.num_tickets = 0
        self.context.options |= getattr(ssl, "OP_IGNORE_UNEXPECTED_EOF", 0)

        self.listener = socket.create_server(("127.0.0.1", 0))
        self.port: int = self.listener.getsockname()[1]
        self.peer_certificate: Optional[x509.Certificate] = None
        self.chunks: List[bytes] = []
        self.error: Optional[BaseException] = None
        self.finished = threading.Event()
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        try:
            conn, _ = self.listener.accept()
        except OSError as exc:
            self.error = exc
            self.finished.set()
            return

        try:
            with self.context.wrap_socket(conn, server_side=True) as tls:
                der = tls.getpeercert(binary_form=True)
                self.peer_certificate = x509.load_der_x509_certificate(der) if der else None
                while True:
                    data = tls.recv(4096)
                    if not data:
                        break
                    self.chunks.append(data)
        except OSError as exc:
            self.error = exc
        finally:
            conn.close()
            self.finished.set()

    @property
    def received(self) -> bytes:
        return b"".join(self.chunks)

    def wait(self, timeout: float = 10.0) -> None:
        """Block until the server has finished with its one connection."""
        assert self.finished.wait(timeout), "TLS test server did not finish"

    def close(self) -> None:
        self.listener.close()


@pytest.fixture
def tls_server(pki: PkiFiles) -> Iterator[Callable[..., LocalTlsServer]]:
    """Factory for one-shot local TLS servers using the test PKI's server identity."""
    servers: List[LocalTlsServer] = []

    def start(verify_mode: ssl.VerifyMode = ssl.CERT_OPTIONAL) -> LocalTlsServer:
        server = LocalTlsServer(
            pki.server_cert_file, pki.server_key_file, pki.ca_file, verify_mode
        )
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()
