"""Trust store loading and the trust-decision capability."""

import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from .errors import TrustLoadError
from .keystore import read_pkcs12


@dataclass(frozen=True)
class TrustAnchorSet:
    """Certificates accepted as roots when validating the server chain."""

    certificates: Tuple[x509.Certificate, ...]

    def __len__(self) -> int:
        return len(self.certificates)

    def to_pem(self) -> str:
        return "".join(cert.public_bytes(Encoding.PEM).decode("ascii") for cert in self.certificates)


class StoreTrustManager:
    """Default trust manager: hands the anchors to the TLS engine for chain validation."""

    def __init__(self, anchors: TrustAnchorSet) -> None:
        self.anchors = anchors

    def get_accepted_issuers(self) -> List[x509.Name]:
        return [cert.subject for cert in self.anchors.certificates]

    def configure(self, context: ssl.SSLContext) -> None:
        """Install the anchors on a client context and require a verified server chain."""
        context.load_verify_locations(cadata=self.anchors.to_pem())
        context.verify_mode = ssl.CERT_REQUIRED


def load_trust_store(path: str, password: str) -> TrustAnchorSet:
    """Open a password-protected trust store.

    Every certificate in the PKCS#12 container becomes a trust anchor; a
    private key, if present, is ignored.

    Raises:
        TrustLoadError: If the store is missing, unreadable, the password is
            wrong, or it contains no certificates
    """
    store_file = Path(path)
    if not store_file.is_file():
        raise TrustLoadError(path, "Trust store not found")

    try:
        bundle = read_pkcs12(store_file, password)
    except OSError as exc:
        raise TrustLoadError(path, "Cannot read trust store") from exc
    except ValueError as exc:
        raise TrustLoadError(
            path, "Cannot decode trust store (wrong password or corrupt file)"
        ) from exc

    certificates = [extra.certificate for extra in bundle.additional_certs]
    if bundle.cert is not None:
        certificates.insert(0, bundle.cert.certificate)
    if not certificates:
        raise TrustLoadError(path, "Trust store holds no certificates")
    return TrustAnchorSet(tuple(certificates))


def load_trust_manager(path: str, password: str) -> StoreTrustManager:
    """Load a trust store and return the default trust manager over it."""
    return StoreTrustManager(load_trust_store(path, password))
