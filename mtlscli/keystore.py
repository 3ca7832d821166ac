"""Identity store loading and the key-manager capability.

An identity store is either one PKCS#12 file (one credential) or a directory
of PKCS#12 files (one credential each, all sharing the store password). The
alias of a credential is the PKCS#12 friendly name, falling back to the file
name without its extension.
"""

from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import CredentialLoadError

STORE_SUFFIXES = (".p12", ".pfx")


def key_type_of(private_key: Any) -> str:
    """Return the key-algorithm name for a private key (RSA, EC, DSA, Ed25519, Ed448)."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        return "RSA"
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return "EC"
    if isinstance(private_key, dsa.DSAPrivateKey):
        return "DSA"
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return "Ed25519"
    if isinstance(private_key, ed448.Ed448PrivateKey):
        return "Ed448"
    return type(private_key).__name__


@dataclass(frozen=True)
class Credential:
    """A private key with its certificate chain, leaf first."""

    alias: str
    certificate_chain: List[x509.Certificate]
    private_key: Any

    @property
    def key_type(self) -> str:
        return key_type_of(self.private_key)

    def issued_by_any(self, issuers: Optional[Sequence[x509.Name]]) -> bool:
        """Return True if any certificate in the chain was issued by one of issuers.

        An empty or missing issuer list accepts every credential.
        """
        if not issuers:
            return True
        return any(cert.issuer in issuers for cert in self.certificate_chain)


class IdentityStore:
    """Ordered alias -> Credential mapping loaded from disk."""

    def __init__(self, credentials: Sequence[Credential]) -> None:
        self._entries: "OrderedDict[str, Credential]" = OrderedDict()
        for credential in credentials:
            self._entries[credential.alias] = credential

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, alias: object) -> bool:
        return alias in self._entries

    def aliases(self) -> List[str]:
        return list(self._entries)

    def get(self, alias: str) -> Optional[Credential]:
        return self._entries.get(alias)

    def aliases_for(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]] = None
    ) -> List[str]:
        """Return the aliases usable for a key type and issuer set, in store order."""
        wanted = key_type.upper()
        return [
            alias
            for alias, credential in self._entries.items()
            if credential.key_type.upper() == wanted and credential.issued_by_any(issuers)
        ]


class KeyManager(Protocol):
    """Identity-management capability consulted while negotiating a session."""

    def choose_client_alias(
        self,
        key_types: Sequence[str],
        issuers: Optional[Sequence[x509.Name]],
        connection: Any = None,
    ) -> Optional[str]: ...

    def choose_server_alias(
        self,
        key_type: str,
        issuers: Optional[Sequence[x509.Name]],
        connection: Any = None,
    ) -> Optional[str]: ...

    def get_certificate_chain(self, alias: str) -> Optional[List[x509.Certificate]]: ...

    def get_client_aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]: ...

    def get_private_key(self, alias: str) -> Any: ...

    def get_server_aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]: ...


class StoreKeyManager:
    """Default key manager backed by an IdentityStore.

    Aliases are valid for a key type when the credential's key has that
    algorithm and, if issuers are given, some certificate in its chain was
    issued by one of them. Certificate validity dates are not checked.
    """

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def _aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]:
        aliases = self.store.aliases_for(key_type, issuers)
        return aliases or None

    def choose_client_alias(
        self,
        key_types: Sequence[str],
        issuers: Optional[Sequence[x509.Name]],
        connection: Any = None,
    ) -> Optional[str]:
        for key_type in key_types:
            aliases = self._aliases(key_type, issuers)
            if aliases:
                return aliases[0]
        return None

    def choose_server_alias(
        self,
        key_type: str,
        issuers: Optional[Sequence[x509.Name]],
        connection: Any = None,
    ) -> Optional[str]:
        aliases = self._aliases(key_type, issuers)
        return aliases[0] if aliases else None

    def get_certificate_chain(self, alias: str) -> Optional[List[x509.Certificate]]:
        credential = self.store.get(alias)
        return list(credential.certificate_chain) if credential else None

    def get_client_aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]:
        return self._aliases(key_type, issuers)

    def get_private_key(self, alias: str) -> Any:
        credential = self.store.get(alias)
        return credential.private_key if credential else None

    def get_server_aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]:
        return self._aliases(key_type, issuers)


def read_pkcs12(path: Path, password: str) -> pkcs12.PKCS12KeyAndCertificates:
    """Read and decrypt one PKCS#12 container.

    The file is open only while its bytes are read.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the password is wrong or the data is not PKCS#12
    """
    with open(path, "rb") as f:
        data = f.read()
    secret = password.encode("utf-8") if password else None
    return pkcs12.load_pkcs12(data, secret)


def _credential_from(path: Path, bundle: pkcs12.PKCS12KeyAndCertificates) -> Optional[Credential]:
    if bundle.key is None or bundle.cert is None:
        return None

    name = bundle.cert.friendly_name
    alias = name.decode("utf-8") if name else path.stem
    chain = [bundle.cert.certificate] + [extra.certificate for extra in bundle.additional_certs]
    return Credential(alias=alias, certificate_chain=chain, private_key=bundle.key)


def _store_files(root: Path) -> List[Path]:
    if root.is_dir():
        return sorted(p for p in root.iterdir() if p.suffix.lower() in STORE_SUFFIXES)
    return [root]


def load_identity_store(path: str, password: str) -> IdentityStore:
    """Open a password-protected identity store.

    Args:
        path: PKCS#12 file, or directory of PKCS#12 files
        password: Store password

    Returns:
        The loaded IdentityStore

    Raises:
        CredentialLoadError: If the store is missing, unreadable, the password is
            wrong, or it holds no private-key entries
    """
    root = Path(path)
    if not root.exists():
        raise CredentialLoadError(path, "Identity store not found")

    credentials: Dict[str, Credential] = {}
    for store_file in _store_files(root):
        try:
            bundle = read_pkcs12(store_file, password)
        except OSError as exc:
            raise CredentialLoadError(str(store_file), "Cannot read identity store") from exc
        except ValueError as exc:
            raise CredentialLoadError(
                str(store_file), "Cannot decode identity store (wrong password or corrupt file)"
            ) from exc

        credential = _credential_from(store_file, bundle)
        if credential is None:
            continue
        if credential.alias in credentials:
            raise CredentialLoadError(
                str(store_file), f"Duplicate alias '{credential.alias}' in identity store"
            )
        credentials[credential.alias] = credential

    if not credentials:
        raise CredentialLoadError(path, "Identity store holds no private key entries")
    return IdentityStore(list(credentials.values()))


def load_key_manager(path: str, password: str) -> StoreKeyManager:
    """Load an identity store and return the default key manager over it."""
    return StoreKeyManager(load_identity_store(path, password))
