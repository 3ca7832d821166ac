"""Client-identity selection that forces an operator-chosen alias."""

from typing import Any, List, Optional, Sequence

from cryptography import x509

from .keystore import KeyManager


class AliasForcingKeyManager:
    """Wraps a KeyManager and forces the alias it picks for client authentication.

    Only choose_client_alias is intercepted; every other call goes straight to
    the wrapped manager. If the forced alias is not one the wrapped manager
    considers valid for any requested key type, no identity is chosen.
    """

    def __init__(self, key_manager: KeyManager, alias: str) -> None:
        """Initialize the wrapper.

        Args:
            key_manager: The key manager to wrap
            alias: The alias to force
        """
        self.key_manager = key_manager
        self.alias = alias

    def choose_client_alias(
        self,
        key_types: Sequence[str],
        issuers: Optional[Sequence[x509.Name]],
        connection: Any = None,
    ) -> Optional[str]:
        # First key type, in caller order, whose valid aliases include ours wins.
        for key_type in key_types:
            valid_aliases = self.key_manager.get_client_aliases(key_type, issuers)
            if valid_aliases and self.alias in valid_aliases:
                return self.alias
        return None

    def choose_server_alias(
        self,
        key_type: str,
        issuers: Optional[Sequence[x509.Name]],
        connection: Any = None,
    ) -> Optional[str]:
        return self.key_manager.choose_server_alias(key_type, issuers, connection)

    def get_certificate_chain(self, alias: str) -> Optional[List[x509.Certificate]]:
        return self.key_manager.get_certificate_chain(alias)

    def get_client_aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]:
        return self.key_manager.get_client_aliases(key_type, issuers)

    def get_private_key(self, alias: str) -> Any:
        return self.key_manager.get_private_key(alias)

    def get_server_aliases(
        self, key_type: str, issuers: Optional[Sequence[x509.Name]]
    ) -> Optional[List[str]]:
        return self.key_manager.get_server_aliases(key_type, issuers)


def wrap_key_manager(key_manager: KeyManager, alias: Optional[str]) -> KeyManager:
    """Return key_manager wrapped to force alias, or unchanged if alias is None."""
    if alias is None:
        return key_manager
    return AliasForcingKeyManager(key_manager, alias)
