"""Layered command-line option handling for mtlscli.

Each layer recognises a few single-hyphen flags and reports how many
arguments it consumed. Layers are tried in order, most specific first; a
count of zero means "not mine". The driver advances the cursor by the count
and stops at the first token no layer accepts.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from .errors import ConfigParseError

MIN_PORT = 1
MAX_PORT = 65535


@dataclass(frozen=True)
class Configuration:
    """Settings for one client run. Immutable once parsing completes."""

    host: str
    port: int
    keystore: str
    keystore_password: str
    truststore: str
    truststore_password: str
    alias: Optional[str] = None


@dataclass
class ConfigurationBuilder:
    """Mutable accumulator the option layers write into."""

    host: str
    port: int
    keystore: str
    keystore_password: str
    truststore: str
    truststore_password: str
    alias: Optional[str] = None

    def copy(self) -> "ConfigurationBuilder":
        """Return an independent copy of this builder."""
        return replace(self)

    def build(self) -> Configuration:
        """Freeze the accumulated values into a Configuration."""
        return Configuration(
            host=self.host,
            port=self.port,
            keystore=self.keystore,
            keystore_password=self.keystore_password,
            truststore=self.truststore,
            truststore_password=self.truststore_password,
            alias=self.alias,
        )


def parse_port(value: str) -> Optional[int]:
    """Parse a port number, returning None if it is not a valid TCP port."""
    try:
        port = int(value.strip())
    except ValueError:
        return None
    if port < MIN_PORT or port > MAX_PORT:
        return None
    return port


def _flag(args: Sequence[str], i: int) -> str:
    return args[i].strip().upper()


def _value(args: Sequence[str], i: int) -> Optional[str]:
    """Return the argument following the flag at i, or None if there is none."""
    if i + 1 >= len(args):
        return None
    return args[i + 1]


def _mask(secret: str) -> str:
    return "*" * len(secret) if secret else "(empty)"


class OptionHandler:
    """One layer of the option chain."""

    flags: Sequence[str] = ()

    def handle(self, args: Sequence[str], i: int, builder: ConfigurationBuilder) -> int:
        """Try to interpret the option at args[i].

        Args:
            args: The full argument list
            i: Cursor position of the option to interpret
            builder: Configuration being accumulated

        Returns:
            Number of arguments consumed, or zero if the option is not
            recognised or is malformed
        """
        raise NotImplementedError

    def usage_lines(self, defaults: ConfigurationBuilder) -> List[str]:
        """Return this layer's lines of usage text."""
        return []


class ConnectionOptions(OptionHandler):
    """-host and -port."""

    flags = ("-HOST", "-PORT")

    def handle(self, args: Sequence[str], i: int, builder: ConfigurationBuilder) -> int:
        arg = _flag(args, i)
        if arg not in self.flags:
            return 0
        value = _value(args, i)
        if value is None:
            return 0

        if arg == "-PORT":
            port = parse_port(value)
            if port is None:
                return 0
            builder.port = port
        else:
            builder.host = value
        return 2

    def usage_lines(self, defaults: ConfigurationBuilder) -> List[str]:
        return [
            f"\t-host\thost of server (default '{defaults.host}')",
            f"\t-port\tport of server (default {defaults.port})",
        ]


class KeyStoreOptions(OptionHandler):
    """-ks and -kspass."""

    flags = ("-KS", "-KSPASS")

    def handle(self, args: Sequence[str], i: int, builder: ConfigurationBuilder) -> int:
        arg = _flag(args, i)
        if arg not in self.flags:
            return 0
        value = _value(args, i)
        if value is None:
            return 0

        if arg == "-KS":
            builder.keystore = value
        else:
            builder.keystore_password = value
        return 2

    def usage_lines(self, defaults: ConfigurationBuilder) -> List[str]:
        return [
            f"\t-ks\tidentity store (default '{defaults.keystore}', PKCS#12 file or directory)",
            f"\t-kspass\tidentity store password (default {_mask(defaults.keystore_password)})",
        ]


class TrustStoreOptions(OptionHandler):
    """-ts and -tspass."""

    flags = ("-TS", "-TSPASS")

    def handle(self, args: Sequence[str], i: int, builder: ConfigurationBuilder) -> int:
        arg = _flag(args, i)
        if arg not in self.flags:
            return 0
        value = _value(args, i)
        if value is None:
            return 0

        if arg == "-TS":
            builder.truststore = value
        else:
            builder.truststore_password = value
        return 2

    def usage_lines(self, defaults: ConfigurationBuilder) -> List[str]:
        return [
            f"\t-ts\ttrust store (default '{defaults.truststore}', PKCS#12 file)",
            f"\t-tspass\ttrust store password (default {_mask(defaults.truststore_password)})",
        ]


class AliasOptions(OptionHandler):
    """-alias."""

    flags = ("-ALIAS",)

    def handle(self, args: Sequence[str], i: int, builder: ConfigurationBuilder) -> int:
        if _flag(args, i) not in self.flags:
            return 0
        value = _value(args, i)
        if value is None:
            return 0
        builder.alias = value
        return 2

    def usage_lines(self, defaults: ConfigurationBuilder) -> List[str]:
        current = f"'{defaults.alias}'" if defaults.alias else "provider's choice"
        return [f"\t-alias\tclient identity alias to force (default {current})"]


class OptionChain:
    """Ordered list of option layers, most specific first."""

    def __init__(self, handlers: Sequence[OptionHandler]) -> None:
        self.handlers = list(handlers)

    def handle(self, args: Sequence[str], i: int, builder: ConfigurationBuilder) -> int:
        """Offer args[i] to each layer in turn; return the first non-zero count."""
        for handler in self.handlers:
            handled = handler.handle(args, i, builder)
            if handled:
                return handled
        return 0

    def recognizes(self, token: str) -> bool:
        """Return True if some layer owns this flag."""
        flag = token.strip().upper()
        return any(flag in handler.flags for handler in self.handlers)


def default_chain() -> OptionChain:
    """Build the full chain: alias, trust store, identity store, connection."""
    return OptionChain(
        [AliasOptions(), TrustStoreOptions(), KeyStoreOptions(), ConnectionOptions()]
    )


def _failure_reason(chain: OptionChain, args: Sequence[str], i: int) -> str:
    if not chain.recognizes(args[i]):
        return "unrecognized option"
    if i + 1 >= len(args):
        return "missing value"
    return "malformed value"


def parse_arguments(
    args: Sequence[str],
    chain: Optional[OptionChain] = None,
    defaults: Optional[ConfigurationBuilder] = None,
) -> Configuration:
    """Resolve command-line arguments into a Configuration.

    Args:
        args: Command-line arguments, without the program name
        chain: Option chain to use (default: default_chain())
        defaults: Starting values (default: config.resolve_defaults())

    Returns:
        The completed Configuration

    Raises:
        ConfigParseError: At the first argument no layer accepts
    """
    if chain is None:
        chain = default_chain()
    if defaults is None:
        from .config import resolve_defaults

        defaults = resolve_defaults()

    builder = defaults.copy()
    i = 0
    while i < len(args):
        handled = chain.handle(args, i, builder)
        if handled == 0:
            raise ConfigParseError(i, args[i], _failure_reason(chain, args, i))
        i += handled
    return builder.build()


def format_usage(
    chain: Optional[OptionChain] = None, defaults: Optional[ConfigurationBuilder] = None
) -> str:
    """Return usage text, general options first, showing effective defaults."""
    if chain is None:
        chain = default_chain()
    if defaults is None:
        from .config import resolve_defaults

        defaults = resolve_defaults()

    lines = ["Options:"]
    for handler in reversed(chain.handlers):
        lines.extend(handler.usage_lines(defaults))
    return "\n".join(lines)
