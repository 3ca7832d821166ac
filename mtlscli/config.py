"""Configuration defaults for mtlscli.

Values below the command line come from, lowest priority first:

1. Built-in constants in this module
2. The JSON config file (~/.config/mtlscli/config.json or $MTLSCLI_CONFIG)
3. MTLSCLI_* environment variables
4. The system keyring (store passwords only, service 'mtlscli')

Passwords are never read from the config file.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import keyring

from .options import ConfigurationBuilder, parse_port

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8087
KEY_PATH = "keys"
DEFAULT_KEYSTORE = os.path.join(KEY_PATH, "clientKeys.p12")
DEFAULT_KEYSTORE_PASSWORD = "password"
DEFAULT_TRUSTSTORE = os.path.join(KEY_PATH, "clientTrust.p12")
DEFAULT_TRUSTSTORE_PASSWORD = "password"

KEYRING_SERVICE = "mtlscli"
KEYSTORE_PASSWORD_KEY = "KEYSTORE_PASSWORD"
TRUSTSTORE_PASSWORD_KEY = "TRUSTSTORE_PASSWORD"


def get_config_file_path() -> Path:
    """Get the path to the mtlscli configuration file."""
    if "MTLSCLI_CONFIG" in os.environ:
        return Path(os.environ["MTLSCLI_CONFIG"])

    # Use XDG_CONFIG_HOME if set, otherwise use ~/.config
    if "XDG_CONFIG_HOME" in os.environ:
        config_dir = Path(os.environ["XDG_CONFIG_HOME"]) / "mtlscli"
    else:
        config_dir = Path.home() / ".config" / "mtlscli"
    return config_dir / "config.json"


def load_config() -> Dict[str, Any]:
    """Load configuration from the config file.

    Returns:
        Dictionary containing configuration values
    """
    config_file = get_config_file_path()

    if not config_file.exists():
        return {}

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        # If config file is corrupted or unreadable, return empty config
        return {}
    return data if isinstance(data, dict) else {}


def _keyring_password(key: str) -> Optional[str]:
    """Read a store password from the system keyring, or None."""
    try:
        return keyring.get_password(KEYRING_SERVICE, key)
    except Exception:  # noqa: BLE001
        # A missing or locked keyring backend must not stop the client.
        return None


def _apply(builder: ConfigurationBuilder, values: Dict[str, Any]) -> None:
    """Copy the recognised non-secret settings from a mapping onto a builder."""
    for key in ("host", "keystore", "truststore", "alias"):
        value = values.get(key)
        if isinstance(value, str) and value:
            setattr(builder, key, value)

    port = values.get("port")
    if port is not None:
        parsed = parse_port(str(port))
        if parsed is not None:
            builder.port = parsed


def resolve_defaults() -> ConfigurationBuilder:
    """Build the starting point for option parsing from every non-CLI layer.

    Returns:
        A fresh ConfigurationBuilder holding the effective defaults
    """
    builder = ConfigurationBuilder(
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        keystore=DEFAULT_KEYSTORE,
        keystore_password=DEFAULT_KEYSTORE_PASSWORD,
        truststore=DEFAULT_TRUSTSTORE,
        truststore_password=DEFAULT_TRUSTSTORE_PASSWORD,
    )

    _apply(builder, load_config())
    _apply(
        builder,
        {
            "host": os.environ.get("MTLSCLI_HOST"),
            "port": os.environ.get("MTLSCLI_PORT"),
            "keystore": os.environ.get("MTLSCLI_KEYSTORE"),
            "truststore": os.environ.get("MTLSCLI_TRUSTSTORE"),
            "alias": os.environ.get("MTLSCLI_ALIAS"),
        },
    )

    keystore_password = os.environ.get("MTLSCLI_KEYSTORE_PASSWORD") or _keyring_password(
        KEYSTORE_PASSWORD_KEY
    )
    if keystore_password:
        builder.keystore_password = keystore_password

    truststore_password = os.environ.get("MTLSCLI_TRUSTSTORE_PASSWORD") or _keyring_password(
        TRUSTSTORE_PASSWORD_KEY
    )
    if truststore_password:
        builder.truststore_password = truststore_password

    return builder
