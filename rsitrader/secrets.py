"""Secrets management: load trader keys from environment or config file.

Priority order:
1. Environment variable: PRIVATE_KEYS (comma separated)
2. Config file: ~/.rsitrader_keys.json or custom path via ENV TRADER_CONFIG_PATH
"""
import hashlib
import json
import os
from pathlib import Path
from typing import List, NamedTuple, Optional


class TraderIdentity(NamedTuple):
    label: str
    secret_key: str

    @classmethod
    def from_secret(cls, secret_key: str) -> "TraderIdentity":
        # short digest so the key itself never reaches the logs
        label = hashlib.sha256(secret_key.encode("utf-8")).hexdigest()[:12]
        return cls(label=label, secret_key=secret_key)


def _split_keys(raw: str) -> List[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


def load_traders(config_path: Optional[str] = None) -> List[TraderIdentity]:
    """Load trader identities from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks TRADER_CONFIG_PATH env var, then ~/.rsitrader_keys.json

    Returns:
        One TraderIdentity per configured key, in configuration order

    Raises:
        ValueError: If no keys are found or the config file is unreadable
    """
    env_keys = os.getenv("PRIVATE_KEYS")
    if env_keys and _split_keys(env_keys):
        return [TraderIdentity.from_secret(k) for k in _split_keys(env_keys)]

    if config_path is None:
        config_path = os.getenv("TRADER_CONFIG_PATH")
    if config_path is None:
        config_path = str(Path.home() / ".rsitrader_keys.json")

    keys: List[str] = []
    config_file = Path(config_path)
    if config_file.exists():
        try:
            with config_file.open("r") as f:
                cfg = json.load(f)
        except (OSError, ValueError) as e:
            raise ValueError(f"Failed to load config from {config_path}: {e}")
        raw = cfg.get("private_keys") or []
        if isinstance(raw, str):
            raw = _split_keys(raw)
        keys = [k for k in raw if k]

    if not keys:
        raise ValueError(
            "Missing trader keys. Provide via:\n"
            "  - Environment: PRIVATE_KEYS (comma separated)\n"
            f"  - Config file: {config_path}\n"
            "  - TRADER_CONFIG_PATH env var to override config location"
        )

    return [TraderIdentity.from_secret(k) for k in keys]


def save_config(config_path: str, private_keys: List[str]) -> None:
    """Save trader keys to a config file for later use.

    WARNING: Stores secrets in plaintext. Ensure proper file permissions (600).

    Args:
        config_path: Path to save config file
        private_keys: Trader secret keys
    """
    cfg_file = Path(config_path)
    cfg_file.parent.mkdir(parents=True, exist_ok=True)

    with cfg_file.open("w") as f:
        json.dump({"private_keys": list(private_keys)}, f, indent=2)

    # Restrict permissions to owner only (Unix-like systems)
    try:
        cfg_file.chmod(0o600)
    except OSError:
        pass  # Windows doesn't support chmod; skip silently
