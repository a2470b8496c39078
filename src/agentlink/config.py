"""
agentlink.config — Runtime settings from the environment.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from agentlink.credential import DEFAULT_ISSUER, DEFAULT_SCHEMA


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _origins(raw: str) -> list[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass
class Settings:
    dapp_private_key: str = ""
    dapp_keyfile: str = ""
    world_id_app_id: str = ""
    world_id_action: str = "poh"
    world_id_base_url: str = "https://developer.worldcoin.org"
    self_verifier_url: str = ""
    self_scope: str = "agentlink"
    self_callback_url: str = ""
    db_path: str = ""
    http_timeout: float = 10.0
    cache_ttl: float = 600.0
    cache_size: int = 1000
    issuer: str = DEFAULT_ISSUER
    schema_url: str = DEFAULT_SCHEMA
    allowed_origins: list[str] = field(default_factory=list)
    admin_api_key: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            dapp_private_key=os.environ.get("AGENTLINK_DAPP_PRIVATE_KEY", ""),
            dapp_keyfile=os.environ.get("AGENTLINK_DAPP_KEYFILE", ""),
            world_id_app_id=os.environ.get("WORLD_ID_APP_ID", ""),
            world_id_action=os.environ.get("WORLD_ID_ACTION", "poh"),
            world_id_base_url=os.environ.get("WORLD_ID_BASE_URL", "https://developer.worldcoin.org"),
            self_verifier_url=os.environ.get("SELF_VERIFIER_URL", ""),
            self_scope=os.environ.get("SELF_SCOPE", "agentlink"),
            self_callback_url=os.environ.get("SELF_CALLBACK_URL", ""),
            db_path=os.environ.get("AGENTLINK_DB_PATH", ""),
            http_timeout=_float("AGENTLINK_HTTP_TIMEOUT", 10.0),
            cache_ttl=_float("AGENTLINK_CACHE_TTL", 600.0),
            cache_size=int(_float("AGENTLINK_CACHE_SIZE", 1000)),
            issuer=os.environ.get("AGENTLINK_ISSUER", DEFAULT_ISSUER),
            schema_url=os.environ.get("AGENTLINK_SCHEMA_URL", DEFAULT_SCHEMA),
            allowed_origins=_origins(os.environ.get("ALLOWED_ORIGINS", "")),
            admin_api_key=os.environ.get("ADMIN_API_KEY", ""),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

    def load_signer(self) -> Optional["LocalSigner"]:
        """The platform signer, or None when no key is configured."""
        from agentlink.signing import LocalSigner

        if self.dapp_private_key:
            return LocalSigner.from_private_key(self.dapp_private_key)
        if self.dapp_keyfile and os.path.exists(self.dapp_keyfile):
            return LocalSigner.load(self.dapp_keyfile)
        return None
