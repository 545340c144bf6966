import os
from typing import Optional, List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _default_data_dir() -> str:
    """Per-application data directory (XDG layout)"""
    base = os.getenv("XDG_DATA_HOME") or os.path.join(os.path.expanduser("~"), ".local", "share")
    return os.path.join(base, "cln-zapper")


class Settings:
    # Nostr identity used to sign zap receipts (hex or nsec)
    ZAPPER_NOSTR_NSEC: str = os.getenv("ZAPPER_NOSTR_NSEC", "")

    # Relays every receipt is published to, in addition to the ones in the zap request
    ZAPPER_NOSTR_RELAY: str = os.getenv("ZAPPER_NOSTR_RELAY", "ws://localhost:8080")

    # Checkpoint file for the last pay index seen
    ZAPPER_PAY_INDEX_PATH: Optional[str] = os.getenv("ZAPPER_PAY_INDEX_PATH") or None

    # Core Lightning REST configuration
    CLN_REST_URL: str = os.getenv("CLN_REST_URL", "https://127.0.0.1:3010")
    CLN_RUNE: str = os.getenv("CLN_RUNE", "")
    CLN_REST_CA_CERT: Optional[str] = os.getenv("CLN_REST_CA_CERT") or None
    CLN_REST_VERIFY_TLS: bool = os.getenv("CLN_REST_VERIFY_TLS", "true").lower() == "true"

    # Retry / broadcast tuning
    ZAPPER_RETRY_DELAY_SECONDS: float = float(os.getenv("ZAPPER_RETRY_DELAY_SECONDS", "1"))
    ZAPPER_RELAY_CONNECT_TIMEOUT: float = float(os.getenv("ZAPPER_RELAY_CONNECT_TIMEOUT", "10"))
    ZAPPER_MAX_CONCURRENT_BROADCASTS: int = int(os.getenv("ZAPPER_MAX_CONCURRENT_BROADCASTS", "16"))
    ZAPPER_MAX_CONCURRENT_RELAYS: int = int(os.getenv("ZAPPER_MAX_CONCURRENT_RELAYS", "32"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def default_relays_list(self) -> List[str]:
        """Convert ZAPPER_NOSTR_RELAY string to list"""
        return [relay.strip() for relay in self.ZAPPER_NOSTR_RELAY.split(",") if relay.strip()]

    @property
    def pay_index_path(self) -> str:
        """Checkpoint path, falling back to the per-application data directory"""
        if self.ZAPPER_PAY_INDEX_PATH:
            return self.ZAPPER_PAY_INDEX_PATH
        return os.path.join(_default_data_dir(), "last_pay_index")

    @property
    def cln_tls_verify(self):
        """Value for httpx's verify argument"""
        if not self.CLN_REST_VERIFY_TLS:
            return False
        return self.CLN_REST_CA_CERT or True

# Global settings instance
settings = Settings()
