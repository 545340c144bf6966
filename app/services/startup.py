import logging
import os
from datetime import datetime
from typing import Dict, Any, Optional

from secp256k1 import PrivateKey

from app.exceptions import ConfigurationError
from app.services.checkpoint import CheckpointStore
from app.services.keys import load_private_key, pubkey_to_npub
from config import Settings, settings

logger = logging.getLogger(__name__)

class StartupManager:
    """Manages application startup tasks and checks"""

    def __init__(self, config: Settings = settings):
        self.config = config
        self.startup_time = None
        self.startup_checks = {
            "config": False,
            "signing_key": False,
            "checkpoint": False
        }
        self.startup_errors = []
        self.private_key: Optional[PrivateKey] = None
        self.public_key_hex: Optional[str] = None
        self.start_index = 0

    def run_startup_checks(self, checkpoint_store: CheckpointStore) -> Dict[str, Any]:
        """Run all startup checks and return status"""
        self.startup_time = datetime.utcnow()
        logger.info("=== cln-zapper Startup Checks ===")

        # Check 1: Configuration Validation
        try:
            logger.info("1. Validating configuration...")
            self._validate_configuration()
            self.startup_checks["config"] = True
            logger.info("✓ Configuration validated successfully")
        except ConfigurationError as e:
            error_msg = f"Configuration validation failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 2: Signing key
        try:
            logger.info("2. Loading signing key...")
            self.private_key, self.public_key_hex = load_private_key(self.config.ZAPPER_NOSTR_NSEC)
            self.startup_checks["signing_key"] = True
            logger.info(f"✓ Zap notes will be signed by {pubkey_to_npub(self.public_key_hex)}")
        except ConfigurationError as e:
            error_msg = str(e)
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 3: Checkpoint (never fatal)
        logger.info(f"3. Reading pay index from {checkpoint_store.path}...")
        self.start_index = checkpoint_store.load_or_initialize()
        self.startup_checks["checkpoint"] = True
        logger.info(f"✓ Starting at pay index: {self.start_index}")

        # Log final status
        total_checks = len(self.startup_checks)
        passed_checks = sum(self.startup_checks.values())

        if passed_checks == total_checks and not self.startup_errors:
            logger.info(f"=== Startup Complete: {passed_checks}/{total_checks} checks passed ===")
        else:
            logger.warning(f"=== Startup Complete: {passed_checks}/{total_checks} checks passed, {len(self.startup_errors)} errors ===")
            for error in self.startup_errors:
                logger.error(f"  • {error}")

        return self.get_startup_status()

    def _validate_configuration(self):
        """Validate critical configuration settings"""
        errors = []

        if not self.config.default_relays_list:
            errors.append("ZAPPER_NOSTR_RELAY not configured")

        if not self.config.CLN_REST_URL:
            errors.append("CLN_REST_URL not configured")

        if not self.config.CLN_RUNE:
            errors.append("CLN_RUNE not configured")

        if self.config.CLN_REST_CA_CERT and not os.path.isfile(self.config.CLN_REST_CA_CERT):
            errors.append(f"CLN_REST_CA_CERT does not exist: {self.config.CLN_REST_CA_CERT}")

        if self.config.ZAPPER_RETRY_DELAY_SECONDS < 0:
            errors.append("ZAPPER_RETRY_DELAY_SECONDS must not be negative")

        if self.config.ZAPPER_MAX_CONCURRENT_BROADCASTS < 1:
            errors.append("ZAPPER_MAX_CONCURRENT_BROADCASTS must be at least 1")

        if self.config.ZAPPER_MAX_CONCURRENT_RELAYS < 1:
            errors.append("ZAPPER_MAX_CONCURRENT_RELAYS must be at least 1")

        if errors:
            raise ConfigurationError("; ".join(errors))

    def get_startup_status(self) -> Dict[str, Any]:
        """Get current startup status"""
        return {
            "startup_time": self.startup_time.isoformat() if self.startup_time else None,
            "checks": self.startup_checks,
            "checks_passed": sum(self.startup_checks.values()),
            "total_checks": len(self.startup_checks),
            "errors": self.startup_errors,
            "start_index": self.start_index,
            "status": "healthy" if all(self.startup_checks.values()) and not self.startup_errors else "failed"
        }
