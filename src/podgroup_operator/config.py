"""
Configuration module for the pod group operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class OperatorConfig:
    """Operator runtime configuration."""

    log_level: str = "INFO"
    reconcile_interval: int = 30  # seconds between timer reconciliations
    requeue_delay: int = 10  # seconds before retrying a failed pass

    # Owner set compare-and-swap retries
    owner_max_retries: int = 5
    owner_base_delay: float = 0.1
    owner_max_delay: float = 2.0

    default_image: str = "splunk/splunk:latest"
    app_mount_path: str = "/init-apps"

    # Decommission handshake
    decommission_port: int = 8089
    decommission_timeout: float = 5.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            reconcile_interval=int(os.getenv("RECONCILE_INTERVAL", "30")),
            requeue_delay=int(os.getenv("REQUEUE_DELAY", "10")),
            owner_max_retries=int(os.getenv("OWNER_MAX_RETRIES", "5")),
            owner_base_delay=float(os.getenv("OWNER_BASE_DELAY", "0.1")),
            owner_max_delay=float(os.getenv("OWNER_MAX_DELAY", "2.0")),
            default_image=os.getenv("DEFAULT_IMAGE", "splunk/splunk:latest"),
            app_mount_path=os.getenv("APP_MOUNT_PATH", "/init-apps"),
            decommission_port=int(os.getenv("DECOMMISSION_PORT", "8089")),
            decommission_timeout=float(os.getenv("DECOMMISSION_TIMEOUT", "5.0")),
        )


# Global config instance
config: Optional[OperatorConfig] = None


def get_config() -> OperatorConfig:
    """Get the current configuration (singleton pattern)."""
    global config
    if config is None:
        config = OperatorConfig.from_env()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
