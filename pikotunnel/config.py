# pikotunnel/config.py
"""
Application Configuration
Uses pydantic-settings for environment variable management
"""

import ipaddress
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Relay settings loaded from environment variables
    Create a .env file for local development
    """

    # === Application ===
    APP_NAME: str = "PikoTunnel Relay"
    APP_VERSION: str = "1.0.0"
    ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # === API ===
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TOKEN: str = ""  # compared verbatim against the Authorization header

    # === Database ===
    DATABASE_URL: str = "sqlite:///./pikotunnel.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # === WireGuard ===
    WIREGUARD_INTERFACE: str = "wg0"
    # Relay address with prefix, assigned verbatim to the interface
    WIREGUARD_SUBNET: str = "10.8.0.1/24"
    WIREGUARD_LISTEN_PORT: int = 51820
    WIREGUARD_PRIVATE_KEY: str = ""
    WIREGUARD_PUBLIC_KEY: str = ""  # derived from the private key when empty
    WIREGUARD_RELAY_SERVER_PUBLIC_IP: str = ""
    WIREGUARD_KEEPALIVE: int = 25

    # === Packet filter ===
    FILTER_CHAIN: str = "WG_RULES"

    # === Reconciliation ===
    JOB_QUEUE_SIZE: int = 1024
    IP_ALLOCATION_MAX_ATTEMPTS: int = 1024
    COMMAND_TIMEOUT: Optional[float] = None  # seconds, None waits forever

    # === Maintenance ===
    BACKUP_DIR: str = "."
    REQUIRED_TOOLS: List[str] = ["wg", "ip", "iptables", "sysctl"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENV.lower() == "production"

    @property
    def relay_interface(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(self.WIREGUARD_SUBNET)

    @property
    def relay_address(self) -> str:
        """Relay's own address inside the tunnel subnet (e.g. 10.8.0.1)"""
        return str(self.relay_interface.ip)

    @property
    def client_subnet(self) -> str:
        """Network handed to clients as allowed-ips (e.g. 10.8.0.0/24)"""
        return str(self.relay_interface.network)

    @property
    def relay_endpoint(self) -> str:
        return f"{self.WIREGUARD_RELAY_SERVER_PUBLIC_IP}:{self.WIREGUARD_LISTEN_PORT}"

    @property
    def relay_public_key(self) -> str:
        """Configured public key, or the one derived from WIREGUARD_PRIVATE_KEY"""
        if self.WIREGUARD_PUBLIC_KEY:
            return self.WIREGUARD_PUBLIC_KEY
        if not self.WIREGUARD_PRIVATE_KEY:
            return ""
        from pikotunnel.core.keys import public_key_from_private
        return public_key_from_private(self.WIREGUARD_PRIVATE_KEY)

    def missing_required(self) -> List[str]:
        """Names of settings the server cannot start without"""
        required = {
            "API_TOKEN": self.API_TOKEN,
            "WIREGUARD_SUBNET": self.WIREGUARD_SUBNET,
            "WIREGUARD_RELAY_SERVER_PUBLIC_IP": self.WIREGUARD_RELAY_SERVER_PUBLIC_IP,
            "WIREGUARD_PRIVATE_KEY": self.WIREGUARD_PRIVATE_KEY,
        }
        return [name for name, value in required.items() if not value]


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance
    Use this to get settings throughout the application
    """
    return Settings()


settings = get_settings()
