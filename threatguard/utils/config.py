"""Application Configuration"""

from pydantic_settings import BaseSettings
from typing import Dict, List
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "ThreatGuard Security Core"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Encryption
    ENCRYPTION_SECRET: str = "dev-secret-change-in-production"
    ENCRYPTION_SALT: str = "dev-salt-change-in-production"

    # Masking
    SENSITIVE_FIELDS: List[str] = [
        "password", "password_hash", "token", "access_token", "refresh_token",
        "secret", "client_secret", "api_key", "private_key", "credential",
        "ssn", "credit_card", "card_number", "cvv", "pin"
    ]
    REDACTION_MARKER: str = "[REDACTED]"

    # Audit
    AUDIT_RETENTION_DAYS: int = 2555  # 7 years
    ENCRYPT_AUDIT_DATA: bool = True
    AUDIT_WRITE_TIMEOUT_SECONDS: float = 5.0
    AUDIT_QUERY_MAX: int = 10000
    AUDIT_EXPORT_MAX: int = 50000
    AUDIT_CLEANUP_BATCH_SIZE: int = 1000
    AUDIT_CLEANUP_INTERVAL_SECONDS: int = 86400

    # Threat detection
    THREAT_DETECTION_HISTORY_SIZE: int = 10000
    BUSINESS_HOURS_START: int = 8
    BUSINESS_HOURS_END: int = 18
    BEHAVIOR_MIN_EVENTS: int = 10
    IP_BLACKLIST: List[str] = ["192.168.1.100", "10.0.0.50"]

    # Decision gate
    BLOCK_RISK_SCORE: float = 90
    FLAG_RISK_SCORE: float = 75
    LOCKDOWN_ALLOWED_ACTIONS: List[str] = ["read", "logout"]
    PRIVILEGED_TIERS: List[str] = ["enterprise"]
    # action bucket -> [max requests, window seconds]
    RATE_LIMITS: Dict[str, List[int]] = {
        "login": [10, 900],
        "export": [20, 3600],
        "api": [100, 60],
        "default": [60, 60],
    }

    # Security monitoring
    STALE_THREAT_HOURS: int = 24
    SECURITY_HEALTH_CHECK_INTERVAL_SECONDS: int = 300

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
