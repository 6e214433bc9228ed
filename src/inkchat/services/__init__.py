"""Service layer: persisted configuration."""

from .settings import SecretVault, Settings, SettingsStore, redact_secret, redacted_settings

__all__ = ["SecretVault", "Settings", "SettingsStore", "redact_secret", "redacted_settings"]
