"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "SECRET_FIELDS",
    "redact_secret",
    "redacted_settings",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".inkchat"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
SECRET_FIELDS: tuple[str, ...] = (
    "openai_api_key",
    "anthropic_api_key",
    "gemini_api_key",
    "azure_api_key",
)
_CIPHERTEXT_SUFFIX = "_ciphertext"
_ENV_OVERRIDES: Mapping[str, str] = {
    "INKCHAT_DEFAULT_MODEL": "default_model",
    "INKCHAT_OLLAMA_URL": "ollama_url",
    "INKCHAT_OPENAI_API_KEY": "openai_api_key",
    "INKCHAT_ANTHROPIC_API_KEY": "anthropic_api_key",
    "INKCHAT_GEMINI_API_KEY": "gemini_api_key",
    "INKCHAT_AZURE_API_KEY": "azure_api_key",
    "INKCHAT_AZURE_ENDPOINT": "azure_endpoint",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "INKCHAT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "INKCHAT_TEMPERATURE": "default_temperature",
    "INKCHAT_REQUEST_TIMEOUT": "request_timeout",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    default_model: str = "ollama/llama3.2"
    default_temperature: float = 0.7
    default_system_prompt: str = ""
    ollama_url: str = "http://localhost:11434"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    anthropic_max_tokens: int = 4096
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    azure_api_key: str = ""
    azure_endpoint: str = ""
    azure_api_version: str = "2024-02-01"
    azure_deployments: str = ""
    model_visibility: dict[str, bool] = field(default_factory=dict)
    request_timeout: float | None = None  # None = wait indefinitely
    auto_rename: bool = True
    debug_logging: bool = False

    def azure_deployment_list(self) -> list[str]:
        return [name.strip() for name in self.azure_deployments.split(",") if name.strip()]

    def is_model_visible(self, model_id: str) -> bool:
        """Only an explicit ``False`` hides a model; unknown ids are visible."""

        return self.model_visibility.get(model_id) is not False

    def with_model_visibility(self, model_id: str, visible: bool) -> "Settings":
        visibility = dict(self.model_visibility)
        visibility[model_id] = bool(visible)
        return replace(self, model_visibility=visibility)

    def snapshot(self) -> "Settings":
        """Return a copy that later mutations of this instance cannot reach."""

        return copy.deepcopy(self)


class SecretVault:
    """Encrypts API keys with a symmetric Fernet key stored beside the settings file."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return f"{self.name}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self.name, token
        if prefix != self.name:
            raise ValueError(f"Unknown secret token prefix {prefix!r}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(
        self,
        *,
        overrides: Mapping[str, Any] | None = None,
        environment: bool = True,
    ) -> Settings:
        """Load settings from disk, applying CLI then environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            secrets: Dict[str, str] = {}
            for name in SECRET_FIELDS:
                plaintext, migrated = self._decrypt_secret(
                    name,
                    payload.pop(name + _CIPHERTEXT_SUFFIX, None),
                    payload.pop(name, None),
                )
                needs_migration = needs_migration or migrated
                if plaintext:
                    secrets[name] = plaintext
            data = _filter_fields(payload)
            visibility = data.get("model_visibility")
            if visibility is not None:
                data["model_visibility"] = _normalize_visibility(visibility)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if secrets:
                settings = replace(settings, **secrets)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        if not environment:
            return settings
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        body = json.dumps(self._serialize(settings), indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        for name in SECRET_FIELDS:
            secret = data.pop(name, "") or ""
            if secret:
                data[name + _CIPHERTEXT_SUFFIX] = self._vault.encrypt(secret)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.name
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _decrypt_secret(
        self, name: str, ciphertext: str | None, legacy_plaintext: str | None
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt %s: %s", name, exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected legacy plaintext %s; migrating to encrypted storage.", name)
            return str(legacy_plaintext), True
        return "", False

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        visibility_override = filtered.get("model_visibility")
        if isinstance(visibility_override, Mapping):
            merged = dict(settings.model_visibility)
            merged.update(_normalize_visibility(visibility_override))
            filtered["model_visibility"] = merged
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - set(SECRET_FIELDS)
    return {key: value for key, value in payload.items() if key in allowed}


def _normalize_visibility(payload: Any) -> dict[str, bool]:
    if not isinstance(payload, Mapping):
        LOGGER.debug("Ignoring non-mapping model_visibility payload of type %s", type(payload))
        return {}
    return {str(key): bool(value) for key, value in payload.items() if isinstance(value, bool)}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redacted_settings(settings: Settings) -> dict[str, Any]:
    """Settings as a plain mapping with every credential masked."""

    data = asdict(settings)
    for name in SECRET_FIELDS:
        data[name] = redact_secret(data.get(name) or "")
    return data
