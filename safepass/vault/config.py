"""
Vault Configuration — Application secret loading and validated settings.

Reads the application-wide envelope secrets from environment variables:
    VAULT_APP_SECRET_v{N} = <base64-encoded 32-byte secret>
    VAULT_ACTIVE_SECRET_ID = <integer>

The application secret only wraps the per-user key envelope; it never
encrypts vault fields directly.

Security Note:
    Never log secret material. Only log secret IDs and version numbers.
"""
import os
import re
import base64
import binascii
import secrets
import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("safepass.vault")

_SECRET_ENV_PATTERN = re.compile(r"^VAULT_APP_SECRET_v(\d+)$")

DEFAULT_KDF_ITERATIONS = 600_000
SECRET_SIZE = 32


def _env_int(name: str, default: Optional[int] = None) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        if default is None:
            raise RuntimeError(f"{name} environment variable is not set")
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _decode_secret(name: str, value: str) -> bytes:
    try:
        secret = base64.b64decode(value.strip(), validate=True)
    except binascii.Error:
        raise ValueError(f"{name} is not valid base64") from None
    if len(secret) != SECRET_SIZE:
        raise ValueError(
            f"{name} must decode to {SECRET_SIZE} bytes, got {len(secret)}"
        )
    return secret


def load_app_secrets() -> dict[int, bytes]:
    """Collect every ``VAULT_APP_SECRET_v{N}`` variable of the environment.

    Raises:
        RuntimeError: No secret variable is set.
        ValueError: A variable is not base64 or not a 32-byte secret; the
            message names the variable, never its value.
    """
    found: dict[int, str] = {}
    for name in os.environ:
        match = _SECRET_ENV_PATTERN.match(name)
        if match:
            found[int(match.group(1))] = name
    if not found:
        raise RuntimeError(
            "No vault application secrets found in environment. "
            "Set VAULT_APP_SECRET_v1=<base64-encoded-32-byte-secret>"
        )
    app_secrets = {
        version: _decode_secret(name, os.environ[name])
        for version, name in sorted(found.items())
    }
    logger.debug("Loaded application secret version(s): %s", list(app_secrets))
    return app_secrets


def get_active_secret_id() -> int:
    """Version named by ``VAULT_ACTIVE_SECRET_ID``; new envelopes are wrapped with it."""
    return _env_int("VAULT_ACTIVE_SECRET_ID")


def generate_app_secret() -> str:
    """Generate a random 32-byte application secret as a base64 string.

    This is a utility for operators provisioning a deployment.
    """
    return base64.b64encode(secrets.token_bytes(SECRET_SIZE)).decode("ascii")


class RetryPolicy(BaseModel):
    """Bounded retry with fixed spacing between attempts."""

    max_attempts: int = Field(default=3, ge=1, le=20)
    delay: float = Field(default=1.0, ge=0)

    model_config = {"frozen": True}


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    app_secrets: dict[int, bytes]
    active_secret_id: int
    cipher_backend: str = Field(default="aesgcm")
    kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1)
    salt_mode: Literal["per_user", "fixed"] = "per_user"
    degrade_policy: Literal["asymmetric", "strict"] = "asymmetric"
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("app_secrets")
    @classmethod
    def validate_secret_length(cls, v: dict[int, bytes]) -> dict[int, bytes]:
        """Every application secret must be 32 bytes."""
        for version, secret in v.items():
            if len(secret) != SECRET_SIZE:
                raise ValueError(
                    f"application secret v{version} must be {SECRET_SIZE} bytes, "
                    f"got {len(secret)}"
                )
        return v

    @model_validator(mode="after")
    def validate_active_secret_exists(self) -> "VaultConfig":
        """Ensure active_secret_id is present in app_secrets."""
        if self.active_secret_id not in self.app_secrets:
            raise ValueError(
                f"active_secret_id {self.active_secret_id} not found in "
                f"app_secrets (available: {sorted(self.app_secrets.keys())})"
            )
        return self

    @property
    def active_secret(self) -> bytes:
        return self.app_secrets[self.active_secret_id]

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        retry = RetryPolicy(
            max_attempts=_env_int("VAULT_RETRY_ATTEMPTS", 3),
            delay=float(os.environ.get("VAULT_RETRY_DELAY", "1.0")),
        )
        return cls(
            app_secrets=load_app_secrets(),
            active_secret_id=get_active_secret_id(),
            cipher_backend=os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm"),
            kdf_iterations=_env_int("VAULT_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS),
            salt_mode=os.environ.get("VAULT_SALT_MODE", "per_user"),
            degrade_policy=os.environ.get("VAULT_DEGRADE_POLICY", "asymmetric"),
            retry=retry,
        )
