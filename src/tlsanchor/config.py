"""Configuration loading for the trust-anchor bootstrap.

Reads an optional YAML file::

    # tlsanchor.yaml
    ca-bundle-path: /etc/proxy/ca.pem   # cert chain (and key, if combined)
    ca-key-path: /etc/proxy/ca.key      # optional separate key file

Environment variables override the file:
``TLSANCHOR_CA_BUNDLE_PATH`` and ``TLSANCHOR_CA_KEY_PATH``.
Without a bundle path the CA shipped with the package is used.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

_ENV_OVERRIDES = {
    "TLSANCHOR_CA_BUNDLE_PATH": "ca_bundle_path",
    "TLSANCHOR_CA_KEY_PATH": "ca_key_path",
}


class TrustConfig(BaseModel):
    """Where the root CA material comes from."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    ca_bundle_path: str | None = Field(default=None, alias="ca-bundle-path")
    ca_key_path: str | None = Field(default=None, alias="ca-key-path")

    @model_validator(mode="after")
    def _key_needs_bundle(self) -> TrustConfig:
        if self.ca_key_path and not self.ca_bundle_path:
            raise ValueError("ca-key-path requires ca-bundle-path")
        return self

    @property
    def uses_bundled_ca(self) -> bool:
        return not self.ca_bundle_path


def load_config(config_path: Path | None = None) -> TrustConfig:
    """Load TrustConfig from an optional YAML file plus environment overrides.

    Raises:
        FileNotFoundError: If *config_path* is given but doesn't exist.
        ValueError: If the file does not hold a YAML mapping.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If config validation fails.
    """
    raw: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"tlsanchor config not found: {config_path}")
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(
                f"tlsanchor config must be a mapping, got {type(raw).__name__}: {config_path}"
            )

    for env_var, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            # Drop the file's spelling of the key so the override wins.
            raw.pop(TrustConfig.model_fields[field_name].alias, None)
            raw[field_name] = value

    config = TrustConfig(**raw)
    if config.uses_bundled_ca:
        logger.info("Loaded tlsanchor config: using bundled CA")
    else:
        logger.info("Loaded tlsanchor config: ca-bundle-path=%s", config.ca_bundle_path)
    return config
