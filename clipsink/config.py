"""Clipsink application configuration.

Settings come from ``CLIPSINK_*`` environment variables (a ``.env`` file in
the working directory or above is loaded first), and a YAML settings file
(``clipsink.settings.yaml`` by default) overrides them key by key:

  * CLIPSINK_TARGET_DIR=/srv/screenshots
  * CLIPSINK_ENABLE_SUBDIRECTORIES=true
  * CLIPSINK_BIND=localhost:1256,0.0.0.0:8080

The loaded config is frozen; nothing downstream mutates it.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("clipsink.settings.yaml")
ENV_PREFIX = "CLIPSINK_"

DEFAULT_SUBDIR_REGEX = r"(?P<subdir>.*)_[\d\w]{10}.[\w]+"
DEFAULT_BIND = "localhost:1256"
DEFAULT_MAX_IMAGE_SIZE = 100_000_000

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_STRINGS:
        return True
    if value in _FALSE_STRINGS:
        return False
    raise ValueError(f"Cannot interpret {raw!r} as a boolean")


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class LoggingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = "info"


class ClipsinkConfig(BaseModel):
    """Configuration shared by the upload pipeline and the HTTP layer."""

    model_config = ConfigDict(frozen=True)

    target_dir:               Optional[str] = None
    enable_imagehost:         bool          = False
    enable_subdirectories:    bool          = False
    subdirectory_regex:       str           = DEFAULT_SUBDIR_REGEX
    bind:                     List[str]     = Field(default_factory=lambda: [DEFAULT_BIND])
    max_image_size:           int           = DEFAULT_MAX_IMAGE_SIZE
    serialize_path_selection: bool          = False
    decode_workers:           int           = 2
    logging:                  LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("max_image_size")
    @classmethod
    def _positive_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_image_size must be greater than zero")
        return value

    @field_validator("decode_workers")
    @classmethod
    def _positive_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("decode_workers must be at least 1")
        return value

    @model_validator(mode="before")
    @classmethod
    def _check_options(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        # Canonicalise target_dir so path comparisons later are stable
        target_dir = data.get("target_dir")
        if target_dir:
            try:
                data["target_dir"] = str(Path(target_dir).resolve(strict=True))
            except (OSError, RuntimeError) as exc:
                raise ValueError(
                    f"Invalid path provided for image storage: {target_dir}"
                ) from exc
        else:
            data["target_dir"] = None

        if data.get("enable_imagehost") and not data["target_dir"]:
            logger.warning("Cannot enable imagehost unless target_dir is set")
            data["enable_imagehost"] = False
        return data


# ---------------------------------------------------------------------------
# Environment settings
# ---------------------------------------------------------------------------


def _env_settings(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Collect ``CLIPSINK_*`` settings, coerced to the field types."""
    environ = os.environ if environ is None else environ
    settings: Dict[str, Any] = {}

    for name, field in ClipsinkConfig.model_fields.items():
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or name == "logging":
            continue
        if field.annotation is bool:
            settings[name] = _parse_bool(raw)
        elif field.annotation is int:
            settings[name] = int(raw)
        elif name == "bind":
            settings[name] = [part.strip() for part in raw.split(",") if part.strip()]
        else:
            settings[name] = raw

    level = environ.get(f"{ENV_PREFIX}LOG_LEVEL")
    if level:
        settings["logging"] = {"level": level}
    return settings


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ClipsinkConfig:
    """Read env settings, overlay the YAML settings file and validate.

    Args:
        settings_path: Explicit settings file. When given it must exist;
            when omitted, ``clipsink.settings.yaml`` in the working
            directory is used if present.
        environ: Environment mapping. When omitted, ``.env`` is loaded
            into ``os.environ`` and that is used.

    Raises:
        FileNotFoundError: If an explicit settings file is missing.
        pydantic.ValidationError: On invalid values (including a
            ``target_dir`` that does not exist).
    """
    if environ is None:
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path)
            logger.info("Loaded environment from %s", dotenv_path)
        else:
            logger.info("No .env file found")

    data = _env_settings(environ)

    if settings_path is not None:
        settings_path = Path(settings_path)
        if not settings_path.exists():
            raise FileNotFoundError(f"Config file not found: {settings_path}")
        data.update(_load_yaml(settings_path))
    elif SETTINGS_FILE.exists():
        data.update(_load_yaml(SETTINGS_FILE))
    else:
        logger.warning("Config file not found: %s, using defaults", SETTINGS_FILE)

    config = ClipsinkConfig(**data)
    logger.info(
        "Config loaded (target_dir=%s, subdirectories=%s, imagehost=%s, bind=%s, max_image_size=%d)",
        config.target_dir,
        config.enable_subdirectories,
        config.enable_imagehost,
        ",".join(config.bind),
        config.max_image_size,
    )
    return config


_config: Optional[ClipsinkConfig] = None


def get_config() -> ClipsinkConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[ClipsinkConfig]) -> None:
    """Set (or clear) the process-wide config."""
    global _config
    _config = config
