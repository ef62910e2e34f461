import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from .types import OUTPUT_FORMATS, ConfigError, Settings, UnsupportedConfigFormatError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.sandforge/config.toml")

_ENV_OVERRIDES = {
    "E2B_API_KEY": "api_key",
    "E2B_DOMAIN": "domain",
    "SANDFORGE_OUTPUT": "output",
}


def load_settings(path: str | Path | None = None) -> Settings:
    if path is None:
        pure_path = DEFAULT_CONFIG_PATH.expanduser()
        if not pure_path.exists():
            logger.debug("no settings file at %s, using defaults", pure_path)
            return _apply_env(Settings())
    else:
        pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ConfigError(f"Config file not found: {pure_path}")

    if not pure_path.is_file():
        raise ConfigError(f"Config path is not a file: {pure_path}")

    fmt = _detect_format(pure_path)
    raw_file = _parse_file(pure_path, fmt)
    settings = _build_settings(raw_file, pure_path)
    logger.debug("loaded settings from %s", pure_path)
    return _apply_env(settings)


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    text = path.read_text(encoding="utf-8")
    match fmt:
        case "yaml":
            try:
                raw_file = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise ConfigError(f"{path}: invalid YAML") from exc
        case "toml":
            try:
                raw_file = tomllib.loads(text)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"{path}: invalid TOML") from exc
        case "json":
            try:
                raw_file = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"{path}: invalid JSON") from exc
        case _:
            raise AssertionError("Unreachable")

    # An empty YAML document is an empty settings file
    if raw_file is None and fmt == "yaml":
        return {}

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: {fmt.upper()} parsed succesfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _build_settings(raw: Mapping[str, Any], path: Path) -> Settings:
    settings = Settings()

    for key, value in raw.items():
        match key:
            case "api_key" | "domain" | "tool" | "language":
                if not isinstance(value, str) or len(value.strip()) < 1:
                    raise ConfigError(f"{path}: '{key}' must be a non-empty string")
                setattr(settings, key, value.strip())
            case "output":
                if value not in OUTPUT_FORMATS:
                    raise ConfigError(
                        f"{path}: 'output' must be one of {', '.join(OUTPUT_FORMATS)}, got {value!r}"
                    )
                settings.output = value
            case "sandbox_timeout":
                # bool is an int subclass
                if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                    raise ConfigError(
                        f"{path}: 'sandbox_timeout' must be a positive integer"
                    )
                settings.sandbox_timeout = value
            case _:
                raise ConfigError(f"{path}: Can't process: {key}")

    return settings


def _apply_env(settings: Settings) -> Settings:
    for env_name, field in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name, "").strip()
        if not value:
            continue
        if field == "output" and value not in OUTPUT_FORMATS:
            raise ConfigError(
                f"{env_name} must be one of {', '.join(OUTPUT_FORMATS)}, got {value!r}"
            )
        setattr(settings, field, value)
    return settings
