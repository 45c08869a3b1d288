"""
Configuration resolution for the browser control server.

Merges a base configuration with an environment overlay over the declared
schema, applies environment variable overrides and validates the result.
"""
import os
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type
from pydantic import BaseModel, ValidationError
from browser_control.core.config import EffectiveConfig, FEATURE_FLAGS
from browser_control.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_ENVIRONMENT = "api-only"

_MISSING = object()


def _is_section(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _pick(source: Mapping[str, Any], name: str, alias: Optional[str]) -> Any:
    if name in source:
        return source[name]
    if alias and alias in source:
        return source[alias]
    return _MISSING


def _check_keys(model: Type[BaseModel], source: Mapping[str, Any], path: str, label: str):
    known = set()
    for name, field in model.model_fields.items():
        known.add(name)
        if field.alias:
            known.add(field.alias)
    unknown = sorted(str(key) for key in source if key not in known)
    if unknown:
        raise ConfigError(
            f"Unknown configuration key(s) in {label} at '{path or '<root>'}': {unknown}",
            {"path": path, "keys": unknown},
        )


def merge_section(model: Type[BaseModel], base: Mapping[str, Any],
                  overlay: Mapping[str, Any], path: str = "") -> Dict[str, Any]:
    """Recursively merge two raw mappings over the fields of a schema section.

    Overlay wins on conflicting keys, nested sections merge, lists replace
    wholesale. The result is keyed by field name.
    """
    for label, source in (("base", base), ("overlay", overlay)):
        if not isinstance(source, Mapping):
            raise ConfigError(
                f"Expected a mapping in {label} at '{path or '<root>'}', got {type(source).__name__}",
                {"path": path},
            )
        _check_keys(model, source, path, label)

    merged: Dict[str, Any] = {}
    for name, field in model.model_fields.items():
        key_path = f"{path}.{name}" if path else name
        base_value = _pick(base, name, field.alias)
        overlay_value = _pick(overlay, name, field.alias)

        if _is_section(field.annotation):
            if base_value is _MISSING and overlay_value is _MISSING:
                continue
            merged[name] = merge_section(
                field.annotation,
                {} if base_value is _MISSING else base_value,
                {} if overlay_value is _MISSING else overlay_value,
                key_path,
            )
            continue

        if overlay_value is not _MISSING:
            if field.annotation is bool and not isinstance(overlay_value, bool):
                raise ConfigError(
                    f"Configuration key '{key_path}' expects a boolean, got {overlay_value!r}",
                    {"path": key_path},
                )
            merged[name] = overlay_value
        elif base_value is not _MISSING:
            merged[name] = base_value
    return merged


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ConfigError(f"Environment variable {name} must be 'true' or 'false', got {value!r}", {"variable": name})


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Environment variable {name} must be an integer, got {value!r}", {"variable": name})


def apply_environment_overrides(merged: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Apply the environment-overridable settings on top of a merged mapping.

    Feature flags use the TOOL__KEY style separator:
    MCP_FEATURES__ENABLE_BROWSER_TOOLS=false
    """
    result = dict(merged)
    features = dict(result.get("features", {}))
    server = dict(result.get("server", {}))
    log_settings = dict(result.get("logging", {}))

    for key, value in environ.items():
        if not key.startswith("MCP_FEATURES__"):
            continue
        flag = key[len("MCP_FEATURES__"):].lower()
        if flag not in FEATURE_FLAGS:
            raise ConfigError(f"Unknown feature flag in environment: {key}", {"variable": key})
        features[flag] = _parse_bool(key, value)

    if "MCP_SERVER_HOST" in environ:
        server["host"] = environ["MCP_SERVER_HOST"]
    if "MCP_SERVER_PORT" in environ:
        server["port"] = _parse_int("MCP_SERVER_PORT", environ["MCP_SERVER_PORT"])
    if "MCP_TRANSPORT" in environ:
        server["transport"] = environ["MCP_TRANSPORT"].lower()
    if "MCP_OUTPUT_DIR" in environ:
        result["output_dir"] = environ["MCP_OUTPUT_DIR"]
    if "MCP_LOG_LEVEL" in environ:
        log_settings["level"] = environ["MCP_LOG_LEVEL"].lower()
    if "DEBUG_MODE" in environ and _parse_bool("DEBUG_MODE", environ["DEBUG_MODE"]):
        features["enable_debug_mode"] = True
        log_settings["level"] = "debug"

    result["features"] = features
    result["server"] = server
    result["logging"] = log_settings
    return result


def resolve(base: Mapping[str, Any], overlay: Mapping[str, Any],
            environ: Optional[Mapping[str, str]] = None) -> EffectiveConfig:
    """Produce the effective configuration from base, overlay and environment."""
    merged = merge_section(EffectiveConfig, base or {}, overlay or {})
    merged = apply_environment_overrides(merged, os.environ if environ is None else environ)
    try:
        return EffectiveConfig.model_validate(merged)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigError(f"Invalid configuration: {'; '.join(problems)}", {"problems": problems})


class ConfigManager:
    """Loads configuration files and resolves the effective configuration."""

    def __init__(self, config_dir: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        env_dir = self.environ.get("MCP_CONFIG_DIR")
        self.config_dir = Path(config_dir or env_dir or DEFAULT_CONFIG_DIR).resolve()
        self._cache: Dict[str, Dict[str, Any]] = {}

    @property
    def environment(self) -> str:
        return self.environ.get("MCP_ENV", DEFAULT_ENVIRONMENT)

    def load_file(self, relative_path: str, required: bool = False) -> Dict[str, Any]:
        """Load a YAML file from the config directory."""
        if relative_path in self._cache:
            return self._cache[relative_path]

        config_path = self.config_dir / relative_path
        if not config_path.exists():
            if required:
                raise ConfigError(f"Configuration file not found: {config_path}", {"path": str(config_path)})
            logger.warning(f"Configuration file not found, using empty overlay: {config_path}")
            return {}

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing {config_path}: {e}", {"path": str(config_path)})
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping", {"path": str(config_path)})

        self._cache[relative_path] = data
        return data

    def load(self, mode: Optional[str] = None) -> EffectiveConfig:
        """Load base.yaml plus the overlay for the selected environment."""
        mode = mode or self.environment
        logger.info(f"Loading configuration for environment: {mode}")
        base = self.load_file("base.yaml", required=True)
        overlay = self.load_file(f"environments/{mode}.yaml")
        return resolve(base, overlay, self.environ)

    def clear_cache(self):
        """Clear the configuration cache."""
        self._cache.clear()


def load_config(mode: Optional[str] = None, config_dir: Optional[Path] = None,
                environ: Optional[Mapping[str, str]] = None) -> EffectiveConfig:
    """Load and resolve the effective configuration."""
    return ConfigManager(config_dir, environ).load(mode)
