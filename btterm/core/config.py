"""Config file loading and validation for btterm."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from btterm.core.errors import ConfigLoadError, ConfigValidationError
from btterm.core.model import LineEnding

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class TerminalConfig:
    rfcomm_channel: int = 1
    resolve_channel: bool = True
    read_buffer_size: int = 1024
    max_receive_errors: int = 3
    receive_retry_delay_s: float = 1.0
    mock_reply_delay_s: float = 0.1
    line_ending: LineEnding = LineEnding.CRLF
    discovery_timeout_s: float = 10.0


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "btterm/config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("btterm.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_config(doc: dict[str, Any], source: Path) -> TerminalConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = TerminalConfig()
    return TerminalConfig(
        rfcomm_channel=int(doc.get("rfcomm_channel", defaults.rfcomm_channel)),
        resolve_channel=bool(doc.get("resolve_channel", defaults.resolve_channel)),
        read_buffer_size=int(doc.get("read_buffer_size", defaults.read_buffer_size)),
        max_receive_errors=int(doc.get("max_receive_errors", defaults.max_receive_errors)),
        receive_retry_delay_s=float(doc.get("receive_retry_delay_s", defaults.receive_retry_delay_s)),
        mock_reply_delay_s=float(doc.get("mock_reply_delay_s", defaults.mock_reply_delay_s)),
        line_ending=LineEnding.parse(doc["line_ending"]) if "line_ending" in doc else defaults.line_ending,
        discovery_timeout_s=float(doc.get("discovery_timeout_s", defaults.discovery_timeout_s)),
    )


def load_config(path: Path | None = None) -> TerminalConfig:
    """Load the terminal config, falling back to defaults when no file exists.

    An explicitly passed ``path`` must exist; the default XDG location is optional.
    """
    if path is None:
        path = default_config_path()
        if not path.is_file():
            LOGGER.debug("No config file at %s, using defaults", path)
            return TerminalConfig()

    doc = _read_yaml(path)
    config = _build_config(doc, path)
    LOGGER.debug("Loaded config from %s: %s", path, config)
    return config
