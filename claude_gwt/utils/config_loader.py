"""
Configuration Loader Module

Handles loading and validation of claude-gwt configuration files.
"""

import copy
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from rich.console import Console

from ..core.errors import ConfigError
from .file_utils import FileUtils

console = Console()

CONFIG_DIR_ENV = "CLAUDE_GWT_CONFIG_DIR"
DEFAULT_CONFIG_NAME = "config"

_ENV_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)')

FieldType = Union[type, Tuple[type, ...]]


@dataclass
class ConfigValidationRule:
    """Configuration validation rule."""
    field_path: str
    required: bool = True
    field_type: FieldType = str
    default_value: Any = None
    allowed_values: Optional[List[Any]] = None
    min_value: Optional[Union[int, float]] = None
    max_value: Optional[Union[int, float]] = None
    nullable: bool = False


@dataclass
class ConfigSchema:
    """Configuration schema definition."""
    name: str
    version: str
    rules: List[ConfigValidationRule] = field(default_factory=list)

    def add_rule(self, **kwargs) -> 'ConfigSchema':
        """Add validation rule."""
        self.rules.append(ConfigValidationRule(**kwargs))
        return self


def _type_name(field_type: FieldType) -> str:
    if isinstance(field_type, tuple):
        return " or ".join(t.__name__ for t in field_type)
    return field_type.__name__


class ConfigLoader:
    """
    Configuration loader with validation and schema support.

    Features:
    - JSON and YAML configuration support
    - Schema validation with detailed error reporting
    - Environment variable substitution
    - Configuration merging
    - Default value handling
    """

    def __init__(self, config_dir: Path):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)

        # Cache for loaded configurations
        self._config_cache: Dict[str, Dict[str, Any]] = {}

        self._schemas: Dict[str, ConfigSchema] = {}
        self._initialize_builtin_schemas()

    def find_config_file(self, config_name: str) -> Optional[Path]:
        """Return the first of ``<name>.json``, ``<name>.yaml``, ``<name>.yml`` that exists."""
        for suffix in (".json", ".yaml", ".yml"):
            candidate = self.config_dir / f"{config_name}{suffix}"
            if candidate.exists():
                return candidate
        return None

    def load_config(self,
                    config_name: str,
                    schema_name: Optional[str] = None,
                    use_cache: bool = True,
                    required: bool = False) -> Dict[str, Any]:
        """
        Load configuration file with optional schema validation.

        Args:
            config_name: Name of config file (without extension)
            schema_name: Name of schema to validate against
            use_cache: Whether to use cached config
            required: Whether a missing file is an error

        Returns:
            Dict containing configuration; empty if an optional file is missing

        Raises:
            ConfigError: The file is unreadable, required but missing, or invalid
        """
        if use_cache and config_name in self._config_cache:
            return self._config_cache[config_name]

        config_path = self.find_config_file(config_name)
        config_data: Optional[Dict[str, Any]] = None
        if config_path is not None:
            if config_path.suffix == ".json":
                config_data = FileUtils.read_json(config_path)
            else:
                config_data = FileUtils.read_yaml(config_path)

        if config_data is None:
            if required:
                raise ConfigError(f"Required config not found: {config_name} in {self.config_dir}")
            config_data = {}

        config_data = self._substitute_environment_variables(config_data)

        if schema_name:
            self.validate_config(config_data, schema_name)

        if use_cache:
            self._config_cache[config_name] = config_data

        return config_data

    def save_config(self,
                    config_name: str,
                    config_data: Dict[str, Any],
                    format: str = "json") -> bool:
        """
        Save configuration to file.

        Args:
            config_name: Name of config file
            config_data: Configuration data to save
            format: File format ('json' or 'yaml')

        Returns:
            bool: True if save succeeded
        """
        if format.lower() == "json":
            success = FileUtils.write_json(self.config_dir / f"{config_name}.json", config_data)
        elif format.lower() in ["yaml", "yml"]:
            success = FileUtils.write_yaml(self.config_dir / f"{config_name}.yaml", config_data)
        else:
            console.print(f"[red]❌ Unsupported config format: {format}[/red]")
            return False

        if success:
            self._config_cache[config_name] = config_data
            console.print(f"[green]✅ Saved config: {config_name} ({format})[/green]")
        return success

    def merge_configs(self,
                      base_config: Dict[str, Any],
                      override_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge two configuration dictionaries recursively.

        Args:
            base_config: Base configuration
            override_config: Configuration to merge in

        Returns:
            Merged configuration
        """
        merged = base_config.copy()

        for key, value in override_config.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self.merge_configs(merged[key], value)
            else:
                merged[key] = value

        return merged

    def register_schema(self, schema: ConfigSchema) -> None:
        self._schemas[schema.name] = schema

    def validate_config(self, config_data: Dict[str, Any], schema_name: str) -> None:
        """
        Validate configuration against schema, filling in defaults.

        Args:
            config_data: Configuration to validate (updated in place with defaults)
            schema_name: Name of schema to validate against

        Raises:
            ConfigError: With every violation listed in ``errors``
        """
        if schema_name not in self._schemas:
            raise ConfigError(f"Schema not found: {schema_name}")

        schema = self._schemas[schema_name]
        validation_errors = []

        for rule in schema.rules:
            present, value = self._lookup(config_data, rule.field_path)

            if not present or (value is None and not rule.nullable):
                if rule.required:
                    validation_errors.append(f"Required field missing: {rule.field_path}")
                elif not present and (rule.default_value is not None or rule.nullable):
                    self._set_nested_value(config_data, rule.field_path, copy.deepcopy(rule.default_value))
                continue

            if value is None:
                continue

            # bool is an int subclass; only accept it where bool is asked for
            if isinstance(value, bool) and rule.field_type is not bool:
                validation_errors.append(
                    f"Field {rule.field_path} must be {_type_name(rule.field_type)}, got bool"
                )
                continue

            if not isinstance(value, rule.field_type):
                validation_errors.append(
                    f"Field {rule.field_path} must be {_type_name(rule.field_type)}, got {type(value).__name__}"
                )
                continue

            if rule.allowed_values and value not in rule.allowed_values:
                validation_errors.append(
                    f"Field {rule.field_path} must be one of {rule.allowed_values}, got {value}"
                )

            if rule.min_value is not None and value < rule.min_value:
                validation_errors.append(
                    f"Field {rule.field_path} must be >= {rule.min_value}, got {value}"
                )

            if rule.max_value is not None and value > rule.max_value:
                validation_errors.append(
                    f"Field {rule.field_path} must be <= {rule.max_value}, got {value}"
                )

        if validation_errors:
            console.print(f"[red]❌ Config validation failed for schema {schema_name}:[/red]")
            for error in validation_errors:
                console.print(f"[red]  • {error}[/red]")
            raise ConfigError(f"Config validation failed for schema {schema_name}", validation_errors)

    def clear_cache(self) -> None:
        """Clear configuration cache."""
        self._config_cache.clear()

    def _lookup(self, data: Dict[str, Any], path: str) -> Tuple[bool, Any]:
        current: Any = data
        for key in path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return False, None
        return True, current

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: Any) -> None:
        """Set nested value using dot notation."""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _substitute_environment_variables(self, data: Any) -> Any:
        """Recursively substitute ${VAR} and $VAR from the environment."""
        if isinstance(data, dict):
            return {k: self._substitute_environment_variables(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self._substitute_environment_variables(item) for item in data]
        elif isinstance(data, str):
            def replace_env_var(match):
                var_name = match.group(1) or match.group(2)
                return os.environ.get(var_name, match.group(0))

            return _ENV_PATTERN.sub(replace_env_var, data)
        return data

    def _initialize_builtin_schemas(self) -> None:
        gwt_schema = ConfigSchema("gwt", "1.0")
        gwt_schema.add_rule(
            field_path="commands.timeout_seconds",
            required=False,
            field_type=(int, float),
            default_value=30,
            min_value=1,
            max_value=600
        ).add_rule(
            field_path="commands.max_buffer_bytes",
            required=False,
            field_type=int,
            default_value=10 * 1024 * 1024,
            min_value=1024
        ).add_rule(
            field_path="retry.max_attempts",
            required=False,
            field_type=int,
            default_value=3,
            min_value=1,
            max_value=10
        ).add_rule(
            field_path="retry.initial_delay_seconds",
            required=False,
            field_type=(int, float),
            default_value=0.1,
            min_value=0
        ).add_rule(
            field_path="instances.grace_period_seconds",
            required=False,
            field_type=(int, float),
            default_value=5,
            min_value=0
        ).add_rule(
            field_path="assistant.command",
            required=False,
            field_type=str,
            default_value="claude"
        ).add_rule(
            field_path="assistant.args",
            required=False,
            field_type=list,
            default_value=["chat"]
        ).add_rule(
            field_path="assistant.process_name",
            required=False,
            field_type=str,
            default_value="claude"
        ).add_rule(
            field_path="sessions.always_continue",
            required=False,
            field_type=bool,
            default_value=True
        ).add_rule(
            field_path="logging.level",
            required=False,
            field_type=str,
            default_value="INFO",
            allowed_values=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        ).add_rule(
            field_path="logging.file",
            required=False,
            field_type=str,
            nullable=True
        ).add_rule(
            field_path="context",
            required=False,
            field_type=dict,
            default_value={}
        )

        self.register_schema(gwt_schema)


def default_config_dir() -> Path:
    """``$CLAUDE_GWT_CONFIG_DIR``, else ``$XDG_CONFIG_HOME/claude-gwt``, else ``~/.config/claude-gwt``."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "claude-gwt"


@dataclass
class GWTConfig:
    """Resolved runtime settings."""
    timeout_seconds: float = 30
    max_buffer_bytes: int = 10 * 1024 * 1024
    retry_max_attempts: int = 3
    retry_initial_delay: float = 0.1
    grace_period_seconds: float = 5
    assistant_command: str = "claude"
    assistant_args: List[str] = field(default_factory=lambda: ["chat"])
    assistant_process_name: str = "claude"
    always_continue: bool = True
    log_level: str = "INFO"
    log_file: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GWTConfig':
        """Build from a validated nested mapping; missing sections keep defaults."""
        defaults = cls()

        def section(name: str) -> Dict[str, Any]:
            value = data.get(name)
            return value if isinstance(value, dict) else {}

        commands = section("commands")
        retry = section("retry")
        instances = section("instances")
        assistant = section("assistant")
        sessions = section("sessions")
        log = section("logging")

        return cls(
            timeout_seconds=commands.get("timeout_seconds", defaults.timeout_seconds),
            max_buffer_bytes=commands.get("max_buffer_bytes", defaults.max_buffer_bytes),
            retry_max_attempts=retry.get("max_attempts", defaults.retry_max_attempts),
            retry_initial_delay=retry.get("initial_delay_seconds", defaults.retry_initial_delay),
            grace_period_seconds=instances.get("grace_period_seconds", defaults.grace_period_seconds),
            assistant_command=assistant.get("command", defaults.assistant_command),
            assistant_args=[str(arg) for arg in assistant.get("args", defaults.assistant_args)],
            assistant_process_name=assistant.get("process_name", defaults.assistant_process_name),
            always_continue=sessions.get("always_continue", defaults.always_continue),
            log_level=log.get("level", defaults.log_level),
            log_file=log.get("file", defaults.log_file),
            context=dict(data.get("context") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commands": {
                "timeout_seconds": self.timeout_seconds,
                "max_buffer_bytes": self.max_buffer_bytes,
            },
            "retry": {
                "max_attempts": self.retry_max_attempts,
                "initial_delay_seconds": self.retry_initial_delay,
            },
            "instances": {"grace_period_seconds": self.grace_period_seconds},
            "assistant": {
                "command": self.assistant_command,
                "args": list(self.assistant_args),
                "process_name": self.assistant_process_name,
            },
            "sessions": {"always_continue": self.always_continue},
            "logging": {"level": self.log_level, "file": self.log_file},
            "context": dict(self.context),
        }


def load_gwt_config(config_dir: Optional[Path] = None,
                    config_name: str = DEFAULT_CONFIG_NAME) -> GWTConfig:
    """
    Load ``config.{json,yaml,yml}`` from the config directory.

    A missing file yields defaults.

    Raises:
        ConfigError: The file is malformed or fails validation
    """
    loader = ConfigLoader(config_dir or default_config_dir())
    data = loader.load_config(config_name, schema_name="gwt", use_cache=False, required=False)
    return GWTConfig.from_dict(data)
