"""
File Utilities Module

JSON/YAML/text helpers used by the configuration loader and the context-file
writer. Read helpers return None on a missing file so callers can fall back to
defaults; malformed content is reported through ConfigError.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from rich.console import Console

from ..core.errors import ConfigError

console = Console()
logger = logging.getLogger(__name__)


class FileUtils:
    """
    File operation utilities with error handling.
    """

    @staticmethod
    def read_json(file_path: Path) -> Optional[Dict[str, Any]]:
        """
        Read a JSON mapping.

        Args:
            file_path: Path to JSON file

        Returns:
            Parsed mapping, or None if the file does not exist

        Raises:
            ConfigError: The file is not valid JSON or not a mapping
        """
        if not file_path.exists():
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {file_path}: {e}")
        except OSError as e:
            raise ConfigError(f"Error reading {file_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping in {file_path}, got {type(data).__name__}")
        return data

    @staticmethod
    def read_yaml(file_path: Path) -> Optional[Dict[str, Any]]:
        """
        Read a YAML mapping. An empty document yields an empty dict.

        Raises:
            ConfigError: The file is not valid YAML or not a mapping
        """
        if not file_path.exists():
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {file_path}: {e}")
        except OSError as e:
            raise ConfigError(f"Error reading YAML {file_path}: {e}")

        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping in {file_path}, got {type(data).__name__}")
        return data

    @staticmethod
    def write_json(file_path: Path, data: Dict[str, Any], indent: int = 2) -> bool:
        """Write JSON, creating parent directories. Returns False on I/O failure."""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=indent, ensure_ascii=False)
            return True
        except OSError as e:
            console.print(f"[red]❌ Error writing JSON to {file_path}: {e}[/red]")
            return False

    @staticmethod
    def write_yaml(file_path: Path, data: Dict[str, Any]) -> bool:
        """Write YAML, creating parent directories. Returns False on I/O failure."""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, indent=2)
            return True
        except OSError as e:
            console.print(f"[red]❌ Error writing YAML to {file_path}: {e}[/red]")
            return False

    @staticmethod
    def write_text(file_path: Path, content: str) -> bool:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                f.write(content)
            return True
        except OSError as e:
            logger.warning("Error writing text file", extra={"context": {"path": str(file_path), "error": str(e)}})
            return False
