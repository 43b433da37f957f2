#!/usr/bin/env python3
"""
Configuration and Logging Tests for claude-gwt
Tests config loading, schema validation, env substitution and logging setup
"""

import json
import logging
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path
sys.path.append(str(Path(__file__).parent))

from claude_gwt import __version__, get_version
from claude_gwt.core.errors import ConfigError
from claude_gwt.utils.config_loader import (
    ConfigLoader,
    ConfigSchema,
    GWTConfig,
    default_config_dir,
    load_gwt_config,
)
from claude_gwt.utils.logging_config import ROOT_LOGGER_NAME, ContextFormatter, setup_logging


class TestConfigLoader(unittest.TestCase):
    """Test ConfigLoader file handling and validation"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.config_dir = Path(self.test_dir)
        self.loader = ConfigLoader(self.config_dir)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_missing_optional_config_is_empty(self):
        self.assertEqual(self.loader.load_config("absent"), {})

    def test_missing_required_config_raises(self):
        with self.assertRaises(ConfigError):
            self.loader.load_config("absent", required=True)

    def test_json_preferred_over_yaml(self):
        (self.config_dir / "config.json").write_text(json.dumps({"source": "json"}))
        (self.config_dir / "config.yaml").write_text("source: yaml\n")
        self.assertEqual(self.loader.load_config("config")["source"], "json")

    def test_yaml_config(self):
        (self.config_dir / "config.yml").write_text("assistant:\n  command: claude-dev\n")
        data = self.loader.load_config("config", schema_name="gwt")
        self.assertEqual(data["assistant"]["command"], "claude-dev")
        # defaults filled in for everything else
        self.assertEqual(data["retry"]["max_attempts"], 3)
        self.assertEqual(data["assistant"]["args"], ["chat"])

    def test_malformed_yaml_raises(self):
        (self.config_dir / "config.yaml").write_text("assistant: [unclosed\n")
        with self.assertRaises(ConfigError):
            self.loader.load_config("config")

    def test_environment_substitution(self):
        """Test ${VAR} and $VAR expansion"""
        (self.config_dir / "config.json").write_text(json.dumps({
            "assistant": {"command": "${CGWT_TEST_CMD}", "process_name": "$CGWT_TEST_CMD"},
            "logging": {"file": "${CGWT_TEST_UNSET_VARIABLE}"},
        }))
        with patch.dict(os.environ, {"CGWT_TEST_CMD": "my-claude"}):
            os.environ.pop("CGWT_TEST_UNSET_VARIABLE", None)
            data = self.loader.load_config("config")
        self.assertEqual(data["assistant"]["command"], "my-claude")
        self.assertEqual(data["assistant"]["process_name"], "my-claude")
        self.assertEqual(data["logging"]["file"], "${CGWT_TEST_UNSET_VARIABLE}")

    def test_validation_collects_every_error(self):
        data = {
            "retry": {"max_attempts": 0},
            "logging": {"level": "LOUD"},
            "sessions": {"always_continue": "yes"},
            "commands": {"timeout_seconds": True},
        }
        with self.assertRaises(ConfigError) as ctx:
            self.loader.validate_config(data, "gwt")
        self.assertEqual(len(ctx.exception.errors), 4)

    def test_defaults_are_not_shared(self):
        first, second = {}, {}
        self.loader.validate_config(first, "gwt")
        self.loader.validate_config(second, "gwt")
        first["assistant"]["args"].append("--verbose")
        self.assertEqual(second["assistant"]["args"], ["chat"])

    def test_custom_schema_required_field(self):
        schema = ConfigSchema("custom", "1.0").add_rule(field_path="name", field_type=str)
        self.loader.register_schema(schema)
        with self.assertRaises(ConfigError):
            self.loader.validate_config({}, "custom")

    def test_unknown_schema(self):
        with self.assertRaises(ConfigError):
            self.loader.validate_config({}, "nope")

    def test_save_and_reload_yaml(self):
        self.assertTrue(self.loader.save_config("saved", {"a": {"b": 1}}, format="yaml"))
        self.loader.clear_cache()
        self.assertEqual(self.loader.load_config("saved"), {"a": {"b": 1}})

    def test_merge_configs(self):
        merged = self.loader.merge_configs({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"b": 5}, "e": 2})
        self.assertEqual(merged, {"a": {"b": 5, "c": 2}, "d": 1, "e": 2})


class TestGWTConfig(unittest.TestCase):
    """Test the resolved GWTConfig"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_missing_file_yields_defaults(self):
        config = load_gwt_config(Path(self.test_dir))
        self.assertEqual(config, GWTConfig())
        self.assertEqual(config.timeout_seconds, 30)
        self.assertEqual(config.max_buffer_bytes, 10 * 1024 * 1024)
        self.assertEqual(config.grace_period_seconds, 5)
        self.assertTrue(config.always_continue)

    def test_values_from_file(self):
        (Path(self.test_dir) / "config.yaml").write_text(
            "instances:\n  grace_period_seconds: 1.5\n"
            "sessions:\n  always_continue: false\n"
            "context:\n  global: Be concise.\n")
        config = load_gwt_config(Path(self.test_dir))
        self.assertEqual(config.grace_period_seconds, 1.5)
        self.assertFalse(config.always_continue)
        self.assertEqual(config.context, {"global": "Be concise."})

    def test_invalid_file_raises(self):
        (Path(self.test_dir) / "config.json").write_text(json.dumps({"retry": {"max_attempts": "many"}}))
        with self.assertRaises(ConfigError):
            load_gwt_config(Path(self.test_dir))

    def test_to_dict_round_trip(self):
        config = GWTConfig(assistant_command="other", assistant_args=["chat", "--x"], log_file="/tmp/x.log")
        self.assertEqual(GWTConfig.from_dict(config.to_dict()), config)

    def test_package_version(self):
        self.assertEqual(get_version(), __version__)

    def test_config_dir_resolution(self):
        with patch.dict(os.environ, {"CLAUDE_GWT_CONFIG_DIR": "/opt/cgwt"}):
            self.assertEqual(default_config_dir(), Path("/opt/cgwt"))
        env = {k: v for k, v in os.environ.items() if k != "CLAUDE_GWT_CONFIG_DIR"}
        env["XDG_CONFIG_HOME"] = "/xdg"
        with patch.dict(os.environ, env, clear=True):
            self.assertEqual(default_config_dir(), Path("/xdg/claude-gwt"))


class TestLoggingSetup(unittest.TestCase):
    """Test logging configuration"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        shutil.rmtree(self.test_dir)

    def test_setup_is_idempotent(self):
        log_file = Path(self.test_dir) / "logs" / "cgwt.log"
        setup_logging("DEBUG", log_file)
        logger = setup_logging("DEBUG", log_file)
        self.assertEqual(len(logger.handlers), 2)
        self.assertEqual(logger.level, logging.DEBUG)

    def test_context_written_to_file(self):
        log_file = Path(self.test_dir) / "cgwt.log"
        setup_logging("INFO", log_file)
        logging.getLogger("claude_gwt.test").info("Session created", extra={"context": {"session": "cgwt-a--b"}})
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        content = log_file.read_text()
        self.assertIn("Session created", content)
        self.assertIn('"session": "cgwt-a--b"', content)

    def test_formatter_without_context(self):
        record = logging.LogRecord("claude_gwt", logging.INFO, __file__, 1, "plain", None, None)
        self.assertEqual(ContextFormatter("%(message)s").format(record), "plain")


if __name__ == '__main__':
    unittest.main()
