# tests/test_settings.py
"""
Unit tests for ExpenseSync.settings.lib
(covers the section validator, ConfigPaths, and SettingsAPI).

Run with:
    python -m unittest tests.test_settings
"""

from __future__ import annotations

import json
import os
import unittest
from pathlib import Path
from typing import Any, Dict
from unittest.mock import patch

from ExpenseSync.settings import lib
from ExpenseSync.settings.lib import SYNC_SCHEMA, SettingsAPI, _validate_section
from ExpenseSync.status import status
from tests.base import BaseTestCase


def minimal_sync() -> Dict[str, Any]:
    return {
        "remote": {"project_id": "proj", "database": "(default)", "collection": "users", "timeout": 10},
        "connectivity": {"host": "localhost", "port": 8080, "timeout": 1, "interval": 1000},
        "cache": {"filename": "test.db"},
    }


def write_json(p: Path, data: Dict[str, Any]) -> None:
    with p.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=4, ensure_ascii=False)


class ValidatorTests(unittest.TestCase):
    def test_validate_section_good(self):
        _validate_section("remote", minimal_sync()["remote"], SYNC_SCHEMA["remote"]["item_schema"])

    def test_validate_section_missing_field(self):
        data = minimal_sync()["remote"]
        del data["collection"]
        with self.assertRaises(ValueError):
            _validate_section("remote", data, SYNC_SCHEMA["remote"]["item_schema"])

    def test_validate_section_wrong_type(self):
        data = minimal_sync()["connectivity"]
        data["port"] = "443"
        with self.assertRaises(TypeError):
            _validate_section("connectivity", data, SYNC_SCHEMA["connectivity"]["item_schema"])

    def test_validate_section_rejects_bool(self):
        data = minimal_sync()["remote"]
        data["timeout"] = True
        with self.assertRaises(TypeError):
            _validate_section("remote", data, SYNC_SCHEMA["remote"]["item_schema"])

    def test_validate_section_unknown_field(self):
        data = minimal_sync()["cache"]
        data["extra"] = 1
        with self.assertRaises(ValueError):
            _validate_section("cache", data, SYNC_SCHEMA["cache"]["item_schema"])


class ConfigPathsTests(BaseTestCase):
    def test_template_copied(self):
        self.assertTrue(lib.settings.sync_template.exists())
        self.assertTrue(lib.settings.sync_path.exists())
        self.assertTrue(lib.settings.auth_dir.is_dir())
        self.assertTrue(lib.settings.db_dir.is_dir())

    def test_env_override(self):
        root = Path(self.temp_dir) / "from_env"
        with patch.dict(os.environ, {lib.CONFIG_DIR_ENV_KEY: str(root)}):
            paths = lib.ConfigPaths()
        self.assertEqual(paths.config_dir, root)
        self.assertTrue(paths.sync_path.exists())

    def test_revert_to_template(self):
        write_json(lib.settings.sync_path, minimal_sync())
        lib.settings.revert_sync_to_template()
        with lib.settings.sync_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["remote"]["project_id"], "")


class SettingsAPITests(BaseTestCase):
    def test_defaults_loaded(self):
        self.assertEqual(lib.settings.get_section("remote")["collection"], "users")
        self.assertEqual(lib.settings.db_path, lib.settings.db_dir / "cache.db")

    def test_get_section_is_a_copy(self):
        section = lib.settings.get_section("remote")
        section["collection"] = "changed"
        self.assertEqual(lib.settings.get_section("remote")["collection"], "users")

    def test_get_unknown_section(self):
        with self.assertRaises(KeyError):
            lib.settings.get_section("nope")

    def test_set_section_persists(self):
        lib.settings.set_section("remote", minimal_sync()["remote"])
        reloaded = SettingsAPI(root=self.config_dir)
        self.assertEqual(reloaded.get_section("remote")["project_id"], "proj")

    def test_set_section_rolls_back(self):
        bad = minimal_sync()["remote"]
        bad["timeout"] = "slow"
        with self.assertRaises(TypeError):
            lib.settings.set_section("remote", bad)
        self.assertEqual(lib.settings.get_section("remote")["timeout"], 30)

    def test_set_unknown_section(self):
        with self.assertRaises(ValueError):
            lib.settings.set_section("nope", {})

    def test_revert_section(self):
        lib.settings.set_section("cache", {"filename": "other.db"})
        lib.settings.revert_section("cache")
        self.assertEqual(lib.settings.get_section("cache")["filename"], "cache.db")

    def test_missing_config(self):
        lib.settings.sync_path.unlink()
        with self.assertRaises(status.ConfigNotFoundException):
            lib.settings.load()

    def test_invalid_json(self):
        lib.settings.sync_path.write_text("{broken", encoding="utf-8")
        with self.assertRaises(status.ConfigInvalidException):
            lib.settings.load()

    def test_invalid_section(self):
        data = minimal_sync()
        del data["cache"]
        write_json(lib.settings.sync_path, data)
        with self.assertRaises(status.ConfigInvalidException):
            lib.settings.load()

    def test_get_settings_is_lazy(self):
        lib.settings = None
        with patch.dict(os.environ, {lib.CONFIG_DIR_ENV_KEY: str(self.config_dir)}):
            first = lib.get_settings()
        self.assertIs(first, lib.get_settings())
        self.assertEqual(first.config_dir, self.config_dir)
