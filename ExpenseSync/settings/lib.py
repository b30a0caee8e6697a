"""Settings library for the sync configuration.

Provides:
    - Schema validation and enforcement for sync.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Application paths for the config, credentials and local cache files.
"""

import json
import logging
import os
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'ExpenseSync'

CONFIG_DIR_ENV_KEY: str = 'EXPENSESYNC_CONFIG_DIR'

SYNC_SCHEMA: Dict[str, Any] = {
    'remote': {
        'type': dict,
        'required': True,
        'item_schema': {
            'project_id': {'type': str, 'required': True},
            'database': {'type': str, 'required': True},
            'collection': {'type': str, 'required': True},
            'timeout': {'type': int, 'required': True},
        }
    },
    'connectivity': {
        'type': dict,
        'required': True,
        'item_schema': {
            'host': {'type': str, 'required': True},
            'port': {'type': int, 'required': True},
            'timeout': {'type': (int, float), 'required': True},
            'interval': {'type': int, 'required': True},
        }
    },
    'cache': {
        'type': dict,
        'required': True,
        'item_schema': {
            'filename': {'type': str, 'required': True},
        }
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one section of the sync configuration against its item schema.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section data.
        item_schema: Dict describing required fields and their types.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing or an unknown field is present.
    """
    logging.debug(f'Validating "{section_name}" section.')
    for field, field_specs in item_schema.items():
        if field_specs['required'] and field not in section:
            msg: str = f'Section "{section_name}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in section:
            continue
        value = section[field]
        # bool is an int subclass, but never a valid port or timeout
        if isinstance(value, bool) or not isinstance(value, field_specs['type']):
            msg = (
                f'Section "{section_name}" field "{field}" must be {field_specs["type"]}, '
                f'got {type(value)}.'
            )
            logging.error(msg)
            raise TypeError(msg)

    unknown: List[str] = [k for k in section if k not in item_schema]
    if unknown:
        msg = f'Section "{section_name}" has unknown fields: {unknown}.'
        logging.error(msg)
        raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    The config root is resolved in order from the ``root`` argument, the
    ``EXPENSESYNC_CONFIG_DIR`` environment variable, and the platform app data
    location reported by Qt.
    """

    def __init__(self, root: Optional[os.PathLike] = None) -> None:
        if root is None and os.environ.get(CONFIG_DIR_ENV_KEY):
            root = os.environ[CONFIG_DIR_ENV_KEY]

        if root is None:
            QtCore.QCoreApplication.setApplicationName(app_name)
            QtCore.QCoreApplication.setOrganizationName('')
            logging.debug(f'Setting application name: {app_name}')

            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            root = pathlib.Path(p) / 'config'
        logging.debug(f'Using config directory: {root}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.sync_template: pathlib.Path = self.template_dir / 'sync.json.template'

        self.config_dir: pathlib.Path = pathlib.Path(root)
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.sync_path: pathlib.Path = self.config_dir / 'sync.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the template exists, create directories and copy the default config.

        Raises:
            FileNotFoundError: If the sync template is missing.
        """
        logging.debug(f'Verifying required templates in {self.template_dir}')
        if not self.sync_template.exists():
            msg: str = f'Missing sync template: {self.sync_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for directory in (self.config_dir, self.auth_dir, self.db_dir):
            if not directory.exists():
                logging.debug(f'Creating directory: {directory}')
                directory.mkdir(parents=True, exist_ok=True)

        if not self.sync_path.exists():
            logging.debug(f'Copying default sync config from template to {self.sync_path}')
            shutil.copy(self.sync_template, self.sync_path)

    def revert_sync_to_template(self) -> None:
        """Restore sync.json from the default template file."""
        logging.debug(f'Reverting sync config to template: {self.sync_template}')
        shutil.copy(self.sync_template, self.sync_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save sync.json sections.
    """

    def __init__(self, root: Optional[os.PathLike] = None) -> None:
        super().__init__(root=root)

        self.sync_data: Dict[str, Any] = {}
        for k in SYNC_SCHEMA.keys():
            self.sync_data[k] = {}

        self.load()

    @property
    def db_path(self) -> pathlib.Path:
        """Path of the local cache database file."""
        filename = self.sync_data.get('cache', {}).get('filename') or 'cache.db'
        return self.db_dir / filename

    def load(self) -> Dict[str, Any]:
        """Load sync.json from disk and validate against schema.

        Returns:
            The loaded sync configuration.

        Raises:
            status.ConfigNotFoundException: If sync.json is missing.
            status.ConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading sync config from "{self.sync_path}"')
        if not self.sync_path.exists():
            raise status.ConfigNotFoundException

        try:
            with self.sync_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate(data)
        except (ValueError, TypeError) as ex:
            raise status.ConfigInvalidException(str(ex)) from ex

        self.sync_data = data
        return self.sync_data

    def validate(self, data: Dict[str, Any] = None) -> None:
        """Validate sync data against SYNC_SCHEMA.

        Args:
            data (dict, optional): Data to validate. Defaults to the loaded data.

        Raises:
            TypeError: If a section or field has the wrong type.
            ValueError: If a required section or field is missing.
        """
        if data is None:
            data = self.sync_data
        if not isinstance(data, dict):
            raise TypeError(f'Sync config must be a dict, got {type(data)}.')

        logging.debug('Validating sync data against schema.')
        for section_name, specs in SYNC_SCHEMA.items():
            if specs.get('required') and section_name not in data:
                raise ValueError(f'Missing required section: {section_name}')
            if section_name not in data:
                continue
            if not isinstance(data[section_name], specs['type']):
                raise TypeError(
                    f'Section "{section_name}" must be {specs["type"]}, got {type(data[section_name])}.'
                )
            _validate_section(section_name, data[section_name], specs['item_schema'])

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a configuration section.

        Raises:
            KeyError: If section_name is not a known section.
        """
        return self.sync_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        The previous section is restored if the new data fails validation.

        Raises:
            ValueError: If section_name is unrecognized or the data is invalid.
            TypeError: If the data has the wrong types.
        """
        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.sync_data.get(section_name, {}).copy()
        self.sync_data[section_name] = new_data
        try:
            self.validate()
            self.save_section(section_name)
        except (ValueError, TypeError) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.sync_data[section_name] = current_section_data
            raise

    def revert_section(self, section_name: str) -> None:
        """Revert a section to the template value and persist it."""
        if section_name not in SYNC_SCHEMA:
            raise ValueError(f'Unknown section_name for revert: "{section_name}"')

        with self.sync_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        self.sync_data[section_name] = template_data[section_name]
        self.save_section(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single section, leaving the other sections on disk untouched."""
        logging.debug(f'Saving section "{section_name}" to {self.sync_path}')
        with self.sync_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data = dict(original_data)
        new_data[section_name] = self.sync_data[section_name]
        self.validate(new_data)

        with self.sync_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)


settings: Optional[SettingsAPI] = None


def get_settings() -> SettingsAPI:
    """Return the application settings, creating them on first use."""
    global settings
    if settings is None:
        settings = SettingsAPI()
    return settings
