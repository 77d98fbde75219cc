"""
Configuration Management for the Task Board client.

This module handles client configuration including the service URL, request
timeout, token storage backend and logging, with support for configuration
files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser

from taskboard_shared.exceptions import ConfigurationError, ErrorCode
from taskboard_shared.interfaces import IConfigurationManager

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_DIR = Path.home() / '.taskboard'

TOKEN_BACKENDS = ('auto', 'keyring', 'file')

DEFAULT_CONFIG_TEMPLATE = """# Task Board Client Configuration
# Configuration file: {config_path}

[server]
# Task service URL (required)
url = http://localhost:3000

# Request timeout in seconds
timeout = 30

[auth]
# Where tokens are kept: auto, keyring or file
token_backend = auto

# Keyring service name
service_name = taskboard-client

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = INFO

# Log format: standard, detailed or json
format = standard
"""


class ClientConfiguration(IConfigurationManager):
    """
    Configuration manager for the Task Board client.

    Supports configuration from:
    1. Programmatic overrides (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path, creating it on first use."""
        DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        user_config_path = str(DEFAULT_CONFIG_DIR / 'client.conf')

        if not os.path.exists(user_config_path):
            self._create_default_config(user_config_path)

        return user_config_path

    def _create_default_config(self, config_path: str) -> None:
        """Create a minimal default configuration file."""
        try:
            with open(config_path, 'w') as f:
                f.write(DEFAULT_CONFIG_TEMPLATE.format(config_path=config_path))

            logger.info(f"Created default configuration file: {config_path}")

        except OSError as e:
            logger.warning(f"Failed to create default configuration: {e}")

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.debug(f"Configuration loaded from: {self._config_file}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()
        self._validate()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                ErrorCode.CONFIG_INVALID_VALUE,
                cause=e
            )

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers, booleans and lists
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'TASKBOARD_SERVER_URL': ('server', 'url'),
            'TASKBOARD_TIMEOUT': ('server', 'timeout'),
            'TASKBOARD_TOKEN_BACKEND': ('auth', 'token_backend'),
            'TASKBOARD_TOKEN_FILE': ('auth', 'token_file'),
            'TASKBOARD_LOG_LEVEL': ('logging', 'level'),
            'TASKBOARD_LOG_FORMAT': ('logging', 'format'),
            'TASKBOARD_LOG_FILE': ('logging', 'file'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                if value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                elif value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'url': 'http://localhost:3000',
                'timeout': 30.0,
            },
            'auth': {
                'token_backend': 'auto',
                'token_file': None,
                'service_name': 'taskboard-client',
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'audit_file': None,
                'max_size': 10485760,  # 10MB
                'backup_count': 3
            },
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def _validate(self) -> None:
        """Reject values the client cannot work with."""
        url = self.get_server_url()
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise ConfigurationError(
                f"Server URL must start with http:// or https://: {url}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.url'
            )

        try:
            timeout = float(self.get_config('server.timeout'))
        except (TypeError, ValueError):
            timeout = 0
        if timeout <= 0:
            raise ConfigurationError(
                f"Timeout must be a positive number: {self.get_config('server.timeout')}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.timeout'
            )

        if self.get_log_level() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigurationError(
                f"Unknown log level: {self.get_log_level()}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='logging.level'
            )

        if self.get_log_format() not in ('standard', 'detailed', 'json'):
            raise ConfigurationError(
                f"Unknown log format: {self.get_log_format()}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='logging.format'
            )

        backend = self.get_token_backend()
        if backend not in TOKEN_BACKENDS:
            raise ConfigurationError(
                f"Unknown token backend '{backend}', expected one of {', '.join(TOKEN_BACKENDS)}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='auth.token_backend'
            )

    def get_server_url(self) -> str:
        """Get task service URL."""
        return self._overrides.get('server_url') or self._config_data['server']['url']

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        section_data = self._config_data.get(section, {})
        value = section_data.get(config_key, default)
        return default if value is None else value

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            self._config_data[key] = value
            return

        section, config_key = key.split('.', 1)
        if section not in self._config_data:
            self._config_data[section] = {}
        self._config_data[section][config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key
            value: Override value
        """
        self._overrides[key] = value

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        for section_name, section_data in self._config_data.items():
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, (dict, list, bool)):
                    config.set(section_name, key, json.dumps(value))
                else:
                    config.set(section_name, key, str(value))

        config_path = Path(self._config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_file, 'w') as f:
            config.write(f)

        logger.info(f"Configuration saved to: {self._config_file}")

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data."""
        return {section: dict(values) for section, values in self._config_data.items()}

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    # Convenience methods for common configuration values

    def get_server_timeout(self) -> float:
        """Get request timeout in seconds."""
        return float(self._overrides.get('timeout') or self.get_config('server.timeout', 30.0))

    def get_token_backend(self) -> str:
        """Get token storage backend: auto, keyring or file."""
        return str(self.get_config('auth.token_backend', 'auto')).lower()

    def get_token_file(self) -> Optional[str]:
        """Get path of the encrypted token file, if overridden."""
        return self.get_config('auth.token_file')

    def get_service_name(self) -> str:
        """Get keyring service name."""
        return self.get_config('auth.service_name', 'taskboard-client')

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        """Get logging format."""
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')

    def get_audit_file(self) -> Optional[str]:
        """Get audit log file path."""
        return self.get_config('logging.audit_file')
