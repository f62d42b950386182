"""
Configuration loading and management for Directory Import.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)


DEFAULT_IGNORE_ORG_UNIT_PATHS = ('/Sluttet', '/')
DEFAULT_ROOT_ORG_UNIT_NAME = 'Miles'
DEFAULT_COUNTRY_CODE = '+47'

DIRECTORY_SCOPES = [
    'https://www.googleapis.com/auth/admin.directory.orgunit.readonly',
    'https://www.googleapis.com/auth/admin.directory.user.readonly',
]

AUTH_METHODS = ('service_account', 'token')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass(frozen=True)
class ImportSettings:
    """Immutable settings shared by both import phases."""

    ignore_org_unit_paths: FrozenSet[str] = field(
        default_factory=lambda: frozenset(p.casefold() for p in DEFAULT_IGNORE_ORG_UNIT_PATHS)
    )
    root_org_unit_name: str = DEFAULT_ROOT_ORG_UNIT_NAME
    default_country_code: str = DEFAULT_COUNTRY_CODE

    @classmethod
    def create(cls, ignore_org_unit_paths: Iterable[str] = DEFAULT_IGNORE_ORG_UNIT_PATHS,
               root_org_unit_name: str = DEFAULT_ROOT_ORG_UNIT_NAME,
               default_country_code: str = DEFAULT_COUNTRY_CODE) -> 'ImportSettings':
        """Build settings, case-folding the ignored paths for comparison."""
        return cls(
            ignore_org_unit_paths=frozenset(p.casefold() for p in ignore_org_unit_paths),
            root_org_unit_name=root_org_unit_name,
            default_country_code=default_country_code,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ImportSettings':
        import_config = config.get('import', {})
        return cls.create(
            ignore_org_unit_paths=import_config.get('ignore_org_unit_paths', DEFAULT_IGNORE_ORG_UNIT_PATHS),
            root_org_unit_name=import_config.get('root_org_unit_name', DEFAULT_ROOT_ORG_UNIT_NAME),
            default_country_code=import_config.get('default_country_code', DEFAULT_COUNTRY_CODE),
        )

    def is_ignored(self, org_unit_path: Optional[str]) -> bool:
        """Case-insensitive exact match against the ignore set."""
        if org_unit_path is None:
            return False
        return org_unit_path.casefold() in self.ignore_org_unit_paths


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'database.url': 'DATABASE_URL',
        'google.auth.token': 'GOOGLE_ACCESS_TOKEN',
        'google.auth.service_account_file': 'GOOGLE_SERVICE_ACCOUNT_FILE',
        'google.auth.delegated_user': 'GOOGLE_DELEGATED_USER',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        # Database
        database_config = self.config.get('database') or {}
        if not database_config.get('url'):
            errors.append("Missing required database field: url")

        # Google directory
        google_config = self.config.get('google') or {}
        auth = google_config.get('auth') or {}
        method = auth.get('method', 'service_account')
        if method not in AUTH_METHODS:
            errors.append(f"Unsupported google.auth.method '{method}' (expected one of: {', '.join(AUTH_METHODS)})")
        elif method == 'service_account':
            if not auth.get('service_account_file') and not auth.get('service_account_info'):
                errors.append("Service account auth requires google.auth.service_account_file "
                              "or google.auth.service_account_info")
        elif method == 'token' and not auth.get('token'):
            errors.append("Token auth requires google.auth.token")

        page_size = google_config.get('page_size', 500)
        if not isinstance(page_size, int) or isinstance(page_size, bool) or not 1 <= page_size <= 500:
            errors.append(f"google.page_size must be an integer between 1 and 500, got {page_size!r}")

        # Import rules
        import_config = self.config.get('import') or {}
        ignore_paths = import_config.get('ignore_org_unit_paths', list(DEFAULT_IGNORE_ORG_UNIT_PATHS))
        if not isinstance(ignore_paths, list) or not all(isinstance(p, str) for p in ignore_paths):
            errors.append("import.ignore_org_unit_paths must be a list of strings")

        country_code = import_config.get('default_country_code', DEFAULT_COUNTRY_CODE)
        if not isinstance(country_code, str) or not country_code.startswith('+'):
            errors.append(f"import.default_country_code must start with '+', got {country_code!r}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _ensure_section(self, parent: Dict[str, Any], key: str) -> Dict[str, Any]:
        """Return parent[key] as a dict, replacing an empty YAML section."""
        if not isinstance(parent.get(key), dict):
            parent[key] = {}
        return parent[key]

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        google_defaults = {
            'customer': 'my_customer',
            'base_url': 'https://admin.googleapis.com',
            'page_size': 500,
            'timeout': 30,
            'verify_ssl': True,
        }
        google_config = self._ensure_section(self.config, 'google')
        for key, value in google_defaults.items():
            google_config.setdefault(key, value)

        auth_defaults = {
            'method': 'service_account',
            'scopes': list(DIRECTORY_SCOPES),
            'token_url': 'https://oauth2.googleapis.com/token',
        }
        auth_config = self._ensure_section(google_config, 'auth')
        for key, value in auth_defaults.items():
            auth_config.setdefault(key, value)

        database_defaults = {
            'echo': False,
            'create_schema': True,
        }
        database_config = self._ensure_section(self.config, 'database')
        for key, value in database_defaults.items():
            database_config.setdefault(key, value)

        import_defaults = {
            'ignore_org_unit_paths': list(DEFAULT_IGNORE_ORG_UNIT_PATHS),
            'root_org_unit_name': DEFAULT_ROOT_ORG_UNIT_NAME,
            'default_country_code': DEFAULT_COUNTRY_CODE,
        }
        import_config = self._ensure_section(self.config, 'import')
        for key, value in import_defaults.items():
            import_config.setdefault(key, value)

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING',
        }
        logging_config = self._ensure_section(self.config, 'logging')
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
