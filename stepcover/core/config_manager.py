"""Configuration management"""
import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from stepcover.core.exceptions import ConfigError
from stepcover.utils.helpers import deep_get
from stepcover.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_CONFIG_PATH = 'config/stepcover.yaml'
DEFAULT_ENVIRONMENT = 'default'

DEFAULT_CONFIG: Dict[str, Any] = {
    'discovery': {},
    'parser': {
        'strict_validation': True,
        'require_background': False,
        'allowed_keywords': None,
    },
    'report': {
        'format': 'text',
        'include_details': True,
        'fail_under': 0,
    },
    'logging': {
        'level': 'INFO',
    },
}


class ConfigManager:
    """Manages configuration loading and merging"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, environment: str = DEFAULT_ENVIRONMENT,
                 env_file: Optional[str] = None):
        self.config_path = Path(config_path)
        self.environment = environment
        self.env_file = env_file
        self.config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)

    def load_config(self) -> Dict[str, Any]:
        """Load and merge configuration files"""
        self.config = copy.deepcopy(DEFAULT_CONFIG)

        # Load main config
        if self.config_path.exists():
            self.config = self._merge_configs(self.config, self._read_yaml(self.config_path))
        else:
            logger.debug(f"Config file not found, using defaults: {self.config_path}")

        # Load environment specific config
        env_config_path = self.config_path.parent / 'environments' / f'{self.environment}.yaml'
        if env_config_path.exists():
            env_config = self._read_yaml(env_config_path)

            # Overrides replace keys section by section before the deep merge
            if 'overrides' in env_config:
                overrides = env_config.pop('overrides')
                self._apply_overrides(self.config, overrides or {})

            self.config = self._merge_configs(self.config, env_config)
        elif self.environment != DEFAULT_ENVIRONMENT:
            logger.warning(f"Environment config not found: {env_config_path}")

        # Process environment variables
        load_dotenv(self.env_file)
        self.config = self._process_env_vars(self.config)

        logger.debug(f"Configuration loaded for environment: {self.environment}")
        return self.config

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot load configuration {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration {path} must be a mapping")
        return data

    def _merge_configs(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_overrides(self, base: Dict, overrides: Dict) -> None:
        """Apply overrides from environment config to base config"""
        for section, values in overrides.items():
            if isinstance(base.get(section), dict) and isinstance(values, dict):
                base[section] = {**base[section], **values}
            else:
                base[section] = values

    def _process_env_vars(self, config: Any) -> Any:
        """Replace ${VAR} with environment variables"""
        if isinstance(config, dict):
            return {k: self._process_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._process_env_vars(item) for item in config]
        elif isinstance(config, str) and config.startswith('${') and config.endswith('}'):
            var_name = config[2:-1]
            return os.environ.get(var_name, config)
        else:
            return config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)"""
        return deep_get(self.config, key, default)

    def section(self, name: str) -> Dict[str, Any]:
        value = self.config.get(name)
        return value if isinstance(value, dict) else {}
