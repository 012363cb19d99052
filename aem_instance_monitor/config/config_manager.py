#!/usr/bin/env python3
"""
AEM Instance Monitor - Configuration Management
YAML configuration loading, defaults and validation.
"""

import os
import re
from pathlib import Path
from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass

import yaml

import structlog
logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = Path("~/.aem-instance-monitor/config.yaml")
LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str                    # Configuration path where error occurred
    message: str                 # Error message
    severity: str = "error"      # error, warning
    suggestion: Optional[str] = None  # Suggested fix


class ConfigManager:
    """
    Configuration management for the instance monitor.

    Features:
    - YAML configuration loading with environment variable substitution
    - Environment-specific override files (<env>.yaml next to the main file)
    - Default value injection, so running without any file works
    - Validation with detailed error reporting
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to the configuration file. When omitted the
                default location is used if it exists, otherwise defaults only.
        """
        self.explicit = config_path is not None
        self.config_path = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
        self.config: Dict[str, Any] = {}
        self.validation_errors: List[ConfigValidationError] = []
        self.environment = os.getenv('AEM_MONITOR_ENV', 'development')

    async def load_config(self) -> bool:
        """
        Load configuration from file with validation.

        Returns:
            True if loading successful, False otherwise
        """
        raw_config: Dict[str, Any] = {}

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                logger.error("config_yaml_parse_error", path=str(self.config_path), error=str(e))
                return False
            except OSError as e:
                logger.error("config_read_error", path=str(self.config_path), error=str(e))
                return False

            if not isinstance(raw_config, dict):
                logger.error("config_not_a_mapping", path=str(self.config_path))
                return False
        elif self.explicit:
            logger.error("config_file_not_found", path=str(self.config_path))
            return False
        else:
            logger.debug("config_file_absent_using_defaults", path=str(self.config_path))

        self.config = self._substitute_environment_variables(raw_config)
        self._load_environment_overrides()
        self._apply_defaults()

        if not self._validate_config():
            logger.error("config_validation_failed",
                         errors=[f"{e.path}: {e.message}" for e in self.validation_errors
                                 if e.severity == 'error'])
            return False

        for warning in self.validation_errors:
            logger.warning("config_validation_warning", path=warning.path, message=warning.message)

        logger.debug("config_loaded", sections=list(self.config.keys()))
        return True

    def get_section(self, section: str, default: Any = None) -> Any:
        """
        Get a specific configuration section.

        Args:
            section: Section name (supports dot notation like 'detection.port_timeout_ms')
            default: Default value if section not found
        """
        return self._get_nested_value(self.config, section, default)

    @property
    def data_dir(self) -> Path:
        return Path(self.get_section('global.data_dir')).expanduser()

    def masked_config(self) -> Dict[str, Any]:
        return self._mask_sensitive_values(self.config)

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _substitute_environment_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Substitute environment variables in configuration values.

        Supports ${VAR_NAME} and ${VAR_NAME:default_value} syntax.
        """
        def replace_env_var(match):
            var_expr = match.group(1)
            if ':' in var_expr:
                var_name, default_value = var_expr.split(':', 1)
                return os.getenv(var_name.strip(), default_value.strip())
            env_value = os.getenv(var_expr.strip())
            if env_value is None:
                logger.warning("config_env_var_not_found", variable=var_expr.strip())
                return match.group(0)
            return env_value

        def substitute_value(value):
            if isinstance(value, str):
                return re.sub(r'\$\{([^}]+)\}', replace_env_var, value)
            elif isinstance(value, dict):
                return {k: substitute_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [substitute_value(item) for item in value]
            return value

        return substitute_value(config)

    def _load_environment_overrides(self) -> None:
        env_config_file = self.config_path.parent / f"{self.environment}.yaml"
        if not env_config_file.exists() or env_config_file == self.config_path:
            return

        try:
            with open(env_config_file, 'r') as f:
                env_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("config_env_override_error", env_file=str(env_config_file), error=str(e))
            return

        if isinstance(env_config, dict):
            logger.info("config_env_override_loaded", env_file=str(env_config_file))
            self.config = self._deep_merge(self.config, self._substitute_environment_variables(env_config))

    def _apply_defaults(self) -> None:
        defaults = {
            'global': {
                'log_level': 'INFO',
                'data_dir': '~/.aem-instance-monitor',
            },
            'detection': {
                'port_timeout_ms': 500,
                'http_timeout_ms': 3000,
                'max_concurrency': 8,
                'login_path': '/libs/granite/core/content/login.html',
            },
            'health': {
                'request_timeout_ms': 10000,
                'default_username': 'admin',
                'default_password': 'admin',
            },
            'lifecycle': {
                'kill_grace_period_s': 10,
            },
            'monitoring': {
                'poll_interval': 5,
            },
            'api': {
                'host': '127.0.0.1',
                'port': 8765,
                'debug': False,
            },
        }

        # Config file values take precedence
        self.config = self._deep_merge(defaults, self.config)

    def _validate_config(self) -> bool:
        self.validation_errors.clear()

        self._validate_global_config()
        self._validate_detection_config()
        self._validate_api_config()

        return not any(e.severity == 'error' for e in self.validation_errors)

    def _validate_global_config(self) -> None:
        log_level = str(self.get_section('global.log_level', 'INFO')).upper()
        if log_level not in LOG_LEVELS:
            self.validation_errors.append(ConfigValidationError(
                path='global.log_level',
                message=f'log_level must be one of: {", ".join(LOG_LEVELS)}'
            ))

        poll_interval = self.get_section('monitoring.poll_interval')
        if not self._is_positive_number(poll_interval):
            self.validation_errors.append(ConfigValidationError(
                path='monitoring.poll_interval',
                message='poll_interval must be a positive number of seconds'
            ))
        elif poll_interval < 1:
            self.validation_errors.append(ConfigValidationError(
                path='monitoring.poll_interval',
                message='poll_interval below 1 second keeps the machine busy probing',
                severity='warning',
                suggestion='Set to at least 1 second'
            ))

    def _validate_detection_config(self) -> None:
        for key in ('detection.port_timeout_ms', 'detection.http_timeout_ms',
                    'health.request_timeout_ms'):
            value = self.get_section(key)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                self.validation_errors.append(ConfigValidationError(
                    path=key,
                    message=f'{key.split(".")[-1]} must be a positive integer (milliseconds)'
                ))

        port_timeout = self.get_section('detection.port_timeout_ms')
        http_timeout = self.get_section('detection.http_timeout_ms')
        if isinstance(port_timeout, int) and isinstance(http_timeout, int) and http_timeout < port_timeout:
            self.validation_errors.append(ConfigValidationError(
                path='detection.http_timeout_ms',
                message='http_timeout_ms is shorter than port_timeout_ms',
                severity='warning',
                suggestion='Application boot after the port opens can take seconds'
            ))

        max_concurrency = self.get_section('detection.max_concurrency')
        if not isinstance(max_concurrency, int) or max_concurrency < 1:
            self.validation_errors.append(ConfigValidationError(
                path='detection.max_concurrency',
                message='max_concurrency must be an integer >= 1'
            ))

        grace = self.get_section('lifecycle.kill_grace_period_s')
        if not self._is_positive_number(grace):
            self.validation_errors.append(ConfigValidationError(
                path='lifecycle.kill_grace_period_s',
                message='kill_grace_period_s must be a positive number'
            ))

    def _validate_api_config(self) -> None:
        port = self.get_section('api.port')
        if not isinstance(port, int) or port < 1 or port > 65535:
            self.validation_errors.append(ConfigValidationError(
                path='api.port',
                message='API port must be an integer between 1 and 65535'
            ))

        host = self.get_section('api.host')
        if not isinstance(host, str) or not host:
            self.validation_errors.append(ConfigValidationError(
                path='api.host',
                message='API host must be a non-empty string'
            ))

    @staticmethod
    def _is_positive_number(value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0

    def _get_nested_value(self, data: Dict[str, Any], path: str, default: Any = None) -> Any:
        current = data
        for key in path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _mask_sensitive_values(self, config: Dict[str, Any]) -> Dict[str, Any]:
        sensitive_keys = {'password', 'passwd', 'token', 'secret'}

        def mask_dict(data):
            if isinstance(data, dict):
                result = {}
                for k, v in data.items():
                    if any(sensitive in k.lower() for sensitive in sensitive_keys):
                        result[k] = "***MASKED***" if v else v
                    else:
                        result[k] = mask_dict(v)
                return result
            elif isinstance(data, list):
                return [mask_dict(item) for item in data]
            return data

        return mask_dict(config)
