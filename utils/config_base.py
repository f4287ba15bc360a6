#!/usr/bin/env python3
"""Schema-driven service settings.

Settings are declared once as a ``SCHEMA`` of ``ConfigSchema`` entries and
read from environment variables, optionally seeded from a ``.env`` file.
Values given explicitly (command-line options) win over the environment.

Key Features:
    - Type conversion from environment strings, with strict booleans
    - Numeric ranges clamped with a warning, choices enforced
    - Export to JSON/YAML for ``validate --show-settings``

Configuration objects are read-only after initialization.
"""

import os
import json
import logging
from typing import Any, Dict, List, Optional, Union, Type
from abc import ABC

import yaml
from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', '1', 'yes', 'on')
FALSE_VALUES = ('false', '0', 'no', 'off', '')


class ConfigValidationError(Exception):
    """Raised when a setting is missing, malformed or out of its choices."""
    pass


class ConfigSchema:
    """Declaration of one setting.

    Attributes:
        type: str, int, float or bool
        required: Whether the environment must provide the value
        default: Value used when the environment does not set it
        min: Lower clamp for numbers
        max: Upper clamp for numbers
        choices: Allowed values
        description: Shown in exports
    """

    def __init__(self,
                 type: Type,
                 required: bool = False,
                 default: Any = None,
                 min: Optional[Union[int, float]] = None,
                 max: Optional[Union[int, float]] = None,
                 choices: Optional[List[Any]] = None,
                 description: str = ""):
        self.type = type
        self.required = required
        self.default = default
        self.min = min
        self.max = max
        self.choices = choices
        self.description = description

    def convert(self, env_key: str, raw: str) -> Any:
        """Turn an environment string into a value of ``self.type``.

        Raises:
            ConfigValidationError: If the string does not parse
        """
        if self.type == bool:
            lowered = raw.strip().lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
            raise ConfigValidationError(f"{env_key} value '{raw}' is not a boolean")
        try:
            return self.type(raw)
        except ValueError as e:
            raise ConfigValidationError(
                f"Cannot convert '{env_key}' value '{raw}' to {self.type.__name__}: {e}"
            ) from None


class ConfigBase(ABC):
    """Base class for service settings.

    Subclasses define ``SCHEMA`` and may override ``validate()`` for checks
    spanning several values. Each schema key becomes an attribute.

    Example:
        class PumpServiceConfig(ConfigBase):
            SCHEMA = {
                'state_file': ConfigSchema(str, default='state.json'),
                'tick_interval': ConfigSchema(float, default=1.0, min=0.05, max=60.0)
            }

        config = PumpServiceConfig(overrides={'state_file': '/var/lib/water/state.json'})
    """

    SCHEMA: Dict[str, ConfigSchema] = {}

    def __init__(self, env_prefix: str = "", overrides: Optional[Dict[str, Any]] = None,
                 env_file: Optional[str] = None):
        """Read every schema key from overrides or the environment.

        Args:
            env_prefix: Prefix for environment variable names (e.g. "WATER_")
            overrides: Values that win over the environment, keyed by schema
                key; None values are ignored
            env_file: ``.env`` file to load first; by default the nearest one
                above the working directory. Existing variables are not replaced.

        Raises:
            ConfigValidationError: If a value is missing, malformed or fails validate()
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))

        self.env_prefix = env_prefix
        self._values: Dict[str, Any] = {}
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        unknown = set(overrides) - set(self.SCHEMA)
        if unknown:
            raise ConfigValidationError(f"Unknown configuration keys: {sorted(unknown)}")

        for key, schema in self.SCHEMA.items():
            env_key = f"{env_prefix}{key.upper()}"
            if key in overrides:
                value = self._check_value(env_key, overrides[key], schema)
            else:
                value = self._load_value(env_key, schema)
            self._values[key] = value
            setattr(self, key, value)

        self.validate()

    def _load_value(self, env_key: str, schema: ConfigSchema) -> Any:
        raw_value = os.getenv(env_key)

        if raw_value is None:
            if schema.required:
                raise ConfigValidationError(
                    f"Required configuration '{env_key}' not provided"
                )
            return schema.default

        return self._check_value(env_key, schema.convert(env_key, raw_value), schema)

    def _check_value(self, env_key: str, value: Any, schema: ConfigSchema) -> Any:
        """Clamp numbers to their range and enforce choices."""
        if schema.min is not None and value < schema.min:
            logger.warning(f"{env_key} value {value} below minimum {schema.min}, using minimum")
            value = schema.min
        if schema.max is not None and value > schema.max:
            logger.warning(f"{env_key} value {value} above maximum {schema.max}, using maximum")
            value = schema.max

        if schema.choices is not None and value not in schema.choices:
            raise ConfigValidationError(
                f"{env_key} value '{value}' not in allowed choices: {schema.choices}"
            )
        return value

    def validate(self):
        """Check relations between values; called at the end of __init__.

        Raises:
            ConfigValidationError: If validation fails
        """
        pass

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def export(self, format: str = 'json', include_defaults: bool = True) -> str:
        """Render the settings as JSON or YAML.

        Args:
            format: 'json' or 'yaml'
            include_defaults: Also list values equal to their default
        """
        export_data = {
            'service': self.__class__.__name__,
            'values': {}
        }

        for key, value in self.as_dict().items():
            schema = self.SCHEMA[key]
            if include_defaults or value != schema.default:
                export_data['values'][key] = {
                    'value': value,
                    'type': schema.type.__name__,
                    'env': f"{self.env_prefix}{key.upper()}",
                    'description': schema.description
                }

        if format == 'yaml':
            return yaml.dump(export_data, default_flow_style=False, sort_keys=False)
        return json.dumps(export_data, indent=2)
