"""Runtime configuration for the macro runner.

Settings come from three layers, later ones winning: dataclass defaults,
``IIM_*`` environment variables (RuntimeConfig.from_env) and command line
options (RuntimeConfig.merge_args).

Example:
    config = RuntimeConfig.from_env().merge_args(args)
    variables = VariableStore()
    config.apply_defaults(variables)
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DEFAULT_SCRIPTING_PORT = 4951
DEFAULT_HTTP_PORT = 8080


class ConfigError(ValueError):
    """Raised when a configuration value cannot be parsed."""


@dataclass
class RuntimeConfig:
    macros_dir: str = './macros'
    host: str = '127.0.0.1'
    scripting_port: int = DEFAULT_SCRIPTING_PORT
    http_port: int = DEFAULT_HTTP_PORT
    default_timeout: float = 60.0
    timeout_step: float = 0.2
    log_level: str = 'INFO'
    native_host: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'RuntimeConfig':
        """Build a config from ``IIM_*`` environment variables.

        Args:
            environ: Mapping to read instead of os.environ.

        Raises:
            ConfigError: If a numeric variable does not hold a valid number.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if env.get('IIM_MACROS_DIR'):
            config.macros_dir = env['IIM_MACROS_DIR']
        if env.get('IIM_HOST'):
            config.host = env['IIM_HOST']
        if env.get('IIM_SCRIPTING_PORT'):
            config.scripting_port = _port(env['IIM_SCRIPTING_PORT'], 'IIM_SCRIPTING_PORT')
        if env.get('IIM_HTTP_PORT'):
            config.http_port = _port(env['IIM_HTTP_PORT'], 'IIM_HTTP_PORT')
        if env.get('IIM_TIMEOUT'):
            config.default_timeout = _seconds(env['IIM_TIMEOUT'], 'IIM_TIMEOUT')
        if env.get('IIM_TIMEOUT_STEP'):
            config.timeout_step = _seconds(env['IIM_TIMEOUT_STEP'], 'IIM_TIMEOUT_STEP')
        if env.get('IIM_LOG_LEVEL'):
            config.log_level = env['IIM_LOG_LEVEL'].upper()
        if env.get('IIM_NATIVE_HOST'):
            config.native_host = env['IIM_NATIVE_HOST']
        return config

    def merge_args(self, args: argparse.Namespace) -> 'RuntimeConfig':
        """Return a copy with every non-None matching CLI option applied."""
        overrides = {}
        for field in dataclasses.fields(self):
            value = getattr(args, field.name, None)
            if value is not None:
                overrides[field.name] = value
        if getattr(args, 'port', None) is not None:
            overrides['scripting_port'] = args.port
        if getattr(args, 'verbose', False):
            overrides['log_level'] = 'DEBUG'
        return dataclasses.replace(self, **overrides)

    def default_variables(self) -> Dict[str, Any]:
        """Built-in variables every run starts with."""
        return {
            '!TIMEOUT': self.default_timeout,
            '!TIMEOUT_STEP': self.timeout_step,
            '!FOLDER_MACROS': os.path.abspath(self.macros_dir),
        }

    def apply_defaults(self, variables) -> None:
        """Seed a VariableStore with the configured timeouts and macros folder."""
        for name, value in self.default_variables().items():
            variables.set(name, value)

    @property
    def level(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)


def _port(raw: str, name: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        raise ConfigError(f'{name} must be an integer, got {raw!r}') from None
    if not 0 < port < 65536:
        raise ConfigError(f'{name} must be between 1 and 65535, got {port}')
    return port


def _seconds(raw: str, name: str) -> float:
    try:
        seconds = float(raw)
    except ValueError:
        raise ConfigError(f'{name} must be a number, got {raw!r}') from None
    if seconds < 0 or seconds != seconds:
        raise ConfigError(f'{name} must be non-negative, got {raw!r}')
    return seconds
