"""Built-in command handlers grouped by concern.

Each module exposes a ``*_HANDLERS`` mapping. The register_* helpers let
callers install a partial set (navigation only, for example); registering
the same command twice simply replaces the earlier handler.

Example:
    registry = CommandRegistry()
    register_all_handlers(registry)
    registry.register('CLICK', my_click)   # override one command
"""
from __future__ import annotations

from ..registry import CommandRegistry
from .extraction import EXTRACTION_HANDLERS
from .files import FILE_HANDLERS
from .flow import FLOW_HANDLERS
from .interaction import INTERACTION_HANDLERS
from .navigation import NAVIGATION_HANDLERS
from .system import SYSTEM_HANDLERS


def register_flow_handlers(registry: CommandRegistry) -> None:
    registry.register_many(FLOW_HANDLERS)


def register_navigation_handlers(registry: CommandRegistry) -> None:
    registry.register_many(NAVIGATION_HANDLERS)


def register_interaction_handlers(registry: CommandRegistry) -> None:
    registry.register_many(INTERACTION_HANDLERS)


def register_extraction_handlers(registry: CommandRegistry) -> None:
    registry.register_many(EXTRACTION_HANDLERS)


def register_file_handlers(registry: CommandRegistry) -> None:
    registry.register_many(FILE_HANDLERS)


def register_system_handlers(registry: CommandRegistry) -> None:
    registry.register_many(SYSTEM_HANDLERS)


def register_all_handlers(registry: CommandRegistry) -> CommandRegistry:
    """Install every built-in handler and return the registry."""
    register_flow_handlers(registry)
    register_navigation_handlers(registry)
    register_interaction_handlers(registry)
    register_extraction_handlers(registry)
    register_file_handlers(registry)
    register_system_handlers(registry)
    return registry


__all__ = [
    'register_all_handlers',
    'register_flow_handlers',
    'register_navigation_handlers',
    'register_interaction_handlers',
    'register_extraction_handlers',
    'register_file_handlers',
    'register_system_handlers',
]
