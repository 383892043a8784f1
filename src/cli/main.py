"""Command-line interface for running and serving macros.

Two subcommands are provided:

- ``run`` plays one macro file with local bridges, streams its log lines
  and prints the extracted data and the final result.
- ``serve`` starts the TCP scripting interface and the HTTP control API
  around one shared ScriptingInterface.

The module was separated from the top-level cli.py launcher to keep the
entry point simple while providing the CLI functionality here.

Example:
    Run a macro three times with a preset variable::

        iimrunner run demo.iim --loop 1 3 --var !VAR1=hello

    Serve on the default ports::

        iimrunner serve --macros-dir ./macros
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from bridges.factory import close_bridges, create_bridges
from config import ConfigError, RuntimeConfig
from macros.execution import MacroRunner
from macros.results import MacroResult
from scripting.server import MACRO_EXTENSION, ScriptingInterface, ScriptingServer
from webapp.server import start_server

logger = logging.getLogger(__name__)

LOG_POLL_INTERVAL = 0.1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='iimrunner',
        description='Run iMacros-style browser automation macros',
        epilog='Use Ctrl+C to stop execution gracefully'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--macros-dir', dest='macros_dir', help='Folder holding .iim macros')
    parser.add_argument('--native-host', dest='native_host',
                        help='host:port of the browser native messaging relay')
    subparsers = parser.add_subparsers(dest='command', required=True)

    run = subparsers.add_parser('run', help='Play one macro file')
    run.add_argument('file', help='Macro file (e.g., demo.iim); looked up in the macros folder if not found')
    run.add_argument('--loop', nargs=2, type=int, metavar=('START', 'END'), default=None,
                     help='Loop from START to END, setting !LOOP on each pass')
    run.add_argument('--var', action='append', default=[], metavar='NAME=VALUE',
                     help='Preset a variable (repeatable)')

    serve = subparsers.add_parser('serve', help='Start the scripting interface and HTTP API')
    serve.add_argument('--host', help='Interface to bind (default 127.0.0.1)')
    serve.add_argument('--port', type=int, help='Scripting interface port (default 4951)')
    serve.add_argument('--http-port', dest='http_port', type=int, help='HTTP API port (default 8080)')
    return parser


def parse_variables(pairs: List[str]) -> Dict[str, str]:
    """Turn ``NAME=VALUE`` strings into a dict.

    Raises:
        ValueError: If an entry has no ``=`` or an empty name.
    """
    variables: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition('=')
        if not sep or not name.strip():
            raise ValueError(f'Variable must be NAME=VALUE, got {pair!r}')
        variables[name.strip()] = value
    return variables


def resolve_macro_file(name: str, macros_dir: str) -> Path:
    """Find a macro file as given, or inside the macros folder."""
    path = Path(name)
    if path.is_file():
        return path
    candidate = Path(macros_dir) / name
    if not candidate.suffix:
        candidate = candidate.with_name(candidate.name + MACRO_EXTENSION)
    return candidate


async def _stream_logs(runner: MacroRunner) -> None:
    logs = runner.logs()
    while runner.is_running() or not logs.empty():
        try:
            msg = await asyncio.wait_for(logs.get(), LOG_POLL_INTERVAL)
        except asyncio.TimeoutError:
            continue
        print(f'[LOG] {msg}')


def _print_result(result: Optional[MacroResult]) -> None:
    if result is None:
        print('✗ Macro cancelled')
        return
    for i, value in enumerate(result.extract_data, 1):
        print(f'EXTRACT {i}: {value}')
    if result.success:
        print(f'✓ Macro completed in {result.runtime:.2f}s')
    else:
        where = f' (line {result.error_line})' if result.error_line else ''
        print(f'✗ Macro failed{where}: {result.error_code.name} ({int(result.error_code)}) '
              f'{result.error_message}')


async def run_command(args: argparse.Namespace, config: RuntimeConfig) -> int:
    """Play one macro file; returns the process exit status."""
    try:
        variables = parse_variables(args.var)
    except ValueError as e:
        print(f'ERROR: {e}')
        return 2

    path = resolve_macro_file(args.file, config.macros_dir)
    try:
        source = path.read_text(encoding='utf-8')
    except FileNotFoundError:
        print(f'ERROR: Macro file not found: {path}')
        return 1
    except OSError as e:
        print(f"ERROR: Failed to load macro '{args.file}': {e}")
        return 1

    loop_start, loop_end = args.loop if args.loop else (1, 1)
    bridges = await create_bridges(config)
    runner = MacroRunner(bridges)
    runner.logs()
    result: Optional[MacroResult] = None
    try:
        print(f'Loaded macro: {path}')
        await runner.start(
            source,
            loop_start=loop_start,
            loop_end=loop_end,
            variables={**config.default_variables(), **variables},
        )
        try:
            await _stream_logs(runner)
            result = await runner.wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            print('\n\n⏹ Stopping...')
            result = await runner.stop()
    except ValueError as e:
        print(f'ERROR: {e}')
        return 2
    finally:
        await close_bridges(bridges)

    _print_result(result)
    return 0 if result is not None and result.success else 1


async def serve_command(args: argparse.Namespace, config: RuntimeConfig) -> int:
    """Run the scripting server and the HTTP API until interrupted."""
    bridges = await create_bridges(config)
    runner = MacroRunner(bridges)
    interface = ScriptingInterface(runner, config.macros_dir, defaults=config.default_variables())
    server = ScriptingServer(interface, config.host, config.scripting_port)
    http_runner = None
    try:
        await server.start()
        http_runner = await start_server(interface, config.host, config.http_port)
        print(f'📡 Scripting interface on {config.host}:{server.port}')
        print(f'🌐 HTTP API on http://{config.host}:{config.http_port}')
        print(f'📁 Macros: {interface.macros_dir}')
        await server.serve_forever()
    except OSError as e:
        print(f'ERROR: Could not start server: {e}')
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        print('\n🛑 Shutting down server...')
    finally:
        await runner.stop()
        if http_runner is not None:
            await http_runner.cleanup()
        await server.close()
        await close_bridges(bridges)
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Argument list; defaults to sys.argv[1:].

    Returns:
        Process exit status: 0 on success, 1 on macro failure, 2 on usage
        or configuration errors.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = RuntimeConfig.from_env().merge_args(args)
    except ConfigError as e:
        print(f'ERROR: {e}')
        return 2

    logging.basicConfig(
        level=config.level,
        format='[%(levelname)s] %(name)s: %(message)s'
    )

    if args.command == 'run':
        return await run_command(args, config)
    return await serve_command(args, config)


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
