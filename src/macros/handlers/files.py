"""File commands: FILEDELETE, SAVEAS and PRINT, plus loading the CSV
datasource named by ``!DATASOURCE``.

File bridge failures come back as text; map_file_error() turns that text
into FILE_NOT_FOUND, FILE_ACCESS_DENIED or FILE_ERROR.
"""
from __future__ import annotations

import csv
import io
import posixpath
from typing import Dict, List

from bridges.base import BridgeResponse, call_bridge, make_message

from ..registry import ExecutionContext, Handler
from ..results import CommandResult, ErrorCode, map_file_error
from ..variables import stringify

DEFAULT_EXTRACT_FILE = 'extract.csv'


def _file_bridge(ctx: ExecutionContext):
    return ctx.bridges.files if ctx.bridges is not None else None


def extract_csv_row(values: List[str]) -> str:
    """Format extracted values as one quoted CSV line."""
    buffer = io.StringIO()
    csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n').writerow(values)
    return buffer.getvalue()


async def filedelete_handler(ctx: ExecutionContext) -> CommandResult:
    """FILEDELETE NAME=<path>"""
    name = ctx.get_param('NAME')
    if name is None:
        return CommandResult.fail(ErrorCode.MISSING_PARAMETER, 'FILEDELETE command requires NAME parameter')
    path = ctx.expand(name)
    if not path:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, 'FILEDELETE NAME must not be empty')

    response = await call_bridge(_file_bridge(ctx), make_message('fileDelete', path=path))
    if not response.success:
        return CommandResult.fail(map_file_error(response.error), response.error or f'Failed to delete {path}')
    ctx.log('info', f'Deleted file {path}')
    return CommandResult.ok()


async def saveas_handler(ctx: ExecutionContext) -> CommandResult:
    """SAVEAS TYPE=EXTRACT FILE=<name> [FOLDER=<folder>]

    Appends the extracted values as one CSV line and clears !EXTRACT.
    ``FILE=*`` writes to extract.csv.
    """
    kind = ctx.get_required_param('TYPE')
    file_name = ctx.get_required_param('FILE')
    if ctx.expand(kind).upper() != 'EXTRACT':
        return CommandResult.fail(
            ErrorCode.UNSUPPORTED_COMMAND, f'SAVEAS TYPE={kind} is not supported, use TYPE=EXTRACT'
        )

    file_name = ctx.expand(file_name)
    if file_name in ('', '*'):
        file_name = DEFAULT_EXTRACT_FILE
    elif '.' not in posixpath.basename(file_name):
        file_name += '.csv'
    folder = ctx.get_param('FOLDER')
    if folder and ctx.expand(folder) not in ('', '*'):
        file_name = posixpath.join(ctx.expand(folder), file_name)

    content = extract_csv_row(ctx.variables.extract_values())
    response = await call_bridge(
        _file_bridge(ctx), make_message('fileWrite', path=file_name, content=content, append=True)
    )
    if not response.success:
        return CommandResult.fail(map_file_error(response.error), response.error or f'Failed to write {file_name}')
    ctx.variables.clear_extract()
    ctx.log('info', f'Saved extract to {file_name}')
    return CommandResult.ok(file_name)


async def load_datasource(ctx: ExecutionContext, name: str) -> CommandResult:
    """Read a CSV file through the file bridge and make it the datasource.

    Relative names are resolved against ``!FOLDER_DATASOURCE`` when it is
    set. Blank lines are skipped.
    """
    path = name.strip()
    if not path:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, '!DATASOURCE needs a file name')
    folder = stringify(ctx.get_variable('!FOLDER_DATASOURCE'))
    if folder and not posixpath.isabs(path):
        path = posixpath.join(folder, path)

    response = await call_bridge(_file_bridge(ctx), make_message('fileRead', path=path))
    if not response.success:
        return CommandResult.fail(map_file_error(response.error), response.error or f'Failed to read {path}')
    content = str((response.data or {}).get('content', ''))
    try:
        rows = [row for row in csv.reader(io.StringIO(content)) if any(cell.strip() for cell in row)]
    except csv.Error as e:
        return CommandResult.fail(ErrorCode.FILE_ERROR, f'Cannot parse datasource {path}: {e}')
    if not rows:
        return CommandResult.fail(ErrorCode.FILE_ERROR, f'Datasource {path} is empty')

    ctx.variables.load_datasource(path, rows)
    ctx.log('info', f'Loaded datasource {path}: {len(rows)} lines')
    return CommandResult.ok()


async def print_handler(ctx: ExecutionContext) -> CommandResult:
    printer = ctx.bridges.printer if ctx.bridges is not None else None
    if printer is None:
        ctx.log('warn', 'PRINT: no print service configured, skipping')
        return CommandResult.ok()
    try:
        response = await printer.print({})
    except Exception as e:
        response = BridgeResponse.fail(str(e))
    if not response.success:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, response.error or 'Print failed')
    return CommandResult.ok()


FILE_HANDLERS: Dict[str, Handler] = {
    'FILEDELETE': filedelete_handler,
    'SAVEAS': saveas_handler,
    'PRINT': print_handler,
}
