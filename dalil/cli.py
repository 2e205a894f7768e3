"""`dalil` command line.

    dalil init --data-dir <path>          Write config.json and create the data layout
    dalil config show                     Print the effective configuration
    dalil run [--mode managed|attach]     Start the controller (long-running)
    dalil status | stop                   Query or stop the live controller
    dalil fields list|show|highlight      Scan and inspect fields
    dalil page                            Show the active page url/title
    dalil apply <fieldId> --text <text|@->
    dalil revert <fieldId>
    dalil history list [--limit N]

Every command except init/config/run talks to the controller through
ControllerClient. Exit codes: 0 ok, 1 unexpected, 2 usage, 3 environment or
runner unreachable, 4 field not found/gone, 5 insertion blocked, 6 no undo.
"""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import json
import logging
import re
import sys
import time
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

from dalil import __version__
from dalil.boundary import ErrorBoundary
from dalil.client import ControllerClient
from dalil.controller import Controller
from dalil.errors import DalilError, UsageError
from dalil.paths import DataPaths, config_path, resolve_data_dir
from dalil.repositories.connection import ConnectionStore
from dalil.repositories.history import HistoryRepository
from dalil.schemas.config import DalilConfig, load_config, save_config
from dalil.schemas.fields import FieldInfo
from dalil.schemas.history import AppliedField, HistoryEntry, SiteInfo
from dalil.schemas.protocol import PageInfo

__all__ = [
    'build_parser',
    'infer_site',
    'main',
    'redact_value',
]

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
SAFETY_NOTICE = 'Dalil fills text only. You submit manually.'
STOP_WAIT_SECONDS = 10.0

EMAIL_PATTERN = re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}')
PHONE_PATTERN = re.compile(r'\+?\d[\d\s().-]{6,}\d')


boundary = ErrorBoundary(exit_code=1)


@boundary.handler(DalilError)
def _handle_domain_error(exc: DalilError) -> int:
    print(f'error: {exc}', file=sys.stderr)
    return exc.exit_code


@boundary
def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        raise UsageError('No command given.')

    level = logging.DEBUG if args.verbose else (logging.INFO if args.command == 'run' else logging.WARNING)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)

    args.handler(args)


def build_parser() -> argparse.ArgumentParser:
    # SUPPRESS keeps a subcommand from resetting options given before it
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--data-dir', default=argparse.SUPPRESS, help='Data directory (default: $DALIL_DATA_DIR, then config)'
    )
    common.add_argument(
        '--verbose', '-v', action='store_true', default=argparse.SUPPRESS, help='Debug logging on stderr'
    )

    parser = argparse.ArgumentParser(
        prog='dalil',
        description='Fill web form fields with reviewed text. Never submits.',
        parents=[common],
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.set_defaults(command=None, data_dir=None, verbose=False)
    commands = parser.add_subparsers(dest='command')

    init = commands.add_parser('init', parents=[common], help='Write config and create the data directory')
    init.add_argument('--port', type=int, default=None, help='Runner port to store in config')
    init.set_defaults(handler=cmd_init)

    config = commands.add_parser('config', help='Configuration').add_subparsers(dest='config_command', required=True)
    config.add_parser('show', parents=[common], help='Print the effective config').set_defaults(handler=cmd_config_show)

    run = commands.add_parser('run', parents=[common], help='Start the runner (blocks until stopped)')
    run.add_argument('--mode', choices=['managed', 'attach'], default='managed')
    run.add_argument('--cdp', default=None, help='Remote debugging URL for attach mode, e.g. http://127.0.0.1:9222')
    run.add_argument('--port', type=int, default=None, help='Listener port (default: config runnerPort)')
    run.set_defaults(handler=cmd_run)

    commands.add_parser('status', parents=[common], help='Show the live runner').set_defaults(handler=cmd_status)
    commands.add_parser('stop', parents=[common], help='Stop the live runner').set_defaults(handler=cmd_stop)

    fields = commands.add_parser('fields', help='Scan and inspect fields').add_subparsers(
        dest='fields_command', required=True
    )
    fields_list = fields.add_parser('list', parents=[common], help='Scan the active page and list its fields')
    fields_list.add_argument('--format', choices=['table', 'json'], default='table')
    fields_list.add_argument('--no-scan', action='store_true', help='List the last scan without rescanning')
    fields_list.set_defaults(handler=cmd_fields_list)
    fields_show = fields.add_parser('show', parents=[common], help='Show one field and its (redacted) value')
    fields_show.add_argument('field_id')
    fields_show.set_defaults(handler=cmd_fields_show)
    fields_highlight = fields.add_parser('highlight', parents=[common], help='Outline a field in the browser')
    fields_highlight.add_argument('field_id')
    fields_highlight.set_defaults(handler=cmd_fields_highlight)

    commands.add_parser('page', parents=[common], help='Show the active page').set_defaults(handler=cmd_page)

    apply = commands.add_parser('apply', parents=[common], help='Insert text into a field')
    apply.add_argument('field_id')
    apply.add_argument('--text', required=True, help="Text to insert, or '@-' to read it from stdin")
    apply.set_defaults(handler=cmd_apply)

    revert = commands.add_parser('revert', parents=[common], help='Restore the value before the last apply')
    revert.add_argument('field_id')
    revert.set_defaults(handler=cmd_revert)

    history = commands.add_parser('history', help='Applied-text history').add_subparsers(
        dest='history_command', required=True
    )
    history_list = history.add_parser('list', parents=[common], help='Most recent entries first')
    history_list.add_argument('--limit', type=int, default=20)
    history_list.add_argument('--format', choices=['table', 'json'], default='table')
    history_list.set_defaults(handler=cmd_history_list)

    return parser


# -- Commands --


def cmd_init(args: argparse.Namespace) -> None:
    if not args.data_dir:
        raise UsageError('`dalil init` requires --data-dir <path>.')
    path = config_path()
    current = load_config(path)
    data_dir = resolve_data_dir(args.data_dir, None)
    updates: dict[str, Any] = {'data_dir': str(data_dir)}
    if args.port is not None:
        updates['runner_port'] = _validated_port(args.port)
    config = current.model_copy(update=updates)
    save_config(path, config)
    DataPaths(data_dir).ensure()
    print(f'Config written to {path}')
    print(f'Data directory: {data_dir}')


def cmd_config_show(args: argparse.Namespace) -> None:
    config = load_config(config_path())
    effective = config.to_json_dict()
    try:
        effective['dataDir'] = str(resolve_data_dir(args.data_dir, config.data_dir))
    except DalilError:
        effective['dataDir'] = None
    print(json.dumps(effective, indent=2, ensure_ascii=False))


def cmd_run(args: argparse.Namespace) -> None:
    config, paths = _load_environment(args)
    paths.ensure()
    port = _validated_port(args.port) if args.port is not None else None
    controller = Controller(paths, config, mode=args.mode, cdp_url=args.cdp, port=port)
    print(SAFETY_NOTICE, file=sys.stderr)
    asyncio.run(controller.run())


def cmd_status(args: argparse.Namespace) -> None:
    client, store = _client(args)
    health = client.health()
    descriptor = store.load_live()
    port = descriptor.port if descriptor is not None else '?'
    print(f'Runner active: mode={health.get("mode")} port={port} startedAt={health.get("startedAt")}')


def cmd_stop(args: argparse.Namespace) -> None:
    client, store = _client(args)
    client.shutdown()
    deadline = time.monotonic() + STOP_WAIT_SECONDS
    while store.load_live() is not None:
        if time.monotonic() > deadline:
            logger.warning('Runner acknowledged shutdown but is still publishing its descriptor')
            break
        time.sleep(0.1)
    print('Runner stopped.')


def cmd_fields_list(args: argparse.Namespace) -> None:
    client, _ = _client(args)
    if args.no_scan:
        fields = client.fields()
        excluded_note = ''
    else:
        result = client.scan()
        fields = list(result.fields)
        excluded = result.excluded
        excluded_note = (
            f'Not scanned: {excluded.content_editable} contenteditable region(s), {excluded.frames} frame(s).'
            if excluded.content_editable or excluded.frames
            else ''
        )

    if args.format == 'json':
        print(json.dumps([f.to_json_dict() for f in fields], indent=2, ensure_ascii=False))
        return

    if not fields:
        print('No text fields found on the active page.')
    else:
        rows = [_field_row(f) for f in fields]
        print(format_table(['FIELD ID', 'KIND', 'LABEL', 'MAX', 'LANGUAGE'], rows))
    if excluded_note:
        print(excluded_note)


def cmd_fields_show(args: argparse.Namespace) -> None:
    client, _ = _client(args)
    field = client.get_field(args.field_id)
    value = client.read_value(args.field_id)
    payload = field.to_json_dict()
    payload['value'] = redact_value(value)
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_fields_highlight(args: argparse.Namespace) -> None:
    client, _ = _client(args)
    client.highlight(args.field_id)
    print(f'Highlighted {args.field_id}.')


def cmd_page(args: argparse.Namespace) -> None:
    client, _ = _client(args)
    page = client.page_info()
    print(f'{"Title":<8}{page.title or ""}')
    print(f'{"URL":<8}{page.url or ""}')


def cmd_apply(args: argparse.Namespace) -> None:
    client, _ = _client(args)
    if args.text == '@-':
        text = sys.stdin.read().strip()
        if not text:
            raise UsageError('No stdin text provided for `--text @-`.')
    else:
        text = args.text

    field = client.get_field(args.field_id)
    channel = client.apply(args.field_id, text)
    print(f'Applied to "{field.label}" via {channel}. Review it in the browser, then submit manually.')

    try:
        page = client.page_info()
    except DalilError as e:
        logger.warning(f'Could not read page info for the history record: {e}')
        page = PageInfo()
    entry = HistoryEntry(
        id=str(uuid.uuid4()),
        created_at=datetime.now(UTC),
        site=infer_site(page.url),
        page=page,
        fields=[AppliedField(label=field.label, constraints=field.constraints, applied_text=text)],
    )
    _, paths = _load_environment(args)
    try:
        paths.ensure()
        HistoryRepository(paths.history_path, paths.history_lock_path).add(entry)
    except OSError as e:
        logger.warning(f'Text was applied but the history record could not be written: {e}')


def cmd_revert(args: argparse.Namespace) -> None:
    client, _ = _client(args)
    client.revert(args.field_id)
    print(f'Reverted {args.field_id}.')


def cmd_history_list(args: argparse.Namespace) -> None:
    _, paths = _load_environment(args)
    entries = HistoryRepository(paths.history_path, paths.history_lock_path).recent(args.limit)
    if args.format == 'json':
        print(json.dumps([e.to_json_dict() for e in entries], indent=2, ensure_ascii=False))
        return
    if not entries:
        print('No history yet.')
        return
    rows = [
        [
            e.created_at.astimezone().strftime('%Y-%m-%d %H:%M'),
            e.site.hostname or '-',
            ', '.join(f.label for f in e.fields),
            _truncate(' / '.join(f.applied_text for f in e.fields), 40),
        ]
        for e in entries
    ]
    print(format_table(['WHEN', 'SITE', 'FIELD', 'TEXT'], rows))


# -- Helpers --


def redact_value(value: str) -> str:
    """Mask email addresses and phone numbers before printing a live field value."""
    masked = EMAIL_PATTERN.sub('[email]', value)
    return PHONE_PATTERN.sub('[phone]', masked)


def infer_site(url: str | None) -> SiteInfo:
    """Hostname plus a naive eTLD+1 (last two labels). IPs and single labels are kept whole."""
    hostname = urlsplit(url).hostname if url else None
    if not hostname:
        return SiteInfo()
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        labels = hostname.split('.')
        return SiteInfo(hostname=hostname, etld_plus_one='.'.join(labels[-2:]))
    return SiteInfo(hostname=hostname, etld_plus_one=hostname)


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [max(len(str(cell)) for cell in column) for column in zip(headers, *rows, strict=False)]
    lines = []
    for row in [list(headers), *rows]:
        lines.append('  '.join(f'{cell:<{width}}' for cell, width in zip(row, widths, strict=True)).rstrip())
    return '\n'.join(lines)


def _field_row(field: FieldInfo) -> list[str]:
    constraints = field.constraints
    return [
        field.field_id,
        field.kind_token,
        _truncate(field.label, 40),
        str(constraints.max_length) if constraints.max_length is not None else '-',
        constraints.language_hint or '-',
    ]


def _truncate(text: str, limit: int) -> str:
    flat = ' '.join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 1] + '…'


def _validated_port(port: int) -> int:
    if not 0 < port < 65536:
        raise UsageError(f'Port must be between 1 and 65535, got {port}.')
    return port


def _load_environment(args: argparse.Namespace) -> tuple[DalilConfig, DataPaths]:
    config = load_config(config_path())
    return config, DataPaths(resolve_data_dir(args.data_dir, config.data_dir))


def _client(args: argparse.Namespace) -> tuple[ControllerClient, ConnectionStore]:
    config, paths = _load_environment(args)
    store = ConnectionStore(paths.connection_path, paths.connection_lock_path)
    client = ControllerClient(
        store,
        timeout=config.request_timeout_seconds,
        connect_timeout=config.connect_timeout_seconds,
    )
    return client, store
