"""slink command line.

Usage:
  slink init                      # Create the configuration interactively
  slink add FILE                  # Copy FILE into the base directory
  slink share RECIPIENT FILE      # Create a recipient-specific URL
  slink unshare RECIPIENT FILE    # Remove the recipient's active shares
  slink show FILE                 # File details and share history
  slink ls                        # All managed files
  slink rm FILE [-f]              # Remove a file and its links
  slink info                      # Configuration and database statistics

FILE is a reference: a UUID, a filename, or ``filename/N`` to pick the
N-th oldest of several files with the same name.

Exit codes:
  0 = success
  1 = operation failed (not found, ambiguous, storage, database)
  2 = usage or configuration error
"""

from __future__ import annotations

import argparse
import grp
import pwd
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from . import __version__
from .catalog import FileCatalog
from .codec import MAX_HASH_BYTES, MIN_HASH_BYTES
from .config import SlinkConfig, default_config_path, default_db_path, generate_secret
from .db import SqlRecordStore
from .errors import AmbiguityError, ConfigError, SlinkError
from .logging import configure_logging, get_logger, new_invocation_id
from .resolver import resolve_or_raise
from .shares import ShareLifecycle
from .storage import LocalStorage

logger = get_logger(__name__)

TIME_FORMAT = '%Y-%m-%d %H:%M:%S'
NO_OWNER = '-'


# ── Output helpers ──────────────────────────────────────────────────


def fmt_time(value: datetime | None) -> str:
    return value.strftime(TIME_FORMAT) if value is not None else '-'


def render_table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> str:
    """Plain aligned text table."""
    cells = [[str(h) for h in headers]] + [[str(c) for c in row] for row in rows]
    widths = [max(len(r[i]) for r in cells) for i in range(len(headers))]

    def line(row: list[str]) -> str:
        return '  '.join(c.ljust(w) for c, w in zip(row, widths)).rstrip()

    out = [line(cells[0]), '  '.join('-' * w for w in widths)]
    out.extend(line(r) for r in cells[1:])
    return '\n'.join(out)


def print_candidates(err: AmbiguityError, name: str) -> None:
    if not err.candidates:
        return
    print('Multiple files found:', file=sys.stderr)
    for index, record in err.candidates:
        print(
            f'  {name}/{index}: {record.uuid} ({fmt_time(record.added_at)})',
            file=sys.stderr,
        )


# ── Prompts ─────────────────────────────────────────────────────────


def prompt_with_default(prompt: str, default: str) -> str:
    value = input(f'{prompt} [{default}]: ').strip()
    return value or default


def prompt_with_validation(
    prompt: str,
    default: str,
    validate: Callable[[str], str | None],
) -> str:
    """Re-prompt until ``validate`` returns None (no error)."""
    while True:
        value = prompt_with_default(prompt, default)
        problem = validate(value)
        if problem is None:
            return value
        print(f'Invalid input: {problem}')


def _check_dir(value: str) -> str | None:
    if Path(value).is_dir():
        return None
    return 'Base directory must exist and be a valid directory'


def _check_user(value: str) -> str | None:
    if value == NO_OWNER:
        return None
    try:
        pwd.getpwnam(value)
    except KeyError:
        return 'Web user must exist'
    return None


def _check_group(value: str) -> str | None:
    if value == NO_OWNER:
        return None
    try:
        grp.getgrnam(value)
    except KeyError:
        return 'Web group must exist'
    return None


def _check_hash_bytes(value: str) -> str | None:
    if not value.isdigit():
        return 'Hash bytes must be a number'
    if not MIN_HASH_BYTES <= int(value) <= MAX_HASH_BYTES:
        return f'Hash bytes must be between {MIN_HASH_BYTES} and {MAX_HASH_BYTES}'
    return None


def confirm(question: str) -> bool:
    answer = input(f'{question} [y/N] ')
    return answer.strip().lower() == 'y'


# ── Wiring ──────────────────────────────────────────────────────────


@dataclass
class Context:
    config: SlinkConfig
    config_path: Path
    store: SqlRecordStore
    storage: LocalStorage
    shares: ShareLifecycle
    catalog: FileCatalog

    def close(self) -> None:
        self.store.close()


def open_context(config: SlinkConfig, config_path: Path) -> Context:
    store = SqlRecordStore.open(config.db_path)
    storage = LocalStorage(
        config.base_dir,
        web_user=config.web_user,
        web_group=config.web_group,
    )
    shares = ShareLifecycle(store, config, storage=storage)
    catalog = FileCatalog(store, storage, shares=shares)
    return Context(
        config=config,
        config_path=config_path,
        store=store,
        storage=storage,
        shares=shares,
        catalog=catalog,
    )


# ── Commands ────────────────────────────────────────────────────────


def cmd_init(args: argparse.Namespace) -> int:
    config_path = args.config_path
    if config_path.exists():
        raise ConfigError(f'Configuration file already exists at {config_path}')

    print('Initializing configuration...')
    base_url = prompt_with_default('Base URL', 'http://localhost:8080')
    base_dir = prompt_with_validation('Base directory', '/var/www', _check_dir)
    db_path = prompt_with_default('Database path', str(default_db_path()))
    secret = prompt_with_default('Hash secret (leave empty to generate)', '')
    web_user = prompt_with_validation('Web user (- for none)', 'www-data', _check_user)
    web_group = prompt_with_validation('Web group (- for none)', 'www-data', _check_group)
    hash_bytes = prompt_with_validation('Hash bytes (2-32)', '7', _check_hash_bytes)

    config = SlinkConfig(
        base_url=base_url,
        base_dir=base_dir,
        db_path=db_path,
        hash_secret=secret or generate_secret(),
        web_user='' if web_user == NO_OWNER else web_user,
        web_group='' if web_group == NO_OWNER else web_group,
        hash_bytes=int(hash_bytes),
    ).require_valid()

    config.write(config_path)
    SqlRecordStore.open(config.db_path).close()
    print(f'Configuration saved to {config_path}')
    return 0


def cmd_add(ctx: Context, args: argparse.Namespace) -> int:
    record = ctx.catalog.add_file(args.file)
    print(f'Added file with UUID: {record.uuid}')
    return 0


def cmd_share(ctx: Context, args: argparse.Namespace) -> int:
    record = resolve_or_raise(args.file, ctx.store)
    share = ctx.shares.create_share(record, args.recipient)
    print(f'Shared {record.filename} with {args.recipient}:')
    print(ctx.shares.url_for(record, share))
    return 0


def cmd_unshare(ctx: Context, args: argparse.Namespace) -> int:
    record = resolve_or_raise(args.file, ctx.store)
    count = ctx.shares.remove_share(record, args.recipient)
    if count == 0:
        print(f'No active share of {record.filename} for {args.recipient}')
    else:
        noun = 'share' if count == 1 else 'shares'
        print(f'Removed {count} {noun} of {record.filename} for {args.recipient}')
    return 0


def cmd_show(ctx: Context, args: argparse.Namespace) -> int:
    record = resolve_or_raise(args.file, ctx.store)
    shares = ctx.shares.list_shares(record)

    print(f'File: {record.filename}')
    print(f'UUID: {record.uuid}')
    print(f'Added: {fmt_time(record.added_at)}')
    print('\nShares:')
    print(render_table(
        ['Recipient', 'Status', 'Shared', 'Removed', 'URL'],
        [
            [
                s.recipient,
                s.status.label,
                fmt_time(s.created_at),
                fmt_time(s.removed_at),
                ctx.shares.url_for(record, s),
            ]
            for s in shares
        ],
    ))
    return 0


def cmd_ls(ctx: Context, args: argparse.Namespace) -> int:
    print(render_table(
        ['Filename', 'UUID', 'Added', 'Active Shares'],
        [
            [s.record.filename, s.record.uuid, fmt_time(s.record.added_at), s.active_shares]
            for s in ctx.catalog.list_files()
        ],
    ))
    return 0


def cmd_rm(ctx: Context, args: argparse.Namespace) -> int:
    record = resolve_or_raise(args.file, ctx.store)
    if not args.force and not confirm(f'Are you sure you want to remove {record.filename}?'):
        print('Aborted')
        return 0
    ctx.catalog.remove_file(record)
    print(f'Removed file: {record.filename}')
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    print(f'slink v{__version__}')
    print('\nConfiguration:')
    print(f'Config file: {args.config_path}')

    if not args.config_path.exists():
        print('\nNo configuration file found. Run "slink init" to create one.')
        return 0

    config = SlinkConfig.load(args.config_path, check_paths=False)
    print('\nCurrent configuration:')
    print(f'Base URL: {config.base_url}')
    print(f'Base directory: {config.base_dir}')
    print(f'Database path: {config.db_path}')
    print(f'Hash secret: {config.redacted_secret()}')
    print(f'Web user: {config.web_user or "-"}')
    print(f'Web group: {config.web_group or "-"}')
    print(f'Hash bytes: {config.hash_bytes} ({config.entropy_bits} bits of entropy)')

    if not Path(config.db_path).exists():
        print('\nDatabase not initialized yet.')
        return 0

    store = SqlRecordStore.open(config.db_path)
    try:
        stats = store.stats()
    finally:
        store.close()
    print('\nDatabase statistics:')
    print(f'Total files: {stats.total_files}')
    print(f'Total shares: {stats.total_shares}')
    print(f'Active shares: {stats.active_shares}')
    oldest = fmt_time(stats.oldest_added_at) if stats.oldest_added_at else 'No files'
    print(f'Oldest file: {oldest}')
    return 0


STORE_COMMANDS: dict[str, Callable[[Context, argparse.Namespace], int]] = {
    'add': cmd_add,
    'share': cmd_share,
    'unshare': cmd_unshare,
    'show': cmd_show,
    'ls': cmd_ls,
    'rm': cmd_rm,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='slink',
        description='Secure file sharing utility',
    )
    parser.add_argument('--version', action='version', version=f'slink {__version__}')
    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='Configuration file (default: $SLINK_CONFIG or ~/.config/slink/slink.conf)',
    )
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Log progress to stderr (-vv for debug)',
    )
    sub = parser.add_subparsers(dest='command', metavar='COMMAND', required=True)

    sub.add_parser('init', help='Create the configuration interactively')

    p = sub.add_parser('add', help='Copy a file into the managed directory')
    p.add_argument('file')

    p = sub.add_parser('share', help='Create a recipient-specific sharing link')
    p.add_argument('recipient')
    p.add_argument('file')

    p = sub.add_parser('unshare', help='Remove sharing links but retain history')
    p.add_argument('recipient')
    p.add_argument('file')

    p = sub.add_parser('show', help='Display file info and share status')
    p.add_argument('file')

    sub.add_parser('ls', help='List all managed files')

    p = sub.add_parser('rm', help='Remove a file and its shares')
    p.add_argument('file')
    p.add_argument('-f', '--force', action='store_true', help='Do not ask for confirmation')

    sub.add_parser('info', help='Show configuration and database statistics')
    return parser


def _log_level(verbose: int) -> str | None:
    if verbose >= 2:
        return 'DEBUG'
    if verbose == 1:
        return 'INFO'
    return None


def run(args: argparse.Namespace) -> int:
    if args.command == 'init':
        return cmd_init(args)
    if args.command == 'info':
        return cmd_info(args)

    config = SlinkConfig.load(args.config_path)
    ctx = open_context(config, args.config_path)
    try:
        return STORE_COMMANDS[args.command](ctx, args)
    finally:
        ctx.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.config_path = args.config or default_config_path()

    configure_logging(level=_log_level(args.verbose), force=True)
    new_invocation_id()
    logger.debug('command_started', command=args.command)

    try:
        return run(args)
    except AmbiguityError as err:
        print(f'error: {err}', file=sys.stderr)
        print_candidates(err, err.reference.rsplit('/', 1)[0])
        return err.exit_code
    except SlinkError as err:
        print(f'error: {err}', file=sys.stderr)
        return err.exit_code
    except ValueError as err:
        print(f'error: {err}', file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print('\ninterrupted', file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())
