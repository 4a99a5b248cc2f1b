"""
Cache command group for idlsync.

Lists and invalidates the per-source working copies kept under
cacheLocation. Removing an entry forces a fresh clone on the next run.
"""

import json
import sys
from typing import Optional

import click

from ..config import load_settings
from ..exit_codes import CommandError
from ..infra.git_client import GitClient
from ..services.remote_cache import RemoteCache


def _open_cache(config_path: Optional[str]):
    try:
        settings = load_settings(config_path)
    except CommandError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)
    git = GitClient(timeout=settings.git_timeout_seconds)
    return settings, RemoteCache(settings.cache_location, git)


@click.group('cache')
def cache_cmd():
    """Inspect and clear the remote cache."""
    pass


@cache_cmd.command('list')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Configuration file')
@click.option('--pretty', is_flag=True, help='Display as a table')
def list_cache(config_path: Optional[str], pretty: bool):
    """List cached working copies and the commit each one is at.

    Configured sources without a cache entry are listed with
    cached=false; entries left over from removed sources are listed
    with configured=false.
    """
    settings, cache = _open_cache(config_path)
    configured = {s.name: s for s in settings.sources}
    names = sorted(set(configured) | set(cache.entries()))

    rows = []
    for name in names:
        path = cache.root / name
        cached = path.is_dir()
        commit = cache.git.head_commit(path) if cached and cache.git.is_git_repo(path) else None
        rows.append({
            'name': name,
            'configured': name in configured,
            'cached': cached,
            'commit': commit,
            'path': str(path),
        })

    if pretty:
        from ..render import render_table
        render_table(
            ["Source", "Configured", "Cached", "Commit"],
            [[r['name'], "yes" if r['configured'] else "no", "yes" if r['cached'] else "no",
              (r['commit'] or "-")[:12]] for r in rows],
            title=f"Cache: {cache.root}",
        )
        return

    for row in rows:
        print(json.dumps(row), flush=True)


@cache_cmd.command('clear')
@click.argument('name', required=False)
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Configuration file')
def clear_cache(name: Optional[str], config_path: Optional[str]):
    """Remove one source's cached copy, or the whole cache.

    \b
    Examples:
        idlsync cache clear users-service
        idlsync cache clear
    """
    _, cache = _open_cache(config_path)
    removed = cache.invalidate(name)
    if name is not None and not removed:
        click.echo(f"No cache entry for '{name}'", err=True)
        sys.exit(1)
    print(json.dumps({'removed': removed, 'cache': str(cache.root)}))
