import click
from idlsync.config import load_config, load_settings
import json
import sys

from idlsync.exit_codes import CommandError


@click.group("config")
def config_cmd():
    """Configuration management commands."""
    pass


@config_cmd.command("init")
@click.argument("path", required=False)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(path, force):
    """Write an example configuration file (default: ./idlsync.json).

    The suffix picks the format: .json, .toml, .yaml or .yml.
    """
    from idlsync.config import generate_config_example, get_config_path, LOCAL_CONFIG_FILENAME

    target = get_config_path(path or LOCAL_CONFIG_FILENAME)
    if target.exists() and not force:
        click.echo(f"Configuration already exists at {target} (use --force to overwrite)", err=True)
        sys.exit(1)
    written = generate_config_example(str(target))
    click.echo(f"Example configuration written to {written}")


@config_cmd.command("show")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
@click.option("--pretty", is_flag=True, help="Display as formatted JSON instead of single-line JSONL")
@click.option("--resolved", is_flag=True,
              help="Show the validated settings a run would use (paths resolved, names derived)")
def show_config(config_path, pretty, resolved):
    """Show the current configuration with all merges applied.

    By default, outputs single-line JSON (JSONL format).
    Use --pretty for human-readable formatted output.
    """
    try:
        if resolved:
            config = load_settings(config_path).to_dict()
        else:
            config = load_config(config_path)
    except CommandError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)

    if pretty:
        # Pretty print for human readability
        print(json.dumps(config, indent=2, ensure_ascii=False))
    else:
        # Default: single-line JSON (JSONL)
        print(json.dumps(config, ensure_ascii=False))


@config_cmd.command("path")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
def config_path_cmd(config_path):
    """Show the config file path being used."""
    from idlsync.config import get_config_path

    path = get_config_path(config_path)
    print(json.dumps({"config_path": str(path), "exists": path.exists()}))
