"""EventSource CLI: tail a Server-Sent Events stream, manage defaults."""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

import tomli_w

from .types import MESSAGE_EVENT, Event, EventSourceConfig


# ============================================================================
# Config helpers
# ============================================================================

CONFIG_DIR = Path.home() / ".eventsource"
CONFIG_FILE = CONFIG_DIR / "config.toml"


def _ensure_config_dir() -> None:
    """Create ~/.eventsource/ if it doesn't exist."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def _load_config() -> Dict[str, Any]:
    """Read config.toml, returning an empty dict if it doesn't exist."""
    if not CONFIG_FILE.exists():
        return {}
    with open(CONFIG_FILE, "rb") as f:
        return tomllib.load(f)


def _save_config(cfg: Dict[str, Any]) -> None:
    """Write config dict to config.toml."""
    _ensure_config_dir()
    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(cfg, f)


def _set_nested(cfg: Dict[str, Any], dotted_key: str, value: Any) -> None:
    """Set a value in a nested dict using a dotted key like 'default.timeout'."""
    parts = dotted_key.split(".")
    d = cfg
    for part in parts[:-1]:
        d = d.setdefault(part, {})
    d[parts[-1]] = value


def _coerce(value: str) -> Any:
    """Store numeric values as TOML numbers."""
    for kind in (int, float):
        try:
            return kind(value)
        except ValueError:
            pass
    return value


def _parse_headers(values: Tuple[str, ...]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME:VALUE, got {item!r}", param_hint="--header")
        headers[name.strip()] = value.strip()
    return headers


def build_config(
    cfg: Dict[str, Any],
    *,
    timeout: Optional[float] = None,
    retry: Optional[int] = None,
    headers: Optional[Dict[str, str]] = None,
    last_event_id: Optional[str] = None,
) -> EventSourceConfig:
    """Merge config.toml defaults with command line overrides."""
    default = cfg.get("default", {})
    merged = dict(cfg.get("headers", {}))
    merged.update(headers or {})
    values: Dict[str, Any] = {"headers": merged}
    if timeout is not None or "timeout" in default:
        values["timeout"] = timeout if timeout is not None else default["timeout"]
    if retry is not None or "retry_interval" in default:
        values["retry_interval"] = retry if retry is not None else default["retry_interval"]
    if last_event_id:
        values["last_event_id"] = last_event_id
    return EventSourceConfig(**values)


def _format_event(event: Event) -> str:
    lines = [f"[{event.event}]" + (f" id={event.id}" if event.id else "")]
    lines.extend(f"  {line}" for line in event.data.split("\n"))
    return "\n".join(lines)


# ============================================================================
# CLI group
# ============================================================================

@click.group()
def cli():
    """EventSource CLI"""
    pass


# ============================================================================
# eventsource listen <url>
# ============================================================================

@cli.command()
@click.argument("url")
@click.option("--event", "events", multiple=True, help="Also print this named event (repeatable)")
@click.option("--last-event-id", default=None, help="Resume after this event id")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds")
@click.option("--retry", type=click.IntRange(min=0), default=None,
              help="Initial reconnect delay in milliseconds")
@click.option("--header", "header_values", multiple=True, help="Extra request header NAME:VALUE")
@click.option("--max-events", type=click.IntRange(min=0), default=0,
              help="Exit after printing this many events (0: run until interrupted)")
@click.option("--verbose", is_flag=True, help="Log connection activity to stderr")
def listen(url: str, events: Tuple[str, ...], last_event_id: Optional[str],
           timeout: Optional[float], retry: Optional[int],
           header_values: Tuple[str, ...], max_events: int, verbose: bool):
    """Print events from URL until interrupted."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(message)s")

    config = build_config(
        _load_config(),
        timeout=timeout,
        retry=retry,
        headers=_parse_headers(header_values),
        last_event_id=last_event_id,
    )

    from .client import EventSource

    source = EventSource(url, config=config)
    done = threading.Event()
    received = [0]

    def on_event(event: Event) -> None:
        click.echo(_format_event(event))
        received[0] += 1
        if max_events and received[0] >= max_events:
            done.set()

    def on_error(event: Event) -> None:
        message = event.error.message if event.error else "unknown error"
        click.echo(f"error: {message} (retrying in {source.retry_interval}ms)", err=True)

    source.on_open(lambda event: click.echo(f"Connected to {url}", err=True))
    source.on_message(on_event)
    for name in dict.fromkeys(events):
        if name != MESSAGE_EVENT:
            source.add_event_listener(name, on_event)
    source.on_error(on_error)

    source.open()
    try:
        while not done.wait(0.5):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        source.close()


# ============================================================================
# eventsource config (subgroup)
# ============================================================================

@cli.group()
def config():
    """Manage configuration."""
    pass


@config.command("show")
def config_show():
    """Print config file contents."""
    if not CONFIG_FILE.exists():
        click.echo(f"No config file found at {CONFIG_FILE}")
        return

    with open(CONFIG_FILE, "r") as f:
        click.echo(f.read())


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a config value (e.g., eventsource config set default.retry_interval 5000)"""
    cfg = _load_config()
    _set_nested(cfg, key, _coerce(value))
    _save_config(cfg)
    click.echo(f"Set {key} = {value}")


# ============================================================================
# Entry point
# ============================================================================

def main():
    cli()


if __name__ == "__main__":
    main()
