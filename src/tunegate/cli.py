"""CLI interface for the Tunegate gateway."""

from __future__ import annotations

import typer
from pydantic import SecretStr
from rich.console import Console

from tunegate.config import config_exists, ensure_dirs, get_base_dir, load_config, save_config

app = typer.Typer(
    name="tunegate",
    help="Edge gateway for a music-player web client: audio/API proxy and state storage.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("", "--host", help="Interface to bind (default: config)"),
    port: int = typer.Option(0, "--port", "-p", help="Port to listen on (default: config)"),
    log_level: str = typer.Option("", "--log-level", help="Logging level (default: config)"),
    no_storage: bool = typer.Option(False, "--no-storage", help="Run without a storage backend"),
    log_to_stderr: bool = typer.Option(False, "--stderr", help="Log to stderr instead of the log files"),
) -> None:
    """Run the gateway in the foreground."""
    import uvicorn

    from tunegate.logging import setup_logging
    from tunegate.server import create_app_from_config

    cfg = load_config()
    if host:
        cfg.server.host = host
    if port:
        cfg.server.port = port
    if log_level:
        cfg.server.log_level = log_level
    if no_storage:
        cfg.storage.enabled = False

    ensure_dirs()
    setup_logging(cfg.server.log_level, None if log_to_stderr else cfg.log_dir)

    if not cfg.is_auth_enabled():
        console.print("[yellow]No password set; the auth gate is disabled.[/yellow]")

    console.print(f"Tunegate listening on [bold]http://{cfg.server.host}:{cfg.server.port}[/bold]")
    uvicorn.run(
        create_app_from_config(cfg),
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.server.log_level,
        loop="asyncio",
    )


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    """Return '***' if the secret is non-empty, else '(not set)'."""
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration (secrets are masked)."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")

    console.print("[bold cyan]\\[server][/bold cyan]")
    console.print(f"  host       = {cfg.server.host}")
    console.print(f"  port       = {cfg.server.port}")
    console.print(f"  log_level  = {cfg.server.log_level}")
    console.print(f"  static_dir = {cfg.server.static_dir or '[dim](not set)[/dim]'}")

    console.print("\n[bold cyan]\\[proxy][/bold cyan]")
    console.print(f"  allowed_host       = {cfg.proxy.allowed_host}")
    console.print(f"  api_base_url       = {cfg.proxy.api_base_url}")
    console.print(f"  referer            = {cfg.proxy.referer}")
    console.print(f"  default_user_agent = {cfg.proxy.default_user_agent}")
    console.print(f"  force_http         = {cfg.proxy.force_http}")

    console.print("\n[bold cyan]\\[storage][/bold cyan]")
    console.print(f"  enabled     = {cfg.storage.enabled}")
    console.print(f"  db_filename = {cfg.storage.db_filename}")

    console.print("\n[bold cyan]\\[auth][/bold cyan]")
    console.print(f"  password = {_mask(cfg.auth.password)}")
    console.print()


@config_app.command(name="init")
def config_init() -> None:
    """Write a default config file if none exists yet."""
    if config_exists():
        console.print(f"[yellow]Config already exists:[/yellow] {get_base_dir() / 'config.toml'}")
        raise typer.Exit(0)
    save_config(load_config())
    console.print(f"[green]Wrote default config[/green] to {get_base_dir() / 'config.toml'}")


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. server.port"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. tunegate config set proxy.force_http false)."""

    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. server.port).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "server": cfg.server,
        "proxy": cfg.proxy,
        "storage": cfg.storage,
        "auth": cfg.auth,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    section_data = section_model.model_dump(mode="python")
    section_data[field_name] = coerced

    new_section = type(section_model)(**section_data)
    setattr(cfg, section_name, new_section)
    save_config(cfg)

    display_val = "***" if isinstance(coerced, SecretStr) else coerced
    console.print(f"[green]Set[/green] {key} = {display_val}")


def _coerce_value(raw: str, field_type: type) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is SecretStr:
        return SecretStr(raw)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    return raw


# ---------------------------------------------------------------------------
# Storage inspection
# ---------------------------------------------------------------------------


storage_app = typer.Typer(name="storage", help="Storage inspection commands.", add_completion=False)
app.add_typer(storage_app)


@storage_app.command(name="status")
def storage_status() -> None:
    """Show the storage backend and row counts per table."""
    import sqlite3

    from tunegate.storage.keys import TABLE_NAMES

    cfg = load_config()
    if not cfg.storage.enabled:
        console.print("[yellow]Storage is disabled[/yellow] (storage.enabled = false).")
        raise typer.Exit(0)

    db_path = cfg.db_path
    if not db_path.exists():
        console.print(f"[yellow]Database not found.[/yellow] It is created on first use at {db_path}")
        raise typer.Exit(1)

    console.print(f"\n[bold]Database[/bold]  {db_path}")
    size_kb = db_path.stat().st_size / 1024
    console.print(f"[dim]Size: {size_kb:.1f} KB[/dim]\n")

    conn = sqlite3.connect(db_path)
    try:
        existing = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        for table_id, table in TABLE_NAMES.items():
            if table not in existing:
                console.print(f"  [dim]{table:18s}  (not created yet)[/dim]")
                continue
            count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # noqa: S608
            style = "green" if count > 0 else "dim"
            console.print(f"  [{style}]{table:18s}[/{style}]  {count:>6}  [dim]{table_id} keys[/dim]")
    finally:
        conn.close()

    console.print()
