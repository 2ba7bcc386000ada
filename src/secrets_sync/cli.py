import argparse
import logging
import os
import subprocess
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from . import ops, server, shellrc
from .config import CONFIG_FILE, Config
from .constants import (
    APP_NAME,
    DEFAULT_GROUP,
    ENV_PASSPHRASE,
    ENV_TOKEN,
    ENV_URL,
    LOG_FILE,
)
from .errors import SecretsError
from .gpg import Gpg, TrustLevel

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)


def setup_logging(config: Config, verbose: bool = False, log_file: Path | None = None) -> None:
    """Configures the logging subsystem.

    Everything at INFO and above goes to a rotating log file; only warnings
    reach stderr unless `verbose` is set.

    Args:
        config (Config): Supplies the log rotation size.
        verbose (bool): Lower the stderr threshold to DEBUG.
        log_file (Path | None): Override for the log file path.
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    target = log_file or LOG_FILE
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            target,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
    except OSError as e:
        logger.warning(f"File logging disabled ({target}): {e}")
        return
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _ensure_passphrase(config: Config) -> None:
    """Prompts for the passphrase on a terminal when the environment lacks it."""
    if config.crypto.passphrase or not sys.stdin.isatty():
        return
    config.crypto.passphrase = Prompt.ask("Passphrase", password=True, console=console)


def _print_report(verb: str, report: ops.SyncReport) -> None:
    for name in report.succeeded:
        console.print(f"✔ {verb} [cyan]{ops.display_name(name)}[/cyan]", style="green")

    if not report.failed:
        if not report.succeeded:
            console.print("Nothing to do: no groups found.", style="yellow")
        return

    table = Table(title=f"{verb} failures", header_style="bold red")
    table.add_column("Group", style="cyan")
    table.add_column("Error")
    for name, message in sorted(report.failed.items()):
        table.add_row(ops.display_name(name), message)
    console.print(table)
    console.print(
        f"[bold red]{len(report.failed)} of "
        f"{len(report.failed) + len(report.succeeded)} groups failed.[/bold red]"
    )


def add_cmd(config: Config, path: str, group: str) -> None:
    """Starts tracking a path in a group."""
    recorded = ops.add_path(config, path, group)
    console.print(
        f"Tracking [cyan]{recorded}[/cyan] in group "
        f"[bold]{ops.display_name(ops.local_group(group))}[/bold]",
        style="green",
    )


def push_cmd(config: Config, group: str | None) -> int:
    """Encrypts and uploads one or all groups."""
    _ensure_passphrase(config)
    with console.status("Pushing secrets...", spinner="dots"):
        report = ops.push(config, group)
    _print_report("Pushed", report)
    return 0 if report.ok else 1


def pull_cmd(config: Config, group: str | None) -> int:
    """Downloads and restores one or all groups, overwriting local files."""
    _ensure_passphrase(config)
    console.print(
        f"[dim]Restoring under {config.paths.restore_root}; "
        "existing files will be overwritten.[/dim]"
    )
    with console.status("Pulling secrets...", spinner="dots"):
        report = ops.pull(config, group)
    _print_report("Pulled", report)
    return 0 if report.ok else 1


def list_cmd(config: Config) -> int:
    """Shows local groups and paths alongside their remote presence."""
    registry = ops.open_registry(config)
    local = {name: registry.list_paths(name) for name in registry.list_groups()}

    remote: set[str] | None
    remote_error = None
    try:
        remote = ops.remote_groups(config)
    except SecretsError as e:
        remote = None
        remote_error = e

    status = ops.group_status(local, remote)
    if not status:
        console.print("[yellow]No groups tracked locally or remotely.[/yellow]")
    else:
        styles = {
            "both": "green",
            "local only": "yellow",
            "remote only": "magenta",
            "unknown": "dim",
        }
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Group", style="cyan")
        table.add_column("Status")
        table.add_column("Paths", style="dim")
        home = str(Path.home())
        for name in sorted(status):
            paths = "\n".join(
                str(p).replace(home, "~", 1) for p in sorted(local.get(name, set()))
            )
            style = styles[status[name]]
            table.add_row(
                ops.display_name(name), f"[{style}]{status[name]}[/{style}]", paths or "-"
            )
        console.print(table)

    if remote_error is not None:
        console.print(f"[bold yellow]⚠ Remote unavailable:[/bold yellow] {remote_error}")
        return 1
    return 0


def groups_cmd(config: Config) -> None:
    """Prints the group names stored remotely."""
    names = ops.remote_groups(config)
    if not names:
        console.print("[yellow]No groups stored remotely.[/yellow]")
        return
    for name in sorted(names):
        console.print(ops.display_name(name))


def delete_cmd(config: Config, group: str) -> int:
    """Deletes a group both remotely and from the local registry."""
    errors = ops.delete_group(config, group)
    name = ops.display_name(ops.local_group(group))
    if errors:
        for message in errors:
            console.print(f"[bold red]✘ Delete {name} {message}[/bold red]")
        return 1
    console.print(f"✔ Deleted [cyan]{name}[/cyan]", style="green")
    return 0


def configure_cmd(force: bool = False, rc_file: Path | None = None) -> None:
    """Prompts for remote settings and records them in the shell rc file."""
    if os.environ.get(ENV_URL) and os.environ.get(ENV_PASSPHRASE) and not force:
        console.print("Already configured via environment (use --force to redo).", style="dim")
        return

    console.print("Secrets are stored in a remote key-value service. You'll need:")
    console.print("  1. The service URL (e.g. https://secrets.example.workers.dev)")
    console.print("  2. Its bearer token")
    console.print("  3. Your encryption passphrase (never sent to the service)\n")

    url = Prompt.ask("Service URL (Enter to skip)", default="", console=console).strip()
    if not url:
        console.print("⊘ Skipping secrets configuration", style="yellow")
        return
    token = Prompt.ask("Bearer token", password=True, default="", console=console)
    passphrase = Prompt.ask("Passphrase", password=True, default="", console=console)
    if not passphrase:
        console.print("⊘ Skipping secrets configuration (no passphrase)", style="yellow")
        return

    target = rc_file or shellrc.default_rc_file()
    shellrc.write_managed_block(target, shellrc.export_lines(url, token, passphrase))
    console.print(f"✔ Configured secrets in [cyan]{target}[/cyan]", style="green")
    console.print(f"[dim]Run: source {target}[/dim]")


def trust_key_cmd(key_id: str, level: str) -> None:
    """Sets GPG owner trust for a key."""
    trust = TrustLevel.from_name(level)
    Gpg().set_owner_trust(key_id, trust)
    console.print(f"✔ Key {key_id} trusted ({trust.name.lower()})", style="green")


def import_key_cmd(path: str, key_id: str | None, level: str | None) -> None:
    """Imports a GPG key file (typically just pulled) and optionally trusts it."""
    gpg = Gpg()
    if key_id and gpg.has_key(key_id):
        console.print(f"Key {key_id} already imported.", style="dim")
    else:
        gpg.import_key(Path(path).expanduser())
        console.print(f"✔ Imported {path}", style="green")
    if key_id and level:
        trust_key_cmd(key_id, level)


def serve_cmd(host: str, port: int, data_dir: str, token: str | None) -> None:
    """Runs the reference backing store until interrupted."""
    token = token or os.environ.get(ENV_TOKEN, "")
    if not token:
        raise SecretsError(f"The server needs a token (--token or {ENV_TOKEN}).")
    httpd = server.create_server(Path(data_dir).expanduser(), token, host, port)
    console.print(f"Serving on [cyan]http://{host}:{httpd.server_port}[/cyan] (Ctrl+C to stop)")
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")
    finally:
        httpd.server_close()


def open_config() -> None:
    """Opens the configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# secrets-sync configuration\n\n"
                "[remote]\n"
                '# url = "https://secrets.example.workers.dev"\n'
                '# timeout = "30s"\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")
    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="secrets-sync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row("remote", "url", "str", '""', f"Backing store base URL ({ENV_URL}).")
    table.add_row("", "token", "str", '""', "Bearer token (SECRETS_TOKEN).")
    table.add_row(
        "", "timeout", "int | str", '"30s"', "Bound on every network call (e.g. '10s')."
    )
    table.add_row(
        "crypto", "iterations", "int", "600000", "PBKDF2 iterations (min 100000)."
    )
    table.add_row("paths", "registry", "path", "~/.config/secrets-sync/registry", "")
    table.add_row(
        "", "restore_root", "path", "~", "Root that tracked paths are stored relative to."
    )
    table.add_row(
        "limits", "max_log_size", "int | str", '"5mb"', "Log size before rotation."
    )
    console.print(table)
    console.print(f"[dim]The passphrase is only read from {ENV_PASSPHRASE} or a prompt.[/dim]")


def tail_log() -> None:
    """Follows the log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


class SecretsHelpFormatter(argparse.HelpFormatter):
    """Groups subcommands into labelled clusters in the help output."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []
            groups = {
                "Sync": ["add", "push", "pull", "delete"],
                "Inspect": ["list", "groups"],
                "Setup": ["configure", "import-key", "trust-key", "config"],
                "Service": ["serve", "log"],
            }
            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue
                parts.append(f"\n  {group_name}:\n")
                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secrets",
        description="Encrypt, upload and restore groups of local secret files.",
        formatter_class=SecretsHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug logging on stderr"
    )
    subparsers = parser.add_subparsers(dest="command")

    add_parser = subparsers.add_parser("add", help="Track a file or directory")
    add_parser.add_argument("path", help="Path to track (e.g. ~/.ssh/id_ed25519)")
    add_parser.add_argument(
        "-g", "--group", default=DEFAULT_GROUP, help="Group name (default: unnamed)"
    )

    push_parser = subparsers.add_parser("push", help="Encrypt and upload groups")
    push_parser.add_argument("group", nargs="?", help="Only this group")

    pull_parser = subparsers.add_parser(
        "pull", help="Download and restore groups (overwrites files)"
    )
    pull_parser.add_argument("group", nargs="?", help="Only this group")

    subparsers.add_parser("list", help="Show local and remote groups")
    subparsers.add_parser("groups", help="Show remote group names")

    delete_parser = subparsers.add_parser("delete", help="Delete a group everywhere")
    delete_parser.add_argument("group", help="Group to delete")

    configure_parser = subparsers.add_parser(
        "configure", help="Store remote settings in your shell rc file"
    )
    configure_parser.add_argument("--force", action="store_true", help="Reconfigure")
    configure_parser.add_argument("--rc-file", help="Shell rc file to update")

    trust_parser = subparsers.add_parser("trust-key", help="Set GPG owner trust")
    trust_parser.add_argument("key_id", help="GPG key ID or fingerprint")
    trust_parser.add_argument("--level", default="ultimate", help="Trust level")

    import_parser = subparsers.add_parser("import-key", help="Import a GPG key file")
    import_parser.add_argument("path", help="Key file (e.g. ~/.ssh/gpg)")
    import_parser.add_argument("--key-id", help="Skip import if this key exists")
    import_parser.add_argument("--trust", help="Trust level to set after import")

    serve_parser = subparsers.add_parser("serve", help="Run the reference store")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8787)
    serve_parser.add_argument("--data-dir", default="~/.local/share/secrets-sync/store")
    serve_parser.add_argument("--token", help="Bearer token clients must present")

    config_parser = subparsers.add_parser("config", help="Open or describe config")
    config_parser.add_argument(
        "--list", "-l", action="store_true", help="List all configuration options"
    )

    subparsers.add_parser("log", help="Tail the log file")
    return parser


def run(args: argparse.Namespace, config: Config) -> int:
    """Dispatches a parsed command. Returns the process exit code."""
    if args.command == "add":
        add_cmd(config, args.path, args.group)
    elif args.command == "push":
        return push_cmd(config, args.group)
    elif args.command == "pull":
        return pull_cmd(config, args.group)
    elif args.command == "list":
        return list_cmd(config)
    elif args.command == "groups":
        groups_cmd(config)
    elif args.command == "delete":
        return delete_cmd(config, args.group)
    elif args.command == "configure":
        configure_cmd(args.force, Path(args.rc_file).expanduser() if args.rc_file else None)
    elif args.command == "trust-key":
        trust_key_cmd(args.key_id, args.level)
    elif args.command == "import-key":
        import_key_cmd(args.path, args.key_id, args.trust)
    elif args.command == "serve":
        serve_cmd(args.host, args.port, args.data_dir, args.token)
    elif args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config()
    elif args.command == "log":
        tail_log()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the secrets CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config.load()
    setup_logging(config, args.verbose)

    try:
        code = run(args, config)
    except SecretsError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        code = 1
    except ValueError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
