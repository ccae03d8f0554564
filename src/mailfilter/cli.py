"""Command-line interface for the reply mail filter.

Provides commands for configuration validation, single-file filtering and
the fetch-and-filter run.

Usage:
    python -m mailfilter validate-config
    python -m mailfilter filter-file message.eml --dom rules/dom.txt
    python -m mailfilter run
    python -m mailfilter run --no-connect --keep-files
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.table import Table

from mailfilter.config import validate_config_file
from mailfilter.core.logging import configure_logging

console = Console(stderr=True)

EXIT_ERROR = 1
EXIT_MESSAGES_FAILED = 2
EXIT_INTERRUPTED = 130


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Reply mail filter - strip signatures, disclaimers and their images from mail."""
    # .env in the working directory, for both `mailfilter` and `python -m mailfilter`
    load_dotenv(find_dotenv(usecwd=True))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    log_level = "DEBUG" if debug else "INFO"
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file and the rule files it names."""
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(EXIT_ERROR)


@cli.command("filter-file")
@click.argument("message_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--text",
    "text_rules",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Regexes for text/plain parts",
)
@click.option(
    "--html",
    "html_rules",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Regexes for text/html parts",
)
@click.option(
    "--dom",
    "dom_rules",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="CSS selectors for text/html parts",
)
@click.option(
    "--regex-timeout",
    default=1.0,
    type=float,
    help="Seconds allowed per pattern substitution",
)
def filter_file(
    message_file: Path,
    text_rules: Path | None,
    html_rules: Path | None,
    dom_rules: Path | None,
    regex_timeout: float,
) -> None:
    """Filter one message file and print the result to stdout."""
    from mailfilter.core.errors import MessageProcessingError, RuleError
    from mailfilter.engine import MessageFilter, load_filter_rules

    try:
        rules = load_filter_rules(
            text=text_rules,
            html=html_rules,
            dom=dom_rules,
            regex_timeout=regex_timeout,
        )
    except RuleError as e:
        console.print(f"[red]Rule error:[/red] {e}")
        sys.exit(EXIT_ERROR)

    try:
        outcome = MessageFilter(rules).process(
            message_file.read_bytes(), message_id=message_file.name
        )
    except MessageProcessingError as e:
        console.print(f"[red]Message error ({e.stage}):[/red] {e}")
        sys.exit(EXIT_MESSAGES_FAILED)

    stdout = click.get_binary_stream("stdout")
    stdout.write(outcome.output)
    stdout.flush()


def _print_summary(summary) -> None:
    """Print a run summary table."""
    table = Table(title="Filter run")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Fetched", str(summary.fetched))
    table.add_row("Processed", str(summary.processed))
    table.add_row("Changed", str(summary.changed))
    table.add_row("Pruned parts", str(summary.pruned_parts))
    table.add_row("Failed", f"[red]{summary.failed}[/red]" if summary.failed else "0")
    console.print(table)

    for failure in summary.failures:
        console.print(
            f"[red]✗[/red] {failure.source.name} ({failure.error.stage}): {failure.error}"
        )


@cli.command("run")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
@click.option(
    "--no-connect",
    is_flag=True,
    help="Do not open an IMAP connection; only filter files already in the spool",
)
@click.option(
    "--keep-mail",
    is_flag=True,
    help="Do not delete messages from the server after fetching them",
)
@click.option(
    "--keep-files",
    is_flag=True,
    help="Do not remove spool files after filtering them",
)
@click.option(
    "--workers",
    default=None,
    type=click.IntRange(1, 32),
    help="Messages filtered concurrently (default: from config)",
)
@click.pass_context
def run(
    ctx: click.Context,
    config_path: Path | None,
    no_connect: bool,
    keep_mail: bool,
    keep_files: bool,
    workers: int | None,
) -> None:
    """Fetch messages from IMAP and filter them into the destination folder."""
    try:
        failed = _run(
            ctx.obj.get("debug", False),
            config_path,
            no_connect,
            keep_mail,
            keep_files,
            workers,
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(EXIT_ERROR)

    if failed:
        sys.exit(EXIT_MESSAGES_FAILED)


def _run(
    debug: bool,
    config_path: Path | None,
    no_connect: bool,
    keep_mail: bool,
    keep_files: bool,
    workers: int | None,
) -> int:
    """Implementation of the run command. Returns the number of failed messages."""
    from mailfilter.config import load_config, rules_from_config
    from mailfilter.core.errors import ConfigLoadError, ConfigValidationError, MailboxError, RuleError
    from mailfilter.engine import MessageFilter
    from mailfilter.mailbox import ImapMailbox, Spool
    from mailfilter.pipeline import SpoolProcessor

    try:
        config = load_config(config_path)
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Run [cyan]validate-config[/cyan] for details."
        )
        sys.exit(EXIT_ERROR)

    if not debug:
        configure_logging(log_level=config.logging.level, json_output=config.logging.json_output)

    # Rules are compiled before any message is touched
    try:
        rules = rules_from_config(config)
    except RuleError as e:
        console.print(f"[red]Rule error:[/red] {e}")
        sys.exit(EXIT_ERROR)

    spool = Spool(config.spool.tmp_dir, config.spool.dst_dir, extension=config.spool.extension)
    spool.ensure_dirs()

    fetched = 0
    if config.mailbox.enabled and not no_connect:
        mailbox_config = config.mailbox
        if keep_mail:
            mailbox_config = mailbox_config.model_copy(update={"delete_after_fetch": False})
        try:
            with ImapMailbox(mailbox_config) as mailbox:
                fetched = len(mailbox.fetch_to_spool(spool))
        except MailboxError as e:
            console.print(f"[red]Mailbox error:[/red] {e}")
            sys.exit(EXIT_ERROR)

    processor = SpoolProcessor(
        MessageFilter(rules),
        spool,
        keep_source_files=keep_files or config.spool.keep_source_files,
        workers=workers or config.processing.workers,
    )
    summary = processor.run(fetched=fetched)
    _print_summary(summary)
    return summary.failed


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
