import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from skillgate.constant import VERSION
from skillgate.definitions.store import Catalog

_LOG_LEVEL_OPTION = "--log-level"

console = Console(highlight=False, soft_wrap=True, emoji=False)

_CORPUS_ARGUMENT = click.argument(
    "corpus",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(VERSION)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Log debug information. Default: no.",
)
@click.option(
    "--log-level",
    "-L",
    "log_level_override",
    multiple=True,
    help=(
        "Override log level per module. Use `module=LEVEL` to target a specific module "
        "(e.g. `-L matcher=DEBUG`) or just `LEVEL` to change the default level."
    ),
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file to load. Default: config.toml in the share directory.",
)
@click.pass_context
def skillgate(
    ctx: click.Context,
    debug: bool,
    log_level_override: tuple[str, ...],
    config_file: Path | None,
):
    """Resolve tasks to skill definitions and check what comes back."""
    from skillgate.config import load_config
    from skillgate.exception import ConfigError
    from skillgate.share import get_share_dir
    from skillgate.utils.logging import configure_file_logging, logger, parse_level_overrides

    try:
        config = load_config(config_file)
    except ConfigError as e:
        raise click.BadOptionUsage("--config", e.message) from e

    try:
        cli_levels = parse_level_overrides(log_level_override)
    except ValueError as exc:
        raise click.BadOptionUsage(_LOG_LEVEL_OPTION, str(exc)) from exc

    logger.enable("skillgate")
    try:
        configure_file_logging(
            get_share_dir() / "logs" / "skillgate.log",
            base_level="TRACE" if debug else "INFO",
            module_levels={**config.logging.levels, **cli_levels},
            rotation=config.logging.rotation,
            retention=config.logging.retention,
        )
    except ValueError as exc:
        # loguru rejects the rotation or retention strings from the config
        raise click.BadOptionUsage("--config", f"Invalid logging configuration: {exc}") from exc

    ctx.obj = config


@skillgate.command()
@_CORPUS_ARGUMENT
def validate(corpus: Path):
    """Load a corpus and report every violation."""
    catalog = _load_catalog(corpus)
    console.print(
        f"[green]✓[/green] {len(catalog)} definition(s) valid "
        f"(fingerprint {catalog.fingerprint[:12]})"
    )


@skillgate.command(name="list")
@_CORPUS_ARGUMENT
def list_(corpus: Path):
    """List the definitions of a corpus."""
    from skillgate.context import format_catalog_listing

    catalog = _load_catalog(corpus)
    console.print(format_catalog_listing(catalog), markup=False)


@skillgate.command()
@_CORPUS_ARGUMENT
@click.argument("definition_id")
def info(corpus: Path, definition_id: str):
    """Show one definition in detail."""
    from skillgate.context import format_definition_info

    catalog = _load_catalog(corpus)
    definition = _get_definition(catalog, definition_id)
    console.print(format_definition_info(definition), markup=False)


@skillgate.command(name="match")
@_CORPUS_ARGUMENT
@click.argument("task")
@click.option(
    "--attachment",
    "-a",
    "attachment_names",
    multiple=True,
    help="Name of an input the request would attach. Can be repeated.",
)
@click.pass_obj
def match_(config, corpus: Path, task: str, attachment_names: tuple[str, ...]):
    """Rank the definitions of a corpus for a task."""
    from skillgate.matcher import MatchStatus, match

    catalog = _load_catalog(corpus)
    outcome = match(catalog, task, attachment_names, config.matcher)

    if outcome.candidates:
        table = Table("Definition", "Score", "Reasons")
        for candidate in outcome.candidates:
            table.add_row(
                escape(candidate.definition_id),
                f"{candidate.score:g}",
                escape("; ".join(candidate.reasons)),
            )
        console.print(table)

    match outcome.status:
        case MatchStatus.RESOLVED:
            console.print(f"[green]resolved[/green]: {outcome.resolved_id}")
        case MatchStatus.AMBIGUOUS:
            ids = ", ".join(c.definition_id for c in outcome.candidates)
            console.print(f"[yellow]ambiguous[/yellow]: {ids}")
        case MatchStatus.NO_MATCH:
            console.print("[red]no match[/red]")
            sys.exit(1)


@skillgate.command()
@_CORPUS_ARGUMENT
@click.argument("definition_id")
@click.option(
    "--attach",
    "attach",
    multiple=True,
    metavar="NAME=PATH",
    help="Attach a file as the input NAME. Can be repeated.",
)
@click.option("--task", "task_text", default="", help="Task text bound as {{task}}.")
def render(corpus: Path, definition_id: str, attach: tuple[str, ...], task_text: str):
    """Gate a definition on the given attachments and print its payload."""
    from skillgate.assembler import assemble
    from skillgate.context import format_clarification
    from skillgate.exception import MissingInputError, SkillGateError
    from skillgate.gate import gate, require_ready

    catalog = _load_catalog(corpus)
    definition = _get_definition(catalog, definition_id)
    attachments = _parse_attachments(attach)

    try:
        ready = require_ready(definition, gate(definition, attachments))
    except MissingInputError as e:
        console.print(format_clarification(definition, e.missing), markup=False)
        sys.exit(1)

    try:
        payload = assemble(
            definition, ready.bound_variables, ready.presence_flags, task_text=task_text
        )
    except SkillGateError as e:
        raise click.ClickException(e.message) from e
    console.print(payload.render(), markup=False)


@skillgate.command()
@_CORPUS_ARGUMENT
@click.argument("definition_id")
@click.argument(
    "response_file",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
)
def check(corpus: Path, definition_id: str, response_file: Path):
    """Validate a generated response against a definition's output contract."""
    from skillgate.contract import build_retry_instruction, validate_output

    catalog = _load_catalog(corpus)
    definition = _get_definition(catalog, definition_id)
    response = response_file.read_text(encoding="utf-8")

    report = validate_output(definition.output_contract, response)
    if report.passed:
        console.print("[green]✓[/green] Response satisfies the output contract")
        return
    console.print(f"[red]✗[/red] {len(report.violations)} violation(s):")
    for message in report.messages:
        console.print(f"  - {message}", markup=False)
    console.print()
    console.print(build_retry_instruction(report), markup=False)
    sys.exit(1)


def _load_catalog(corpus: Path) -> Catalog:
    from skillgate.definitions.store import build_catalog
    from skillgate.exception import CorpusValidationError

    try:
        return build_catalog(corpus)
    except CorpusValidationError as e:
        console.print(f"[red]✗[/red] {escape(e.message)}")
        for violation in e.violations:
            console.print(f"  - {violation}", markup=False)
        sys.exit(1)


def _get_definition(catalog: Catalog, definition_id: str):
    definition = catalog.get(definition_id)
    if definition is None:
        raise click.BadArgumentUsage(f"Definition '{definition_id}' not found in the corpus")
    return definition


def _parse_attachments(values: tuple[str, ...]):
    from skillgate.gate import Attachment

    attachments: list[Attachment] = []
    for raw in values:
        name, sep, path = raw.partition("=")
        name, path = name.strip(), path.strip()
        if not sep or not name or not path:
            raise click.BadOptionUsage("--attach", f"Expected NAME=PATH, got '{raw}'")
        file = Path(path)
        if not file.is_file():
            raise click.BadOptionUsage("--attach", f"Attachment file not found: {path}")
        attachments.append(Attachment.from_path(name, file))
    return attachments


def main():
    skillgate()


if __name__ == "__main__":
    main()
