"""Click CLI for the Marham doctor directory scraper."""

import json
from typing import Optional

import click

from marham.core.config import DEFAULT_MAX_PAGES, DEFAULT_RESULTS_WANTED, RunInput, get_settings
from marham.core.errors import ConfigurationError
from marham.core.logging_config import setup_logging
from marham.db.session import get_session_factory
from marham.schemas.doctor import DEFAULT_SPECIALTY
from marham.services.orchestrator import AcquisitionOrchestrator
from marham.services.sinks import DatabaseSink, JsonLinesSink
from marham.workers.jobs import enqueue_acquisition


def run_options(command):
    options = [
        click.option("--specialty", default=DEFAULT_SPECIALTY, show_default=True),
        click.option("--city", default="", help="Empty means all cities"),
        click.option(
            "--results-wanted",
            default=str(DEFAULT_RESULTS_WANTED),
            show_default=True,
            help="Record quota; 'inf' for no limit",
        ),
        click.option("--max-pages", default=str(DEFAULT_MAX_PAGES), show_default=True),
        click.option("--details/--no-details", "collect_details", default=True, help="Fetch each profile page"),
        click.option("--start-url", "start_urls", multiple=True, help="Listing URL to traverse instead of the API"),
        click.option("--proxy-url", default=None),
    ]
    for option in reversed(options):
        command = option(command)
    return command


def _run_input(**values) -> RunInput:
    values["start_urls"] = list(values.get("start_urls") or [])
    try:
        return RunInput.from_mapping(values)
    except ConfigurationError as exc:
        raise click.ClickException(f"Invalid input: {exc}") from exc


@click.group()
def cli():
    """Collect doctor profiles from marham.pk."""


@cli.command()
@run_options
@click.option("--output", type=click.Path(dir_okay=False), default=None, help="JSON-lines output file")
@click.option("--database", is_flag=True, help="Store records in the configured database instead")
@click.option("--log-level", default=None)
def run(output: Optional[str], database: bool, log_level: Optional[str], **values):
    """Run one acquisition in the foreground."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    run_input = _run_input(**values)
    if database:
        sink = DatabaseSink(get_session_factory(settings.database_url))
    else:
        sink = JsonLinesSink(output or settings.output_path)
    summary = AcquisitionOrchestrator(run_input, sink, settings).run()
    click.echo(json.dumps(summary.model_dump(mode="json")))


@cli.command()
@run_options
def enqueue(**values):
    """Queue an acquisition for an rq worker."""
    run_input = _run_input(**values)
    job_id = enqueue_acquisition(run_input.model_dump())
    click.echo(job_id)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
