"""CLI entrypoint for jobline."""

import json
import logging
from pathlib import Path

import rich_click as click

from jobline import __version__
from jobline.config import Settings
from jobline.orchestrator.controllers import (
    BatchCommand,
    DbInitCommand,
    JobCliController,
    JobIdCommand,
    ListJobsCommand,
    PollCommand,
    QueueStatsCommand,
    ReapCommand,
    SubmitCommand,
    WorkerCommand,
)
from jobline.orchestrator.errors import JobNotFoundError
from jobline.orchestrator.models import JobKind, JobStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = JobCliController()

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="jobline")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Overrides JOBLINE_LOG_LEVEL.",
)
def jobline(log_level: str | None) -> None:
    """Durable job queue with cooperative cancellation."""

    configure_logging(log_level or Settings.from_env().log_level)


@jobline.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def db_init(db_path: Path | None) -> None:
    """Create or upgrade the job store and queue schema."""

    _emit_lines(CONTROLLER.init_db(DbInitCommand(db_path=db_path)))


@jobline.command("serve")
@click.option("--host", default=None, help="Bind host; defaults to JOBLINE_API_HOST.")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=None, help="Bind port.")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API with uvicorn."""

    import uvicorn

    from jobline.api import create_app

    settings = Settings.from_env()
    uvicorn.run(
        create_app(settings),
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=settings.log_level.lower(),
    )


@jobline.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one receive-execute cycle or loop until stopped.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--exit-when-idle/--keep-polling",
    default=False,
    show_default=True,
    help="In loop mode, stop after the first empty receive.",
)
def worker(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    exit_when_idle: bool,
) -> None:
    """Run the continuous job worker."""

    _emit_lines(
        CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
                max_idle_polls=1 if exit_when_idle else None,
            ),
        ),
    )


@jobline.command("batch")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-items",
    type=click.IntRange(min=1, max=100),
    default=None,
    help="Batch size; defaults to JOBLINE_WORKER_BATCH_SIZE.",
)
def batch(db_path: Path | None, max_items: int | None) -> None:
    """Invoke the batch consumer once, like a serverless trigger would."""

    _emit_lines(CONTROLLER.run_batch(BatchCommand(db_path=db_path, max_items=max_items)))


@jobline.command("poll")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many poll cycles.",
)
def poll(db_path: Path | None, max_cycles: int | None) -> None:
    """Local polling harness; JOBLINE_WORKER_CONTINUOUS selects worker or batch mode."""

    _emit_lines(CONTROLLER.run_poller(PollCommand(db_path=db_path, max_cycles=max_cycles)))


@jobline.group()
def submit() -> None:
    """Submit jobs."""


@submit.command("message")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--llm-id", required=True, help="Model identifier.")
@click.option("--thread-id", required=True, help="Conversation thread id.")
@click.option("--message", "message", required=True, help="User message.")
@click.option("--data-contexts", default=None, help="JSON object or array of data contexts.")
@click.option("--graphs", default=None, help="JSON array of graphs.")
def submit_message(  # noqa: PLR0913
    db_path: Path | None,
    llm_id: str,
    thread_id: str,
    message: str,
    data_contexts: str | None,
    graphs: str | None,
) -> None:
    """Submit a `message` job."""

    payload: dict[str, object] = {"llmId": llm_id, "threadId": thread_id, "message": message}
    if data_contexts:
        payload["dataContexts"] = _parse_json_option("--data-contexts", data_contexts)
    if graphs:
        payload["graphs"] = _parse_json_option("--graphs", graphs)
    _emit_lines(
        CONTROLLER.submit(SubmitCommand(db_path=db_path, kind=JobKind.MESSAGE, input=payload)),
    )


@submit.command("tool")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--llm-id", required=True, help="Model identifier.")
@click.option("--thread-id", required=True, help="Conversation thread id.")
@click.option("--tool-call-id", required=True, help="Tool call being answered.")
@click.option("--content", required=True, help="Tool result text, or a JSON array.")
def submit_tool(
    db_path: Path | None,
    llm_id: str,
    thread_id: str,
    tool_call_id: str,
    content: str,
) -> None:
    """Submit a `tool` job."""

    parsed_content: object = content
    if content.lstrip().startswith("["):
        parsed_content = _parse_json_option("--content", content)
    payload = {
        "llmId": llm_id,
        "threadId": thread_id,
        "message": {"content": parsed_content, "tool_call_id": tool_call_id},
    }
    _emit_lines(
        CONTROLLER.submit(SubmitCommand(db_path=db_path, kind=JobKind.TOOL, input=payload)),
    )


@jobline.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--id", "job_id", required=True, help="Job id.")
def cancel(db_path: Path | None, job_id: str) -> None:
    """Cancel a queued or running job."""

    try:
        lines = CONTROLLER.cancel(JobIdCommand(db_path=db_path, job_id=job_id))
    except JobNotFoundError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@jobline.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--id", "job_id", required=True, help="Job id.")
def status(db_path: Path | None, job_id: str) -> None:
    """Show one job."""

    try:
        lines = CONTROLLER.status(JobIdCommand(db_path=db_path, job_id=job_id))
    except JobNotFoundError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@jobline.command("jobs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([value.value for value in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent jobs."""

    _emit_lines(
        CONTROLLER.list_jobs(
            ListJobsCommand(
                db_path=db_path,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@jobline.group()
def queue() -> None:
    """Queue commands."""


@queue.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def queue_stats(db_path: Path | None) -> None:
    """Show queue depth and dead-lettered messages."""

    _emit_lines(CONTROLLER.queue_stats(QueueStatsCommand(db_path=db_path)))


@jobline.command("reap")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--older-than-seconds",
    type=click.IntRange(min=1),
    required=True,
    help="Fail jobs still queued after this many seconds.",
)
def reap(db_path: Path | None, older_than_seconds: int) -> None:
    """Fail jobs that were inserted but never picked up."""

    _emit_lines(
        CONTROLLER.reap(ReapCommand(db_path=db_path, older_than_seconds=older_than_seconds)),
    )


def _parse_json_option(name: str, raw: str) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as error:
        raise click.BadParameter(f"{name} must be valid JSON: {error}") from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    jobline()
