import logging
from typing import Any, Mapping, Optional

from redis import Redis
from rq import Queue

from marham.core.config import RunInput, get_settings
from marham.core.logging_config import setup_logging
from marham.db.session import get_session_factory
from marham.services.orchestrator import AcquisitionOrchestrator
from marham.services.sinks import DatabaseSink

logger = logging.getLogger(__name__)

JOB_TIMEOUT_SECONDS = 60 * 60


def run_acquisition(run_input: Optional[Mapping[str, Any]] = None) -> dict:
    settings = get_settings()
    setup_logging(settings.log_level)
    parsed = RunInput.from_mapping(run_input)
    sink = DatabaseSink(get_session_factory(settings.database_url))
    summary = AcquisitionOrchestrator(parsed, sink, settings).run()
    logger.info(
        "[jobs] specialty=%s city=%s saved=%s stages=%s",
        parsed.specialty,
        parsed.city or "all",
        summary.saved,
        [stage.value for stage in summary.stages],
    )
    return summary.model_dump(mode="json")


def enqueue_acquisition(run_input: Optional[Mapping[str, Any]] = None, queue: Optional[Queue] = None) -> str:
    """Validate ``run_input`` and queue a run on Redis. Returns the rq job id."""
    parsed = RunInput.from_mapping(run_input)
    if queue is None:
        settings = get_settings()
        queue = Queue(settings.queue_name, connection=Redis.from_url(settings.redis_url))
    job = queue.enqueue(run_acquisition, parsed.model_dump(), job_timeout=JOB_TIMEOUT_SECONDS)
    logger.info("[jobs] enqueued acquisition %s for %s", job.id, parsed.specialty)
    return job.id
