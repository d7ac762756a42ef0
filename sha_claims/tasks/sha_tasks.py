"""
SHA Celery Tasks
Workflow automation and periodic reconciliation
Source: https://docs.celeryq.dev/en/stable/userguide/tasks.html
Verified: 2025-11-02

Each task runs its coroutine with asyncio.run on a short-lived engine, so no
connection outlives the event loop that opened it.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from sha_claims.api.config import get_settings
from sha_claims.db.connection import create_session_maker
from sha_claims.services.container import ServiceContainer, build_container
from sha_claims.tasks.celery_app import celery_app
from sha_claims.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CeleryAutomationScheduler:
    """
    Enqueues automated workflow steps on the Celery worker.

    Publishing to the broker blocks, so it runs in a worker thread instead of
    on the event loop serving the request.
    """

    async def enqueue(self, workflow_id: UUID, triggered_by: str) -> None:
        await asyncio.to_thread(
            process_automated_steps_task.delay, str(workflow_id), triggered_by
        )
        logger.info(f"Enqueued automation for workflow {workflow_id}")


async def _with_container(work: Callable[[ServiceContainer], Awaitable[T]]) -> T:
    settings = get_settings()
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    container = build_container(
        create_session_maker(engine), settings, CeleryAutomationScheduler()
    )
    try:
        return await work(container)
    finally:
        await container.close()
        await engine.dispose()


@celery_app.task(name="sha.process_automated_steps")
def process_automated_steps_task(workflow_id: str, triggered_by: str) -> dict[str, Any]:
    """
    Run the runnable automated steps of a workflow.

    Args:
        workflow_id: Workflow instance UUID
        triggered_by: User or system actor that caused the enqueue

    Returns:
        Workflow status and current step after the run
    """
    logger.info(f"Processing automated steps for workflow {workflow_id}")

    async def run(container: ServiceContainer) -> dict[str, Any]:
        workflow = await container.workflows.process_automated_steps(
            UUID(workflow_id), triggered_by
        )
        return {
            "workflow_id": workflow_id,
            "overall_status": workflow.overall_status.value,
            "current_step": workflow.current_step,
        }

    result = asyncio.run(_with_container(run))
    logger.info(f"Workflow {workflow_id} automation finished: {result['overall_status']}")
    return result


@celery_app.task(name="sha.reconcile")
def reconcile_task() -> dict[str, Any]:
    """Periodic reconciliation sweep; returns the sweep report."""

    async def run(container: ServiceContainer) -> dict[str, Any]:
        report = await container.reconciliation.reconcile()
        return asdict(report)

    report = asyncio.run(_with_container(run))
    if report["errors"]:
        logger.warning(f"Reconciliation finished with {len(report['errors'])} errors")
    return {
        key: value.isoformat() if hasattr(value, "isoformat") else value
        for key, value in report.items()
    }
