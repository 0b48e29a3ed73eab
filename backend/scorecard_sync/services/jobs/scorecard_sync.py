"""Job body: pull DHIS2 analytics per organisation unit and push them to ALMA."""

import logging

from scorecard_sync.core.config import settings
from scorecard_sync.core.errors import ExternalFailure
from scorecard_sync.models.schedule import Schedule
from scorecard_sync.services.integrations.alma import AlmaService
from scorecard_sync.services.integrations.dhis2 import DHIS2Service
from scorecard_sync.services.scheduler.runner import JobContext, JobOutcome

logger = logging.getLogger(__name__)


def step_progress(step: int, total: int) -> int:
    """Percentage after ``step`` of ``total`` units (1-based)."""
    if total <= 0:
        return 100
    return round(step / total * 100)


async def run_scorecard_sync(
    schedule: Schedule,
    context: JobContext,
    dhis2: DHIS2Service | None = None,
    alma: AlmaService | None = None,
) -> JobOutcome:
    missing = [f for f in ("ou", "pe", "scorecard") if getattr(schedule, f) in (None, "")]
    if missing:
        return JobOutcome.failed(f"Schedule is missing parameters: {', '.join(missing)}")

    dhis2 = dhis2 or DHIS2Service()
    alma = alma or AlmaService()

    context.report(0, "Fetching organisation units")
    async with dhis2.client() as dhis2_client, alma.client() as alma_client:
        units = await dhis2.get_organisation_units(
            dhis2_client, schedule.ou, schedule.include_children  # type: ignore[arg-type]
        )
        total = len(units)
        if not total:
            return JobOutcome.failed(f"No organisation units found for {schedule.ou}")

        failures = 0
        for step, unit in enumerate(units, start=1):
            unit_id, name = unit.get("id"), unit.get("name", unit.get("id"))
            logger.debug(f"Processing organisation unit {unit_id} ({name})")
            try:
                data = await dhis2.get_analytics(
                    dhis2_client, settings.dhis2_indicator_group, schedule.pe, unit_id  # type: ignore[arg-type]
                )
                await alma.upload(alma_client, schedule.scorecard, data, name)  # type: ignore[arg-type]
            except ExternalFailure as e:
                failures += 1
                logger.warning(f"Step {step} of {total} ({name}) failed: {e}")
                context.report(step_progress(step, total), f"Failed step {step} of {total} ({name})")
                continue
            context.report(step_progress(step, total), f"Completed step {step} of {total} ({name})")

    if failures == total:
        return JobOutcome.failed(f"All {total} organisation units failed")
    if failures:
        return JobOutcome.completed(f"Task completed with {failures} of {total} units failed")
    return JobOutcome.completed()
