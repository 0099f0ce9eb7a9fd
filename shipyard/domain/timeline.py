"""Deployment stage timeline event helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def domain_build_stage_event(
    stage: str,
    status: str,
    unit_name: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, object]:
    """Build one structured deployment timeline event.

    Args:
        stage: Deployment phase or unit step name.
        status: Stage status marker (`started`, `completed`, `failed`, `skipped`).
        unit_name: Optional unit the event belongs to.
        details: Optional structured details object.

    Returns:
        dict[str, object]: Structured timeline event.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    event_payload: dict[str, object] = {
        "stage": stage,
        "status": status,
        "at_utc": datetime.now(timezone.utc).isoformat(),
    }
    if unit_name is not None:
        event_payload["unit"] = unit_name
    if details is not None:
        event_payload["details"] = details
    return event_payload


def domain_timeline_failed_stages(timeline: list[dict[str, object]]) -> list[str]:
    """Return stage labels of failed events in timeline order."""

    failed_stages: list[str] = []
    for event in timeline:
        if event.get("status") != "failed":
            continue
        unit_name = event.get("unit")
        stage = str(event.get("stage"))
        failed_stages.append(f"{stage}:{unit_name}" if unit_name else stage)
    return failed_stages
