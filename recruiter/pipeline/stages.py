"""Pipeline definitions and per-candidate stage progress."""

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Optional

import structlog

from recruiter.core.db import (
    DEFAULT_DB_PATH,
    create_candidate_progress,
    get_candidate_progress,
    get_default_pipeline_id,
    get_pipeline_stages,
    insert_pipeline,
    parse_timestamp,
    update_progress_status,
)
from recruiter.pipeline.state_machine import PipelineStatus

log = structlog.get_logger()


# Stages that touch the external network and therefore go through approval
OUTBOUND_ACTIONS = frozenset({
    "connection_request", "message", "follow_up", "inmail", "profile_view", "withdraw",
})

# Status a candidate moves to once an action of this kind has been sent
STATUS_AFTER_SEND = MappingProxyType({
    "connection_request": PipelineStatus.CONNECTION_SENT,
    "message": PipelineStatus.MESSAGE_1_SENT,
    "follow_up": PipelineStatus.MESSAGE_2_SENT,
    "inmail": PipelineStatus.INMAIL_SENT,
    "withdraw": PipelineStatus.ARCHIVED,
})

DEFAULT_PIPELINE_STAGES = [
    {"name": "Send Connection Request", "action_type": "connection_request", "delay_days": 0,
     "requires_approval": True, "template_name": "connection_request_hook"},
    {"name": "Wait for Acceptance", "action_type": "wait", "delay_days": 3, "requires_approval": False},
    {"name": "Send Introduction Message", "action_type": "message", "delay_days": 1,
     "requires_approval": True, "template_name": "message_1"},
    {"name": "Follow Up", "action_type": "follow_up", "delay_days": 5,
     "requires_approval": True, "template_name": "message_2"},
    {"name": "Internal Reminder", "action_type": "reminder", "delay_days": 7, "requires_approval": False},
]


def seed_default_pipeline(db_path: Path = DEFAULT_DB_PATH) -> int:
    """Create the default 5-stage pipeline if none exists. Returns its id."""
    existing = get_default_pipeline_id(db_path)
    if existing is not None:
        return existing

    pipeline_id = insert_pipeline(
        db_path,
        name="Standard Outreach",
        description="Default 5-stage outreach sequence: connect, wait, message, follow-up, reminder",
        stages=DEFAULT_PIPELINE_STAGES,
        is_default=True,
    )
    log.info("default_pipeline_seeded", pipeline_id=pipeline_id)
    return pipeline_id


def enroll_candidate(
    db_path: Path,
    candidate_id: int,
    pipeline_id: int,
    now: Optional[datetime] = None,
) -> bool:
    """Start a candidate on the first stage of a pipeline. False if already enrolled."""
    stages = get_pipeline_stages(db_path, pipeline_id)
    enrolled = create_candidate_progress(db_path, candidate_id, [s["id"] for s in stages], now=now)
    if enrolled:
        log.info("candidate_enrolled", candidate_id=candidate_id, pipeline_id=pipeline_id)
    return enrolled


def stage_is_due(stage_row: sqlite3.Row, now: datetime) -> bool:
    """True once delay_days have passed since the stage started."""
    if not stage_row["started_at"]:
        return False
    started = parse_timestamp(stage_row["started_at"])
    return now - started >= timedelta(days=stage_row["delay_days"] or 0)


def complete_stage(
    db_path: Path,
    candidate_id: int,
    stage_id: int,
    now: Optional[datetime] = None,
    metadata: Optional[dict] = None,
) -> Optional[int]:
    """Mark an in-progress stage completed and start the next pending one.

    Returns the id of the stage that was started, or None at the end of the
    pipeline (or if the stage was not in progress).
    """
    if not update_progress_status(db_path, candidate_id, stage_id, "in_progress", "completed",
                                  metadata=metadata, now=now):
        log.warning("stage_not_in_progress", candidate_id=candidate_id, stage_id=stage_id)
        return None

    for row in get_candidate_progress(db_path, candidate_id):
        if row["status"] != "pending":
            continue
        if update_progress_status(db_path, candidate_id, row["pipeline_stage_id"], "pending", "in_progress", now=now):
            log.info("stage_started", candidate_id=candidate_id, stage_id=row["pipeline_stage_id"],
                     action_type=row["action_type"])
            return row["pipeline_stage_id"]

    log.info("pipeline_finished", candidate_id=candidate_id)
    return None


def close_stage(
    db_path: Path,
    candidate_id: int,
    stage_id: int,
    status: str,
    reason: str,
    now: Optional[datetime] = None,
) -> bool:
    """End an in-progress stage as skipped or failed; the pipeline halts there."""
    closed = update_progress_status(db_path, candidate_id, stage_id, "in_progress", status,
                                    metadata={"reason": reason}, now=now)
    if closed:
        log.info("stage_closed", candidate_id=candidate_id, stage_id=stage_id, status=status, reason=reason)
    return closed
