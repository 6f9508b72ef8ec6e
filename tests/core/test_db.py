import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from recruiter.core.db import (
    apply_status_transition,
    create_candidate_progress,
    get_actions,
    get_active_campaigns,
    get_candidate,
    get_candidate_progress,
    get_counter,
    get_pipeline_stages,
    get_pipeline_stats,
    get_status_entered_at,
    get_uncontacted_candidates,
    get_unenrolled_candidates,
    increment_counter,
    init_db,
    insert_approval,
    insert_campaign,
    insert_candidate,
    insert_pipeline,
    log_action,
    parse_timestamp,
    to_timestamp,
    update_candidate_score,
    update_progress_status,
)

T0 = datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc)


def _setup(tmpdir):
    db_path = Path(tmpdir) / "test.db"
    init_db(db_path)
    campaign_id = insert_campaign(db_path, "Search", "VP Marketing")
    return db_path, campaign_id


def test_init_db_creates_tables():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, _ = _setup(tmpdir)
        init_db(db_path)  # idempotent
        stats = get_pipeline_stats(db_path)
        assert stats == {"statuses": {}, "approvals": {}}


def test_insert_candidate_is_idempotent_by_profile():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, campaign_id = _setup(tmpdir)

        first = insert_candidate(db_path, campaign_id, "jane-doe", "Jane Doe", now=T0)
        second = insert_candidate(db_path, campaign_id, "jane-doe", "Jane D.", now=T0)

        assert first is not None
        assert second is None
        candidate = get_candidate(db_path, first)
        assert candidate["pipeline_status"] == "identified"
        assert candidate["name"] == "Jane Doe"


def test_timestamps_round_trip_as_utc():
    local = datetime(2026, 3, 2, 11, 0, tzinfo=timezone(timedelta(hours=-7)))
    assert parse_timestamp(to_timestamp(local)) == T0
    # SQLite CURRENT_TIMESTAMP values are naive UTC
    assert parse_timestamp("2026-03-02 18:00:00") == T0


def test_active_campaigns_ordered_by_priority():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, low = _setup(tmpdir)
        high = insert_campaign(db_path, "Urgent", "CFO", priority=5)
        insert_campaign(db_path, "Paused", "CTO", priority=9, status="paused")

        assert [c["id"] for c in get_active_campaigns(db_path)] == [high, low]


def test_apply_status_transition_is_conditional():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, campaign_id = _setup(tmpdir)
        candidate_id = insert_candidate(db_path, campaign_id, "p1", "Pat", now=T0)

        assert apply_status_transition(db_path, candidate_id, "identified", "connection_sent",
                                       "pipeline_transition", {"from": "identified", "to": "connection_sent"},
                                       now=T0)
        # Stale expectation: nothing written
        assert not apply_status_transition(db_path, candidate_id, "identified", "archived",
                                           "pipeline_transition", {"from": "identified", "to": "archived"},
                                           now=T0)

        assert get_candidate(db_path, candidate_id)["pipeline_status"] == "connection_sent"
        actions = get_actions(db_path, candidate_id=candidate_id)
        assert len(actions) == 1
        assert actions[0]["campaign_id"] == campaign_id
        assert json.loads(actions[0]["metadata"])["to"] == "connection_sent"


def test_status_entered_at_uses_latest_transition_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, campaign_id = _setup(tmpdir)
        candidate_id = insert_candidate(db_path, campaign_id, "p1", "Pat", now=T0)

        # No transition logged yet: falls back to updated_at
        assert parse_timestamp(get_status_entered_at(db_path, candidate_id, "identified")) == T0

        later = T0 + timedelta(hours=5)
        apply_status_transition(db_path, candidate_id, "identified", "connection_sent",
                                "pipeline_transition", {"from": "identified", "to": "connection_sent"},
                                now=later)
        # Unrelated actions do not count as status entries
        log_action(db_path, candidate_id, campaign_id, "reminder", True, {"to": "connection_sent"},
                   now=later + timedelta(hours=1))

        entered = get_status_entered_at(db_path, candidate_id, "connection_sent")
        assert parse_timestamp(entered) == later


def test_score_update_leaves_updated_at_alone():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, campaign_id = _setup(tmpdir)
        candidate_id = insert_candidate(db_path, campaign_id, "p1", "Pat", now=T0)

        update_candidate_score(db_path, candidate_id, {"total_score": 70, "bucket": "Warm"},
                               now=T0 + timedelta(days=1))

        candidate = get_candidate(db_path, candidate_id)
        assert candidate["total_score"] == 70
        assert candidate["score_bucket"] == "Warm"
        assert parse_timestamp(candidate["updated_at"]) == T0


def test_disqualified_candidates_excluded_from_contact_queries():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, campaign_id = _setup(tmpdir)
        ok = insert_candidate(db_path, campaign_id, "ok", "Ok", now=T0)
        bad = insert_candidate(db_path, campaign_id, "bad", "Bad", now=T0)
        contacted = insert_candidate(db_path, campaign_id, "done", "Done", now=T0)
        update_candidate_score(db_path, bad, {"total_score": 0, "bucket": "Cold", "disqualify_reason": "x"})
        insert_approval(db_path, contacted, campaign_id, "connection_request", "Hi")

        assert [c["id"] for c in get_uncontacted_candidates(db_path, campaign_id, 10)] == [ok]
        assert [c["id"] for c in get_unenrolled_candidates(db_path, campaign_id)] == [ok, contacted]


def test_candidate_progress_enrolment():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, campaign_id = _setup(tmpdir)
        candidate_id = insert_candidate(db_path, campaign_id, "p1", "Pat", now=T0)
        pipeline_id = insert_pipeline(db_path, "P", [
            {"action_type": "connection_request"},
            {"action_type": "wait", "delay_days": 3},
        ])
        stage_ids = [s["id"] for s in get_pipeline_stages(db_path, pipeline_id)]

        assert create_candidate_progress(db_path, candidate_id, stage_ids, now=T0)
        assert not create_candidate_progress(db_path, candidate_id, stage_ids, now=T0)

        progress = get_candidate_progress(db_path, candidate_id)
        assert [row["status"] for row in progress] == ["in_progress", "pending"]
        assert [row["action_type"] for row in progress] == ["connection_request", "wait"]

        first = stage_ids[0]
        assert update_progress_status(db_path, candidate_id, first, "in_progress", "completed", now=T0)
        assert not update_progress_status(db_path, candidate_id, first, "in_progress", "completed", now=T0)


def test_increment_counter():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path, _ = _setup(tmpdir)

        assert get_counter(db_path, "message", "day:2026-03-02") == 0
        assert increment_counter(db_path, "message", "day:2026-03-02") == 1
        assert increment_counter(db_path, "message", "day:2026-03-02") == 2
        assert increment_counter(db_path, "message", "day:2026-03-03") == 1
        assert get_counter(db_path, "message", "day:2026-03-02") == 2
