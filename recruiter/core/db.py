"""SQLite database operations.

The database file is shared with the dashboard process, so every write that
depends on a previously read value is a conditional UPDATE (``WHERE status = ?``)
and callers check ``rowcount`` instead of trusting their earlier read.
"""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_DB_PATH = Path("data/recruiter.db")

TRANSITION_ACTIONS = ("pipeline_transition", "pipeline_transition_forced")


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Get a database connection with row factory."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: Optional[datetime] = None) -> str:
    """Serialize a datetime as a sortable UTC ISO string."""
    value = value or utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp; naive values (SQLite defaults) are UTC."""
    parsed = datetime.fromisoformat(value.replace(" ", "T"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def init_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize database with schema."""
    conn = get_connection(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS pipelines (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            is_default INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS pipeline_stages (
            id INTEGER PRIMARY KEY,
            pipeline_id INTEGER NOT NULL REFERENCES pipelines(id) ON DELETE CASCADE,
            stage_order INTEGER NOT NULL,
            name TEXT NOT NULL,
            action_type TEXT NOT NULL CHECK (action_type IN (
                'connection_request', 'message', 'follow_up', 'wait',
                'reminder', 'inmail', 'profile_view', 'withdraw'
            )),
            delay_days INTEGER DEFAULT 0,
            requires_approval INTEGER DEFAULT 1,
            template_name TEXT,
            UNIQUE(pipeline_id, stage_order)
        );

        CREATE TABLE IF NOT EXISTS campaigns (
            id INTEGER PRIMARY KEY,
            title TEXT NOT NULL,
            role_title TEXT NOT NULL,
            role_description TEXT,
            discovery_query TEXT,
            job_spec TEXT DEFAULT '{}',
            pipeline_id INTEGER REFERENCES pipelines(id) ON DELETE SET NULL,
            priority INTEGER DEFAULT 1,
            status TEXT DEFAULT 'active',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS candidates (
            id INTEGER PRIMARY KEY,
            campaign_id INTEGER NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            profile_id TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            title TEXT,
            company TEXT,
            location TEXT,
            linkedin_url TEXT,
            profile_data TEXT,

            pipeline_status TEXT NOT NULL DEFAULT 'identified',

            -- Scoring
            total_score INTEGER,
            score_bucket TEXT,
            score_data TEXT,
            disqualify_reason TEXT,
            personalization_hook TEXT,
            scored_at TIMESTAMP,

            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_candidates_campaign ON candidates(campaign_id);
        CREATE INDEX IF NOT EXISTS idx_candidates_pipeline_status ON candidates(pipeline_status);

        CREATE TABLE IF NOT EXISTS candidate_pipeline_progress (
            id INTEGER PRIMARY KEY,
            candidate_id INTEGER NOT NULL REFERENCES candidates(id) ON DELETE CASCADE,
            pipeline_stage_id INTEGER NOT NULL REFERENCES pipeline_stages(id) ON DELETE CASCADE,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN (
                'pending', 'in_progress', 'completed', 'skipped', 'failed'
            )),
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            metadata TEXT DEFAULT '{}',
            UNIQUE(candidate_id, pipeline_stage_id)
        );

        CREATE INDEX IF NOT EXISTS idx_progress_status ON candidate_pipeline_progress(status);

        CREATE TABLE IF NOT EXISTS approval_queue (
            id INTEGER PRIMARY KEY,
            candidate_id INTEGER NOT NULL REFERENCES candidates(id) ON DELETE CASCADE,
            campaign_id INTEGER NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            approval_type TEXT NOT NULL,
            proposed_text TEXT NOT NULL,
            approved_text TEXT,
            context TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            pipeline_stage_id INTEGER REFERENCES pipeline_stages(id) ON DELETE SET NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            responded_at TIMESTAMP,
            sent_at TIMESTAMP,
            failed_reason TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_approval_queue_status ON approval_queue(status);
        CREATE INDEX IF NOT EXISTS idx_approval_queue_candidate ON approval_queue(candidate_id);

        -- Append-only: audit trail and source of truth for status entry times
        CREATE TABLE IF NOT EXISTS agent_actions (
            id INTEGER PRIMARY KEY,
            candidate_id INTEGER REFERENCES candidates(id) ON DELETE CASCADE,
            campaign_id INTEGER REFERENCES campaigns(id) ON DELETE CASCADE,
            action_type TEXT NOT NULL,
            success INTEGER NOT NULL,
            error_message TEXT,
            metadata TEXT DEFAULT '{}',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_agent_actions_candidate ON agent_actions(candidate_id, action_type);

        CREATE TABLE IF NOT EXISTS rate_limits (
            limit_key TEXT NOT NULL,
            window_start TEXT NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (limit_key, window_start)
        );
    """)

    conn.commit()
    conn.close()


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------


def insert_campaign(
    db_path: Path,
    title: str,
    role_title: str,
    role_description: str = "",
    discovery_query: Optional[str] = None,
    job_spec: Optional[dict] = None,
    pipeline_id: Optional[int] = None,
    priority: int = 1,
    status: str = "active",
) -> int:
    """Insert a campaign. Returns campaign_id."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT INTO campaigns
            (title, role_title, role_description, discovery_query, job_spec, pipeline_id, priority, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (title, role_title, role_description, discovery_query,
             json.dumps(job_spec or {}), pipeline_id, priority, status)
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def get_campaign(db_path: Path, campaign_id: int) -> Optional[sqlite3.Row]:
    """Get a campaign by ID."""
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT * FROM campaigns WHERE id = ?", (campaign_id,))
    row = cursor.fetchone()
    conn.close()
    return row


def get_active_campaigns(db_path: Path) -> list[sqlite3.Row]:
    """Get active campaigns, highest priority first."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM campaigns WHERE status = 'active' ORDER BY priority DESC, id ASC"
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


def insert_candidate(
    db_path: Path,
    campaign_id: int,
    profile_id: str,
    name: str,
    title: Optional[str] = None,
    company: Optional[str] = None,
    location: Optional[str] = None,
    linkedin_url: Optional[str] = None,
    profile_data: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Insert a candidate. Returns candidate_id or None if the profile already exists."""
    ts = to_timestamp(now)
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT INTO candidates
            (campaign_id, profile_id, name, title, company, location, linkedin_url,
             profile_data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (campaign_id, profile_id, name, title, company, location, linkedin_url,
             json.dumps(profile_data or {}), ts, ts)
        )
        conn.commit()
        return cursor.lastrowid
    except sqlite3.IntegrityError:
        return None
    finally:
        conn.close()


def get_candidate(db_path: Path, candidate_id: int) -> Optional[sqlite3.Row]:
    """Get a candidate by ID."""
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT * FROM candidates WHERE id = ?", (candidate_id,))
    row = cursor.fetchone()
    conn.close()
    return row


def get_candidates_by_status(
    db_path: Path,
    status: str,
    campaign_id: Optional[int] = None,
) -> list[sqlite3.Row]:
    """Get candidates in a pipeline status, optionally for one campaign."""
    conn = get_connection(db_path)
    if campaign_id is None:
        cursor = conn.execute(
            "SELECT * FROM candidates WHERE pipeline_status = ? ORDER BY id", (status,)
        )
    else:
        cursor = conn.execute(
            "SELECT * FROM candidates WHERE pipeline_status = ? AND campaign_id = ? ORDER BY id",
            (status, campaign_id)
        )
    rows = cursor.fetchall()
    conn.close()
    return rows


def get_uncontacted_candidates(db_path: Path, campaign_id: int, limit: int) -> list[sqlite3.Row]:
    """Identified, non-disqualified candidates of a campaign that have never had an approval."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT c.* FROM candidates c
        WHERE c.campaign_id = ?
          AND c.pipeline_status = 'identified'
          AND c.disqualify_reason IS NULL
          AND NOT EXISTS (SELECT 1 FROM approval_queue aq WHERE aq.candidate_id = c.id)
        ORDER BY c.created_at ASC, c.id ASC
        LIMIT ?
        """,
        (campaign_id, limit)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def get_unenrolled_candidates(db_path: Path, campaign_id: int) -> list[sqlite3.Row]:
    """Identified, non-disqualified candidates with no pipeline progress rows."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT c.* FROM candidates c
        WHERE c.campaign_id = ?
          AND c.pipeline_status = 'identified'
          AND c.disqualify_reason IS NULL
          AND NOT EXISTS (
              SELECT 1 FROM candidate_pipeline_progress p WHERE p.candidate_id = c.id
          )
        ORDER BY c.created_at ASC, c.id ASC
        """,
        (campaign_id,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def update_candidate_score(
    db_path: Path,
    candidate_id: int,
    score: dict,
    now: Optional[datetime] = None,
) -> None:
    """Store a scoring result. Leaves updated_at alone; it belongs to status changes."""
    conn = get_connection(db_path)
    conn.execute(
        """
        UPDATE candidates
        SET total_score = ?, score_bucket = ?, score_data = ?, disqualify_reason = ?,
            personalization_hook = ?, scored_at = ?
        WHERE id = ?
        """,
        (score.get("total_score"), score.get("bucket"), json.dumps(score),
         score.get("disqualify_reason"), score.get("personalization_hook") or None,
         to_timestamp(now), candidate_id)
    )
    conn.commit()
    conn.close()


def get_status_entered_at(db_path: Path, candidate_id: int, status: str) -> Optional[str]:
    """When the candidate last entered ``status``, from the action log.

    Falls back to the candidate's updated_at when no transition was logged.
    """
    conn = get_connection(db_path)
    cursor = conn.execute(
        f"""
        SELECT COALESCE(
            (SELECT MAX(a.created_at) FROM agent_actions a
             WHERE a.candidate_id = c.id
               AND a.action_type IN ({_placeholders(TRANSITION_ACTIONS)})
               AND json_extract(a.metadata, '$.to') = ?),
            c.updated_at
        ) AS entered_at
        FROM candidates c WHERE c.id = ?
        """,
        (*TRANSITION_ACTIONS, status, candidate_id)
    )
    row = cursor.fetchone()
    conn.close()
    return row["entered_at"] if row else None


def get_status_entries(db_path: Path, status: str) -> list[sqlite3.Row]:
    """All candidates currently in ``status`` with the time they entered it."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        f"""
        SELECT c.id, c.campaign_id,
            COALESCE(
                (SELECT MAX(a.created_at) FROM agent_actions a
                 WHERE a.candidate_id = c.id
                   AND a.action_type IN ({_placeholders(TRANSITION_ACTIONS)})
                   AND json_extract(a.metadata, '$.to') = c.pipeline_status),
                c.updated_at
            ) AS entered_at
        FROM candidates c
        WHERE c.pipeline_status = ?
        ORDER BY c.id
        """,
        (*TRANSITION_ACTIONS, status)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def apply_status_transition(
    db_path: Path,
    candidate_id: int,
    expected_status: str,
    new_status: str,
    action_type: str,
    metadata: dict,
    now: Optional[datetime] = None,
) -> bool:
    """Move a candidate from expected_status to new_status and log it atomically.

    Returns False (and writes nothing) if the candidate is no longer in
    expected_status.
    """
    ts = to_timestamp(now)
    conn = get_connection(db_path)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        cursor = conn.execute(
            """
            UPDATE candidates SET pipeline_status = ?, updated_at = ?
            WHERE id = ? AND pipeline_status = ?
            """,
            (new_status, ts, candidate_id, expected_status)
        )
        if cursor.rowcount == 0:
            conn.execute("ROLLBACK")
            return False

        conn.execute(
            """
            INSERT INTO agent_actions (candidate_id, campaign_id, action_type, success, metadata, created_at)
            SELECT id, campaign_id, ?, 1, ?, ? FROM candidates WHERE id = ?
            """,
            (action_type, json.dumps(metadata), ts, candidate_id)
        )
        conn.execute("COMMIT")
        return True
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def count_candidates_by_status(db_path: Path) -> dict:
    """Count candidates per pipeline status."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT pipeline_status, COUNT(*) AS count FROM candidates GROUP BY pipeline_status"
    )
    counts = {row["pipeline_status"]: row["count"] for row in cursor.fetchall()}
    conn.close()
    return counts


# ---------------------------------------------------------------------------
# Agent actions
# ---------------------------------------------------------------------------


def log_action(
    db_path: Path,
    candidate_id: Optional[int],
    campaign_id: Optional[int],
    action_type: str,
    success: bool,
    metadata: Optional[dict] = None,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Append an entry to the agent action log."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT INTO agent_actions
            (candidate_id, campaign_id, action_type, success, error_message, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (candidate_id, campaign_id, action_type, 1 if success else 0, error_message,
             json.dumps(metadata or {}), to_timestamp(now))
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def get_actions(
    db_path: Path,
    candidate_id: Optional[int] = None,
    action_type: Optional[str] = None,
) -> list[sqlite3.Row]:
    """Get logged actions, oldest first."""
    clauses = []
    params: list = []
    if candidate_id is not None:
        clauses.append("candidate_id = ?")
        params.append(candidate_id)
    if action_type is not None:
        clauses.append("action_type = ?")
        params.append(action_type)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = get_connection(db_path)
    cursor = conn.execute(f"SELECT * FROM agent_actions {where} ORDER BY id", params)
    rows = cursor.fetchall()
    conn.close()
    return rows


# ---------------------------------------------------------------------------
# Pipelines and stage progress
# ---------------------------------------------------------------------------


def insert_pipeline(
    db_path: Path,
    name: str,
    stages: list[dict],
    description: str = "",
    is_default: bool = False,
) -> int:
    """Insert a pipeline with its ordered stages. Returns pipeline_id."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            "INSERT INTO pipelines (name, description, is_default) VALUES (?, ?, ?)",
            (name, description, 1 if is_default else 0)
        )
        pipeline_id = cursor.lastrowid
        for order, stage in enumerate(stages, start=1):
            conn.execute(
                """
                INSERT INTO pipeline_stages
                (pipeline_id, stage_order, name, action_type, delay_days, requires_approval, template_name)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (pipeline_id, stage.get("stage_order", order), stage.get("name", stage["action_type"]),
                 stage["action_type"], stage.get("delay_days", 0),
                 1 if stage.get("requires_approval", True) else 0, stage.get("template_name"))
            )
        conn.commit()
        return pipeline_id
    finally:
        conn.close()


def get_default_pipeline_id(db_path: Path) -> Optional[int]:
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT id FROM pipelines WHERE is_default = 1 ORDER BY id LIMIT 1")
    row = cursor.fetchone()
    conn.close()
    return row["id"] if row else None


def get_pipeline_stages(db_path: Path, pipeline_id: int) -> list[sqlite3.Row]:
    """Get a pipeline's stages in order."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM pipeline_stages WHERE pipeline_id = ? ORDER BY stage_order",
        (pipeline_id,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def create_candidate_progress(
    db_path: Path,
    candidate_id: int,
    stage_ids: Iterable[int],
    now: Optional[datetime] = None,
) -> bool:
    """Create progress rows: first stage in_progress, the rest pending.

    Returns False if the candidate was already enrolled.
    """
    stage_ids = list(stage_ids)
    if not stage_ids:
        return False

    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO candidate_pipeline_progress
            (candidate_id, pipeline_stage_id, status, started_at)
            VALUES (?, ?, 'in_progress', ?)
            """,
            (candidate_id, stage_ids[0], to_timestamp(now))
        )
        if cursor.rowcount == 0:
            conn.rollback()
            return False
        conn.executemany(
            """
            INSERT OR IGNORE INTO candidate_pipeline_progress (candidate_id, pipeline_stage_id, status)
            VALUES (?, ?, 'pending')
            """,
            [(candidate_id, stage_id) for stage_id in stage_ids[1:]]
        )
        conn.commit()
        return True
    finally:
        conn.close()


def get_in_progress_stages(db_path: Path, campaign_id: int) -> list[sqlite3.Row]:
    """In-progress stage rows for a campaign's candidates, joined with stage and candidate."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT p.id AS progress_id, p.candidate_id, p.pipeline_stage_id, p.started_at,
               s.pipeline_id, s.stage_order, s.name AS stage_name, s.action_type,
               s.delay_days, s.requires_approval, s.template_name,
               c.pipeline_status, c.campaign_id
        FROM candidate_pipeline_progress p
        JOIN pipeline_stages s ON s.id = p.pipeline_stage_id
        JOIN candidates c ON c.id = p.candidate_id
        WHERE p.status = 'in_progress' AND c.campaign_id = ?
        ORDER BY p.started_at ASC, p.id ASC
        """,
        (campaign_id,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def get_candidate_progress(db_path: Path, candidate_id: int) -> list[sqlite3.Row]:
    """A candidate's stage progress in stage order."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT p.*, s.stage_order, s.action_type, s.name AS stage_name
        FROM candidate_pipeline_progress p
        JOIN pipeline_stages s ON s.id = p.pipeline_stage_id
        WHERE p.candidate_id = ?
        ORDER BY s.stage_order
        """,
        (candidate_id,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def update_progress_status(
    db_path: Path,
    candidate_id: int,
    stage_id: int,
    expected_status: str,
    new_status: str,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Conditionally move one progress row. Returns False if it was not in expected_status."""
    ts = to_timestamp(now)
    started_at = ts if new_status == "in_progress" else None
    completed_at = ts if new_status in ("completed", "skipped", "failed") else None

    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        UPDATE candidate_pipeline_progress
        SET status = ?,
            started_at = COALESCE(?, started_at),
            completed_at = COALESCE(?, completed_at),
            metadata = COALESCE(?, metadata)
        WHERE candidate_id = ? AND pipeline_stage_id = ? AND status = ?
        """,
        (new_status, started_at, completed_at,
         json.dumps(metadata) if metadata is not None else None,
         candidate_id, stage_id, expected_status)
    )
    conn.commit()
    updated = cursor.rowcount > 0
    conn.close()
    return updated


# ---------------------------------------------------------------------------
# Approval queue
# ---------------------------------------------------------------------------


def insert_approval(
    db_path: Path,
    candidate_id: int,
    campaign_id: int,
    approval_type: str,
    proposed_text: str,
    context: Optional[str] = None,
    pipeline_stage_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Insert a pending approval. Returns approval_id."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT INTO approval_queue
            (candidate_id, campaign_id, approval_type, proposed_text, context, pipeline_stage_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (candidate_id, campaign_id, approval_type, proposed_text, context,
             pipeline_stage_id, to_timestamp(now))
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


_APPROVAL_SELECT = """
    SELECT aq.*, c.name AS candidate_name, c.title AS candidate_title,
           c.company AS candidate_company, c.linkedin_url, c.profile_id
    FROM approval_queue aq
    JOIN candidates c ON c.id = aq.candidate_id
"""


def get_approval(db_path: Path, approval_id: int) -> Optional[sqlite3.Row]:
    """Get an approval (with candidate display fields) by ID."""
    conn = get_connection(db_path)
    cursor = conn.execute(f"{_APPROVAL_SELECT} WHERE aq.id = ?", (approval_id,))
    row = cursor.fetchone()
    conn.close()
    return row


def get_approvals_by_status(db_path: Path, status: str) -> list[sqlite3.Row]:
    """Get approvals with a given status, oldest first."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        f"{_APPROVAL_SELECT} WHERE aq.status = ? ORDER BY aq.created_at ASC, aq.id ASC",
        (status,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def get_latest_stage_approval(db_path: Path, candidate_id: int, stage_id: int) -> Optional[sqlite3.Row]:
    """Most recent approval created for a candidate's pipeline stage."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT * FROM approval_queue
        WHERE candidate_id = ? AND pipeline_stage_id = ?
        ORDER BY id DESC LIMIT 1
        """,
        (candidate_id, stage_id)
    )
    row = cursor.fetchone()
    conn.close()
    return row


def candidate_has_approval(db_path: Path, candidate_id: int) -> bool:
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT 1 FROM approval_queue WHERE candidate_id = ?", (candidate_id,))
    exists = cursor.fetchone() is not None
    conn.close()
    return exists


def update_approval_status(
    db_path: Path,
    approval_id: int,
    expected_status: str,
    new_status: str,
    fields: Optional[dict] = None,
) -> bool:
    """Conditionally move an approval and set extra columns. False if not in expected_status."""
    fields = fields or {}
    assignments = ", ".join(f"{column} = ?" for column in fields)
    set_clause = "status = ?" + (f", {assignments}" if assignments else "")

    conn = get_connection(db_path)
    cursor = conn.execute(
        f"UPDATE approval_queue SET {set_clause} WHERE id = ? AND status = ?",
        (new_status, *fields.values(), approval_id, expected_status)
    )
    conn.commit()
    updated = cursor.rowcount > 0
    conn.close()
    return updated


def update_approval_text(db_path: Path, approval_id: int, approved_text: str) -> bool:
    """Set the override text on a still-pending approval."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        "UPDATE approval_queue SET approved_text = ? WHERE id = ? AND status = 'pending'",
        (approved_text, approval_id)
    )
    conn.commit()
    updated = cursor.rowcount > 0
    conn.close()
    return updated


def count_approvals_by_status(db_path: Path) -> dict:
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT status, COUNT(*) AS count FROM approval_queue GROUP BY status")
    counts = {row["status"]: row["count"] for row in cursor.fetchall()}
    conn.close()
    return counts


# ---------------------------------------------------------------------------
# Rate limit counters
# ---------------------------------------------------------------------------


def get_counter(db_path: Path, limit_key: str, window_start: str) -> int:
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT count FROM rate_limits WHERE limit_key = ? AND window_start = ?",
        (limit_key, window_start)
    )
    row = cursor.fetchone()
    conn.close()
    return row["count"] if row else 0


def increment_counter(db_path: Path, limit_key: str, window_start: str) -> int:
    """Atomically increment a window counter. Returns the new count."""
    conn = get_connection(db_path)
    try:
        conn.execute(
            """
            INSERT INTO rate_limits (limit_key, window_start, count) VALUES (?, ?, 1)
            ON CONFLICT (limit_key, window_start) DO UPDATE SET count = count + 1
            """,
            (limit_key, window_start)
        )
        cursor = conn.execute(
            "SELECT count FROM rate_limits WHERE limit_key = ? AND window_start = ?",
            (limit_key, window_start)
        )
        count = cursor.fetchone()["count"]
        conn.commit()
        return count
    finally:
        conn.close()


def get_pipeline_stats(db_path: Path) -> dict:
    """Get pipeline statistics."""
    return {
        "statuses": count_candidates_by_status(db_path),
        "approvals": count_approvals_by_status(db_path),
    }


def _placeholders(values: Iterable) -> str:
    return ", ".join("?" for _ in values)
