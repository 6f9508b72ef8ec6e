"""Core infrastructure: CLI, config, database, errors."""

from recruiter.core.config import (
    Settings,
    WorkingHoursConfig,
    RateLimitConfig,
    PacingConfig,
    SchedulerConfig,
    MessageTemplate,
    load_settings,
    load_templates,
    get_template_by_name,
    render_template,
)
from recruiter.core.db import (
    init_db,
    insert_campaign,
    get_campaign,
    get_active_campaigns,
    insert_candidate,
    get_candidate,
    get_candidates_by_status,
    log_action,
    get_actions,
    get_pipeline_stats,
)
from recruiter.core.errors import (
    RecruiterError,
    CandidateNotFound,
    InvalidTransition,
    ConcurrentStatusChange,
    TimingNotElapsed,
    ExternalActionFailure,
    ApprovalNotFound,
    ApprovalStateError,
)
