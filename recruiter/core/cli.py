"""Command-line interface for the recruiting outreach engine."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
import structlog

from recruiter.clients.outreach_client import AgentOutreachClient
from recruiter.core.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from recruiter.core.db import (
    DEFAULT_DB_PATH,
    get_candidate,
    get_candidate_progress,
    get_pipeline_stats,
    init_db,
    insert_campaign,
)
from recruiter.core.errors import RecruiterError
from recruiter.outreach.approvals import ApprovalGate
from recruiter.outreach.composer import ClaudeMessageGenerator
from recruiter.outreach.importer import import_candidates
from recruiter.outreach.scheduler import SchedulerLoop
from recruiter.pipeline.stages import seed_default_pipeline
from recruiter.pipeline.state_machine import PipelineStateMachine, PipelineStatus
from recruiter.scoring.scorer import ClaudeScorer, ScoringAdapter
from recruiter.services.notifier import ApprovalNotifier

# Configure structlog for CLI output
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ]
)

log = structlog.get_logger()

STATUS_ORDER = [status.value for status in PipelineStatus]


def db_option(func):
    return click.option("--db", "db_path", type=click.Path(), default=str(DEFAULT_DB_PATH),
                        help="Database path")(func)


def config_option(func):
    return click.option("--config", "config_path", type=click.Path(), default=str(DEFAULT_CONFIG_PATH),
                        help="Config directory path")(func)


def build_scheduler(db: Path, config: Path, settings: Settings) -> SchedulerLoop:
    """Wire the scheduler to its real collaborators."""
    return SchedulerLoop(
        outreach_client=AgentOutreachClient(settings.outreach.agent_url or None),
        generator=ClaudeMessageGenerator(
            config_path=config,
            model=settings.ai.model,
            max_tokens=settings.ai.max_tokens,
            temperature=settings.ai.temperature,
        ),
        scoring=ScoringAdapter(ClaudeScorer(model=settings.ai.model)),
        settings=settings,
        db_path=db,
        notifier=ApprovalNotifier(),
    )


@click.group()
def cli():
    """Recruiter - LinkedIn recruiting pipeline with human approval."""


@cli.command()
@db_option
def init(db_path: str):
    """Create the database and seed the default pipeline."""
    db = Path(db_path)
    init_db(db)
    pipeline_id = seed_default_pipeline(db)
    click.echo(f"Database ready at {db}")
    click.echo(f"Default pipeline: {pipeline_id}")


@cli.command("campaign-add")
@db_option
@click.option("--title", required=True, help="Campaign title")
@click.option("--role", "role_title", required=True, help="Role being hired for")
@click.option("--description", default="", help="Role description")
@click.option("--query", "discovery_query", default=None, help="Discovery search query")
@click.option("--job-spec", "job_spec_path", type=click.Path(exists=True), default=None,
              help="JSON file with the job specification")
@click.option("--pipeline/--no-pipeline", default=True, help="Bind to the default pipeline")
@click.option("--priority", default=1, help="Higher runs first")
def campaign_add(db_path: str, title: str, role_title: str, description: str, discovery_query: Optional[str],
                 job_spec_path: Optional[str], pipeline: bool, priority: int):
    """Create an active campaign."""
    db = Path(db_path)
    init_db(db)

    job_spec = json.loads(Path(job_spec_path).read_text()) if job_spec_path else {}
    pipeline_id = seed_default_pipeline(db) if pipeline else None

    campaign_id = insert_campaign(
        db, title=title, role_title=role_title, role_description=description,
        discovery_query=discovery_query, job_spec=job_spec, pipeline_id=pipeline_id, priority=priority,
    )
    click.echo(f"Created campaign {campaign_id}: {title}")


@cli.command("import")
@db_option
@click.argument("excel_path", type=click.Path(exists=True))
@click.option("--campaign", "campaign_id", type=int, required=True, help="Campaign to import into")
def import_cmd(db_path: str, excel_path: str, campaign_id: int):
    """Import candidates from an Excel file."""
    db = Path(db_path)
    init_db(db)

    try:
        result = import_candidates(Path(excel_path), campaign_id, db)
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"Imported {result['imported']}, skipped {result['skipped']}")


@cli.command()
@db_option
@config_option
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
def run(db_path: str, config_path: str, once: bool):
    """Run the scheduler loop."""
    db = Path(db_path)
    config = Path(config_path)

    init_db(db)
    settings = load_settings(config)
    scheduler = build_scheduler(db, config, settings)

    if once:
        result = asyncio.run(scheduler.run_cycle())
        click.echo(f"Sent: {result['sent']} (failed {result['send_failed']})")
        click.echo(f"Discovered: {result['discovered']}")
        click.echo(f"Approvals created: {result['approvals_created']}")
        click.echo(f"Stages advanced: {result['stages_advanced']}, timed out: {result['timed_out']}")
        for error in result["errors"]:
            click.echo(f"  ✗ {error}")
        return

    click.echo("Scheduler running. Ctrl+C to stop.")
    try:
        asyncio.run(scheduler.start())
    except KeyboardInterrupt:
        scheduler.stop()
        click.echo("\nStopped.")


@cli.command()
@db_option
@click.option("--candidate", "candidate_id", type=int, default=None, help="Show one candidate")
def status(db_path: str, candidate_id: Optional[int]):
    """Show pipeline status."""
    db = Path(db_path)
    init_db(db)

    if candidate_id is not None:
        candidate = get_candidate(db, candidate_id)
        if not candidate:
            click.echo(f"Candidate not found: {candidate_id}")
            return

        click.echo(f"\nCandidate {candidate['id']}: {candidate['name']}")
        click.echo(f"  Title: {candidate['title'] or 'N/A'} at {candidate['company'] or 'N/A'}")
        click.echo(f"  Status: {candidate['pipeline_status']}")
        if candidate["score_bucket"]:
            click.echo(f"  Score: {candidate['total_score']} ({candidate['score_bucket']})")
        if candidate["disqualify_reason"]:
            click.echo(f"  Disqualified: {candidate['disqualify_reason']}")
        for stage in get_candidate_progress(db, candidate_id):
            click.echo(f"  [{stage['status']}] {stage['stage_order']}. {stage['stage_name']}")
        return

    stats = get_pipeline_stats(db)

    click.echo("\nPipeline Status")
    click.echo("───────────────")
    for name in STATUS_ORDER:
        count = stats["statuses"].get(name, 0)
        if count:
            click.echo(f"{name:<22} {count}")
    click.echo("───────────────")
    approvals = stats["approvals"]
    click.echo(f"Pending approvals: {approvals.get('pending', 0)}")
    click.echo(f"Approved (queued): {approvals.get('approved', 0)}")
    click.echo(f"Sent: {approvals.get('sent', 0)}  Failed: {approvals.get('failed', 0)}")


@cli.command()
@db_option
def approvals(db_path: str):
    """List pending approvals."""
    db = Path(db_path)
    init_db(db)

    pending = ApprovalGate(db).list_pending()
    if not pending:
        click.echo("No pending approvals")
        return

    for approval in pending:
        click.echo(f"\n#{approval.id} {approval.approval_type} → {approval.candidate_name}"
                   f" ({approval.candidate_title or 'N/A'}, {approval.candidate_company or 'N/A'})")
        click.echo(f"  {approval.proposed_text}")
        if approval.context:
            click.echo(f"  why: {approval.context}")


@cli.command()
@db_option
@click.argument("approval_id", type=int)
@click.option("--text", "approved_text", default=None, help="Send this text instead of the proposal")
def approve(db_path: str, approval_id: int, approved_text: Optional[str]):
    """Approve a pending action."""
    db = Path(db_path)
    try:
        approval = ApprovalGate(db).approve(approval_id, approved_text)
    except RecruiterError as e:
        raise click.ClickException(str(e))
    click.echo(f"Approved #{approval.id}: {approval.text_to_send}")


@cli.command()
@db_option
@click.argument("approval_id", type=int)
@click.option("--reason", default=None, help="Why it was rejected")
def reject(db_path: str, approval_id: int, reason: Optional[str]):
    """Reject a pending action."""
    db = Path(db_path)
    try:
        ApprovalGate(db).reject(approval_id, reason)
    except RecruiterError as e:
        raise click.ClickException(str(e))
    click.echo(f"Rejected #{approval_id}")


@cli.command()
@db_option
@click.argument("candidate_id", type=int)
@click.argument("target", type=click.Choice(STATUS_ORDER))
@click.option("--force", is_flag=True, help="Skip timing rules (graph edges still apply)")
@click.option("--note", default=None, help="Reason recorded with the transition")
def transition(db_path: str, candidate_id: int, target: str, force: bool, note: Optional[str]):
    """Move a candidate to another pipeline status."""
    db = Path(db_path)
    machine = PipelineStateMachine(db)
    metadata = {"source": "cli"}
    if note:
        metadata["note"] = note

    try:
        if force:
            previous = machine.force_transition(candidate_id, target, metadata)
        else:
            previous = machine.transition_candidate(candidate_id, target, metadata)
    except RecruiterError as e:
        raise click.ClickException(str(e))
    click.echo(f"Candidate {candidate_id}: {previous.value} → {target}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
