"""Excel candidate importer."""

from pathlib import Path

import structlog
from openpyxl import Workbook, load_workbook

from recruiter.clients.outreach_client import profile_id_from_url
from recruiter.core.db import DEFAULT_DB_PATH, insert_candidate

log = structlog.get_logger()

OPTIONAL_COLUMNS = ("title", "company", "location")


def _cell(row: tuple, col_map: dict, name: str):
    idx = col_map.get(name)
    if idx is None or idx >= len(row):
        return None
    value = row[idx]
    if isinstance(value, str):
        value = value.strip()
    return value or None


def import_candidates(excel_path: Path, campaign_id: int, db_path: Path = DEFAULT_DB_PATH) -> dict:
    """Import candidates from an Excel file into a campaign.

    Expected columns: name, linkedin_url, title, company, location

    Returns dict with imported and skipped counts.
    """
    wb = load_workbook(excel_path)
    ws = wb.active

    # Get header row
    headers = [str(cell.value).lower().strip() if cell.value else "" for cell in ws[1]]

    required = {"name", "linkedin_url"}
    if not required.issubset(set(headers)):
        raise ValueError(f"Excel must have columns: {required}. Found: {headers}")

    col_map = {name: idx for idx, name in enumerate(headers)}

    imported = 0
    skipped = 0

    for row in ws.iter_rows(min_row=2, values_only=True):
        if not any(row):
            continue

        name = _cell(row, col_map, "name")
        linkedin_url = _cell(row, col_map, "linkedin_url")
        profile_id = profile_id_from_url(linkedin_url)

        if not name or not profile_id:
            log.warning("skipping_row_missing_fields", name=name, linkedin_url=linkedin_url)
            skipped += 1
            continue

        candidate_id = insert_candidate(
            db_path=db_path,
            campaign_id=campaign_id,
            profile_id=profile_id,
            name=name,
            linkedin_url=linkedin_url,
            **{column: _cell(row, col_map, column) for column in OPTIONAL_COLUMNS},
        )

        if candidate_id:
            log.info("candidate_imported", profile_id=profile_id, candidate_id=candidate_id)
            imported += 1
        else:
            log.info("candidate_skipped_duplicate", profile_id=profile_id)
            skipped += 1

    return {"imported": imported, "skipped": skipped}


def create_example_excel(output_path: Path) -> None:
    """Create an example Excel file showing expected format."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Candidates"

    ws.append(["name", "linkedin_url", "title", "company", "location"])
    ws.append([
        "Sarah Chen",
        "https://www.linkedin.com/in/sarahchen",
        "VP Marketing",
        "Glossy Brand",
        "Denver, CO",
    ])
    ws.append([
        "Mike Johnson",
        "https://www.linkedin.com/in/mikej",
        "Head of Growth",
        "Acme Co",
        "Boulder, CO",
    ])

    wb.save(output_path)
