"""Revenue analysis job functions."""

import logging
from datetime import date

from sqlalchemy.orm import Session

from app.core.database import get_sync_engine
from app.services.revenue_engine import RevenueEngine

logger = logging.getLogger(__name__)


def run_revenue_analysis(
    organization_id: str,
    as_of: str | None = None,
    user_id: str | None = None,
) -> dict:
    """Run every persisting analyzer for one organization.

    This function is executed by an RQ worker. It runs leakage detection,
    service mix, coding and contract analysis (and fee analysis when the
    organization has a default fee schedule) with their default windows,
    then commits the ledger writes in one transaction.

    Args:
        organization_id: Organization to analyze.
        as_of: ISO reference date; today when omitted.
        user_id: User who requested the run.

    Returns:
        Dictionary with per-analyzer persistence counts.
    """
    logger.info(f"Starting revenue analysis for organization_id={organization_id}")
    reference = date.fromisoformat(as_of) if as_of else None

    try:
        with Session(get_sync_engine()) as session:
            engine = RevenueEngine(session, organization_id, user_id=user_id)
            analyzers = engine.run_all(as_of=reference)
            session.commit()

        logger.info(f"Revenue analysis complete for {organization_id}: {analyzers}")
        return {
            "success": True,
            "organization_id": organization_id,
            "as_of": as_of,
            "analyzers": analyzers,
        }

    except Exception as e:
        logger.exception(f"Error running revenue analysis for {organization_id}: {e}")
        return {"success": False, "organization_id": organization_id, "error": str(e)}
