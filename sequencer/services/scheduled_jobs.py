"""
Pro-Move Sequencer
Scheduled Jobs.

Jobs:
    - weekly_plan_rollover: ticks every active organization for all active roles
    - site_reconciliation: reconciles every site whose rollover instant has
      passed and whose last week has no successful reconcile entry yet

Both are idempotent, so running them more often than needed is harmless.
"""

from __future__ import annotations

import logging
from typing import Any

from sequencer.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Weekly Plan Rollover
# ═══════════════════════════════════════════════════════════════════════════

@register_job("weekly_plan_rollover")
def weekly_plan_rollover(app) -> dict[str, Any]:
    """Tick the weekly plan pipeline for every active organization."""
    from sequencer.services.plan_pipeline import rollover_all_orgs

    results = rollover_all_orgs(clock=app.extensions.get("sequencer_clock"))
    logger.info("Weekly plan rollover: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Site Reconciliation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("site_reconciliation")
def site_reconciliation(app) -> dict[str, Any]:
    """Reconcile last week's completion for every site that has rolled over."""
    from sequencer.services.reconciler import reconcile_due_sites

    results = reconcile_due_sites(clock=app.extensions.get("sequencer_clock"))
    logger.info("Site reconciliation: %s", results)
    return results
