"""
Rate limiting configuration.

The Limiter instance is created in sequencer/__init__.py with no default
limits; this module applies limits to the routes that need them:

    - manual rollover trigger:  ROLLOVER_RATE_LIMIT (default 10/minute)
    - sequencer + staff APIs:   120/minute
    - health check:             exempt

Rate limiting is disabled in testing mode.

Usage:
    from sequencer.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

API_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    rollover_limit = app.config.get("ROLLOVER_RATE_LIMIT", "10/minute")
    view = app.view_functions.get("sequencer.run_rollover")
    if view is not None:
        limiter.limit(rollover_limit)(view)

    for bp_name in ("sequencer", "staff"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(API_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — rollover: %s, api: %s", rollover_limit, API_LIMIT)
