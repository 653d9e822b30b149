"""
Regulatory Truth Routes
=======================

API route handlers for the Regulatory Truth Service.

Routes:
- rules: published rules as of a date, with citations
- status: pipeline health snapshot
- admin: manual triggers, sign-off and dead-letter replay
"""

from services.regulatory_truth.routes import admin, rules, status


__all__ = ["admin", "rules", "status"]
