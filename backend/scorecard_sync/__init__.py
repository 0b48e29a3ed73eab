"""Scorecard Sync: cron-scheduled DHIS2 analytics uploads to ALMA scorecards."""

__version__ = "0.1.0"
