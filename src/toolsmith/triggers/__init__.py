"""Trigger dispatch: cron scheduling and on-demand firing."""
