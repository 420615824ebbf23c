"""Recurring bill-pay rules bound to pg_cron jobs."""
