"""
Scheduled batch jobs for the place curation pipeline.

These run as short-lived processes via cron / an external scheduler.
Every job is safe to re-run immediately after a partial or failed run.

Usage:
    python -m services.curator.jobs.run init-db
    python -m services.curator.jobs.run seed-keywords
    python -m services.curator.jobs.run discover
    python -m services.curator.jobs.run blog-search
    python -m services.curator.jobs.run rotate
    python -m services.curator.jobs.run promote
    python -m services.curator.jobs.run deactivate
    python -m services.curator.jobs.run daily

Schedule (KST):
    every 6h  discover, blog-search  ingestion, spends provider quota
    05:00     daily                  rotate -> promote -> deactivate
"""
