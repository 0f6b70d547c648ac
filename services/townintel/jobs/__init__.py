"""
Recompute jobs for the town intelligence graph.

These run as standalone Python scripts via cron / Cloud Scheduler,
not inside any request-serving process.

Usage:
    python -m services.townintel.jobs.recompute_routes
    python -m services.townintel.jobs.recompute_suggestions
    python -m services.townintel.jobs.refresh_season_notes

Schedule (UTC, hourly; each job only touches towns that are due):
    :05  recompute_suggestions  - graph suggestions older than 22h
    :20  recompute_routes       - micro-route sets older than 28h
    :40  refresh_season_notes   - template notes for blank operator seasons
"""
