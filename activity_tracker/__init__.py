"""
Activity Tracker Package.

Keeps ATC endorsements and roster memberships in step with observed
controller activity, built with SQLAlchemy, requests and Flask.

Modules:
    analytics/   Position matching and rolling-window activity aggregation
    ingestion/   VATSIM session-log client and the incremental sync scheduler
    lifecycle/   Removal state machine, trackers, notification and removal jobs
    models/      SQLAlchemy ORM models (LifecycleRecord)
    services/    External registry (VatEUD) and notifier (VATGER) clients
    api/         REST endpoints for status reads and operator actions
    cache.py     Thread-safe TTL cache for policies and API responses
    config.py    Centralized configuration from environment variables
    cli.py       Cron entry points for the sync, notify and removal jobs
"""

__version__ = '1.0.0'
