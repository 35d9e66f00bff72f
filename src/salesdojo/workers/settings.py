"""Worker settings for arq.

Import path for arq CLI: arq salesdojo.workers.settings.WorkerSettings
"""

from arq import cron
from arq.connections import RedisSettings

from salesdojo.config import get_settings
from salesdojo.workers.jobs import (
    abandon_stale_sessions_job,
    reconcile_progression_job,
    shutdown,
    startup,
)


class WorkerSettings:
    """arq worker settings for session sweeping and progression reconciliation."""

    functions = [abandon_stale_sessions_job, reconcile_progression_job]
    cron_jobs = [
        cron(abandon_stale_sessions_job, minute=set(range(0, 60, 10)), run_at_startup=True),
        cron(reconcile_progression_job, minute=set(range(0, 60, 5))),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 300
    allow_abort_jobs = True
