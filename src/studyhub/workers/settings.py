"""arq worker settings module.

Import path for arq CLI: arq studyhub.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq.connections import RedisSettings

from studyhub.config import get_settings
from studyhub.gamification.worker import GamificationWorkerSettings


class WorkerSettings(GamificationWorkerSettings):
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)


__all__ = ["WorkerSettings"]
