"""
FastAPI dependencies: settings, run configuration, clubs and the runner factory.

Tests replace these through ``app.dependency_overrides``.
"""

from typing import AsyncContextManager, Callable, List

from fastapi import Depends

from core.config import ClubContext, Settings, SyncConfig, load_club_contexts, settings
from pipeline.runner import SyncRunner, open_runner

RunnerFactory = Callable[[SyncConfig], AsyncContextManager[SyncRunner]]


def get_settings() -> Settings:
    return settings


def get_sync_config(app_settings: Settings = Depends(get_settings)) -> SyncConfig:
    return SyncConfig.from_settings(app_settings)


def get_clubs(app_settings: Settings = Depends(get_settings)) -> List[ClubContext]:
    return load_club_contexts(app_settings)


def get_runner_factory() -> RunnerFactory:
    return open_runner
