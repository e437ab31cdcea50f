"""Service wiring — builds every store and service the routes use, once."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request

from hearth.adapters.client_factory import ClientFactory
from hearth.adapters.notification_queue import QueueNotifier
from hearth.core.auth_service import AuthService
from hearth.core.gamification import GamificationLedger, RewardShop, StatsService
from hearth.core.sync_service import DashboardSync
from hearth.core.ttl_cache import TTLCache
from hearth.data.db import LocalTaskDB, RewardDB, StatsDB
from hearth.data.sync_store import ProfileStore, SelectionStore, SyncStore
from hearth.data.token_store import CredentialStore, TokenStore
from hearth.integrations.photo_storage import FrameStorage, PhotoStorage
from hearth.integrations.token_client import TokenRefreshClient, create_refresher
from hearth.integrations.weather import WeatherService


@dataclass
class Services:
    sync: SyncStore
    tokens: TokenStore
    credentials: CredentialStore
    local_tasks: LocalTaskDB
    ledger: GamificationLedger
    stats: StatsService
    shop: RewardShop
    auth: AuthService
    dashboard: DashboardSync
    weather: WeatherService
    notifier: QueueNotifier
    photos: PhotoStorage
    frames: FrameStorage


def build_services(
    app_settings=None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Wire the application from settings.

    Args:
        transport: httpx transport for every outbound Google, media and
            Open-Meteo call; tests pass an httpx.MockTransport.
    """
    if app_settings is None:
        from hearth.config import settings

        app_settings = settings

    db_path = app_settings.DATABASE_PATH
    sync = SyncStore(db_path)
    tokens = TokenStore(db_path)
    credentials = CredentialStore(db_path)
    local_tasks = LocalTaskDB(db_path)
    stats_db = StatsDB(db_path)
    rewards_db = RewardDB(db_path)
    notifier = QueueNotifier()

    refresher = create_refresher(app_settings, credentials)
    token_client = TokenRefreshClient(
        tokens, refresher, safety_margin_seconds=app_settings.TOKEN_SAFETY_MARGIN_SECONDS
    )
    clients = ClientFactory(
        token_client,
        transport=transport,
        max_attempts=app_settings.PROVIDER_MAX_ATTEMPTS,
        retry_delay=app_settings.PROVIDER_RETRY_DELAY_SECONDS,
    )
    photos = PhotoStorage(
        app_settings.PHOTO_STORAGE_DIR,
        max_concurrent=app_settings.MAX_CONCURRENT_DOWNLOADS,
        transport=transport,
        timeout=app_settings.PHOTO_DOWNLOAD_TIMEOUT_SECONDS,
    )

    return Services(
        sync=sync,
        tokens=tokens,
        credentials=credentials,
        local_tasks=local_tasks,
        ledger=GamificationLedger(local_tasks, stats_db),
        stats=StatsService(stats_db, rewards_db),
        shop=RewardShop(rewards_db),
        auth=AuthService(credentials, tokens, refresher),
        dashboard=DashboardSync(
            sync,
            ProfileStore(sync),
            tokens,
            SelectionStore(sync),
            clients,
            notifier,
            lookback_months=app_settings.CALENDAR_LOOKBACK_MONTHS,
            lookahead_months=app_settings.CALENDAR_LOOKAHEAD_MONTHS,
            picker_poll_interval=app_settings.PICKER_POLL_INTERVAL_SECONDS,
            picker_timeout=app_settings.PICKER_TIMEOUT_SECONDS,
            picker_retention=app_settings.PICKER_RETENTION_SECONDS,
            photo_storage=photos,
        ),
        weather=WeatherService(TTLCache(app_settings.WEATHER_CACHE_TTL_SECONDS), transport=transport),
        notifier=notifier,
        photos=photos,
        frames=FrameStorage(photos.directory / "frames"),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the Services instance attached to the app."""
    return request.app.state.services
