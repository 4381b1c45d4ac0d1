import logging
from dataclasses import dataclass

from mirrorsync.infra.config_store import Config
from mirrorsync.infra.database import Database
from mirrorsync.infra.graph_client import GraphClient
from mirrorsync.infra.mirror_store import MirrorStore
from mirrorsync.infra.state_store import SyncStateStore
from mirrorsync.infra.subscription_store import SubscriptionStore
from mirrorsync.infra.token_provider import MsalTokenProvider
from mirrorsync.services.attachments import AttachmentSyncService
from mirrorsync.services.delta_sync import DeltaSyncEngine
from mirrorsync.services.notifications import NotificationProcessor
from mirrorsync.services.orchestrator import SyncOrchestrator
from mirrorsync.services.webhooks import SubscriptionManager
from mirrorsync.services.worker_pool import SyncWorkerPool


@dataclass
class Services:
    config: Config
    database: Database
    state_store: SyncStateStore
    mirror_store: MirrorStore
    subscription_store: SubscriptionStore
    token_provider: object
    remote: object
    engine: DeltaSyncEngine
    orchestrator: SyncOrchestrator
    subscriptions: SubscriptionManager
    notifications: NotificationProcessor
    worker_pool: SyncWorkerPool

    def close(self):
        self.worker_pool.shutdown(wait=False)
        close_remote = getattr(self.remote, "close", None)
        if close_remote is not None:
            close_remote()
        self.database.close()


def configure_logging(level=logging.INFO):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_services(config=None, remote=None, token_provider=None, worker_pool=None):
    """Wire stores and services; collaborators can be swapped for fakes."""
    config = config or Config()
    database = Database(config.get("state_db_path") or None)
    state_store = SyncStateStore(database)
    mirror_store = MirrorStore(database)
    subscription_store = SubscriptionStore(database)
    if token_provider is None:
        token_provider = MsalTokenProvider(
            database,
            state_store,
            client_id=config.get("client_id", ""),
            client_secret=config.get("client_secret", ""),
            tenant_id=config.get("tenant_id"),
        )
    if remote is None:
        remote = GraphClient(token_provider)
    worker_pool = worker_pool or SyncWorkerPool(
        max_workers=config.get("worker_count"),
        retries=config.get("task_retries"),
    )
    attachment_service = AttachmentSyncService(remote, mirror_store)
    default_params = {}
    if config.get("download_attachments"):
        default_params = {"attachments": True, "download_content": True}
    engine = DeltaSyncEngine(
        remote,
        state_store,
        mirror_store,
        attachment_service=attachment_service,
        default_params=default_params,
    )
    orchestrator = SyncOrchestrator(engine, state_store, mirror_store)
    subscriptions = SubscriptionManager(remote, subscription_store, notify_url=config.get("notification_url", ""))
    notifications = NotificationProcessor(
        subscription_store,
        orchestrator,
        worker_pool,
        mirror_store=mirror_store,
        remote=remote,
    )
    return Services(
        config=config,
        database=database,
        state_store=state_store,
        mirror_store=mirror_store,
        subscription_store=subscription_store,
        token_provider=token_provider,
        remote=remote,
        engine=engine,
        orchestrator=orchestrator,
        subscriptions=subscriptions,
        notifications=notifications,
        worker_pool=worker_pool,
    )


def create_default_app():
    """App factory for ASGI servers, e.g. ``uvicorn --factory mirrorsync.bootstrap:create_default_app``."""
    from mirrorsync.api import create_app

    configure_logging()
    config = Config()
    if config.load_error:
        logging.getLogger(__name__).warning("Config could not be loaded, using defaults: %s", config.load_error)
    return create_app(build_services(config))
