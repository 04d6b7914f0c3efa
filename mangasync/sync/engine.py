"""
Main sync engine for mangasync.

Orchestrates the per-kind reconciliation phases between the local store
and the remote account.
"""

import threading
import uuid
from typing import Dict, Iterable, Optional, Sequence

from mangasync.auth import AuthContext
from mangasync.errors import AuthRequired
from mangasync.sync.hydrator import MetadataHydrator
from mangasync.sync.identity import IdentityResolver
from mangasync.sync.kinds import EntityAdapter, default_adapters
from mangasync.sync.models import (
    ContentProvider,
    EntityKind,
    LocalStore,
    RemoteService,
    RunStatus,
    SyncRunReport,
)
from mangasync.sync.syncer import DEFAULT_MAX_WORKERS, EntitySyncer
from mangasync.utils.dates import utcnow
from mangasync.utils.logging import SyncLogger, get_logger

logger = get_logger(__name__)

_run_locks: Dict[str, threading.Lock] = {}
_run_locks_guard = threading.Lock()


def _user_run_lock(user_id: str) -> threading.Lock:
    """In-process lock serialising sync runs of one user."""
    with _run_locks_guard:
        return _run_locks.setdefault(user_id, threading.Lock())


class SyncOrchestrator:
    """
    Sequences the entity phases of a sync run.

    States: IDLE -> RUNNING -> COMPLETED | ABORTED. Phases run strictly in
    order (sources, library, history) because later phases depend on
    records restored by earlier ones.

    Responsibilities:
    - Skip the run when there is no valid session
    - Run one EntitySyncer per enabled kind
    - Abort the whole run on AuthRequired, discarding phase reports
    - Stop between phases when cancelled
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteService,
        provider: ContentProvider,
        auth: AuthContext,
        max_workers: int = DEFAULT_MAX_WORKERS,
        adapters: Optional[Sequence[EntityAdapter]] = None,
        enabled_kinds: Optional[Iterable[EntityKind]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            local: Local store
            remote: Remote account service
            provider: Content provider used to restore remote-only records
            auth: Session of the user being synced
            max_workers: Parallel item operations within a phase
            adapters: Phase adapters in order (defaults to all kinds)
            enabled_kinds: Kinds to run; others are skipped
        """
        self.local = local
        self.remote = remote
        self.provider = provider
        self.auth = auth
        self.max_workers = max_workers

        adapters = list(adapters or default_adapters())
        if enabled_kinds is not None:
            enabled = set(enabled_kinds)
            adapters = [adapter for adapter in adapters if adapter.kind in enabled]
        self.adapters = adapters

        # State
        self.state = RunStatus.IDLE
        self.current_phase: Optional[EntityKind] = None
        self.last_report: Optional[SyncRunReport] = None
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; honoured before the next phase starts."""
        self._cancel.set()

    @property
    def running(self) -> bool:
        return self.state == RunStatus.RUNNING

    def run(self, run_id: Optional[str] = None) -> SyncRunReport:
        """
        Run a full sync operation.

        Args:
            run_id: Optional run ID (auto-generated if not provided)

        Returns:
            SyncRunReport with one SyncReport per completed phase
        """
        run_id = run_id or str(uuid.uuid4())[:8]

        if not self.auth.is_valid():
            logger.warning("No valid session, skipping sync", run_id=run_id)
            return self._finish(SyncRunReport(
                run_id=run_id,
                status=RunStatus.ABORTED,
                abort_reason=AuthRequired.reason,
            ))

        lock = _user_run_lock(self.auth.user_id)
        if not lock.acquire(blocking=False):
            logger.info("Sync already running for user, skipping", run_id=run_id)
            report = SyncRunReport(run_id=run_id, status=RunStatus.SKIPPED, abort_reason="already_running")
            report.completed_at = utcnow()
            return report

        try:
            return self._run_phases(run_id)
        finally:
            lock.release()

    def _run_phases(self, run_id: str) -> SyncRunReport:
        sync_logger = SyncLogger(run_id)
        report = SyncRunReport(run_id=run_id, status=RunStatus.RUNNING)

        self.state = RunStatus.RUNNING

        resolver = IdentityResolver(self.remote, self.auth)
        hydrator = MetadataHydrator(self.local, self.provider)

        sync_logger.info(
            "Starting sync run",
            user_id=self.auth.user_id,
            phases=[adapter.kind.value for adapter in self.adapters],
        )

        try:
            for adapter in self.adapters:
                if self._cancel.is_set():
                    report.status = RunStatus.ABORTED
                    report.abort_reason = "cancelled"
                    sync_logger.warning("Sync run cancelled", before_phase=adapter.kind.value)
                    break

                self.current_phase = adapter.kind
                syncer = EntitySyncer(
                    adapter=adapter,
                    local=self.local,
                    remote=self.remote,
                    resolver=resolver,
                    hydrator=hydrator,
                    user_id=self.auth.user_id,
                    max_workers=self.max_workers,
                    sync_logger=sync_logger,
                )
                report.phases.append(syncer.sync())
            else:
                report.status = RunStatus.COMPLETED

        except AuthRequired as e:
            sync_logger.error("Sync run aborted, session required", error=str(e))
            report.phases = []
            report.status = RunStatus.ABORTED
            report.abort_reason = AuthRequired.reason

        finally:
            self.current_phase = None

        sync_logger.info(
            "Sync run finished",
            status=report.status.value,
            uploaded=report.total("uploaded"),
            downloaded=report.total("downloaded"),
            merged=report.total("merged"),
            skipped=report.total("skipped"),
            failed=report.total("failed"),
            identity_calls=resolver.remote_calls,
        )
        return self._finish(report)

    def _finish(self, report: SyncRunReport) -> SyncRunReport:
        report.completed_at = utcnow()
        self._cancel.clear()
        self.state = report.status
        self.last_report = report
        return report

    def close(self) -> None:
        """Close collaborators that hold network sessions."""
        for collaborator in (self.remote, self.provider):
            close = getattr(collaborator, "close", None)
            if callable(close):
                close()


def create_orchestrator_from_config(config_manager, database) -> Optional[SyncOrchestrator]:
    """
    Create an orchestrator from the current configuration.

    Returns:
        SyncOrchestrator if configured, None otherwise
    """
    from mangasync.api.content import ContentProviderClient
    from mangasync.api.remote import RemoteServiceClient
    from mangasync.db.store import SqlLocalStore

    if not config_manager.is_configured():
        logger.warning("Sync engine not configured")
        return None

    config = config_manager.get_config()
    auth = config_manager.get_auth_context()

    remote = RemoteServiceClient(
        config.remote_url,
        config.remote_api_key,
        auth,
        table_prefix=config.remote_table_prefix,
        timeout=config.request_timeout,
        max_retries=config.remote_max_retries,
    )
    provider = ContentProviderClient(
        config.content_provider_url,
        timeout=config.request_timeout,
    )

    enabled = []
    if config.enable_source_sync:
        enabled.append(EntityKind.SOURCE)
    if config.enable_library_sync:
        enabled.append(EntityKind.LIBRARY)
    if config.enable_history_sync:
        enabled.append(EntityKind.HISTORY)

    logger.info(
        "Initialized sync engine",
        remote_url=config.remote_url,
        phases=[kind.value for kind in enabled],
        max_workers=config.sync_max_workers,
    )

    return SyncOrchestrator(
        local=SqlLocalStore(database),
        remote=remote,
        provider=provider,
        auth=auth,
        max_workers=config.sync_max_workers,
        enabled_kinds=enabled,
    )
