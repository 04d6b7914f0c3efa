"""
Generic three-way reconciliation of one entity kind.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Optional, Set, Tuple

from mangasync.errors import (
    AuthRequired,
    ContentProviderError,
    IdentityResolutionFailed,
    SourceNotInstalled,
    SyncError,
)
from mangasync.sync.hydrator import MetadataHydrator
from mangasync.sync.identity import IdentityResolver
from mangasync.sync.kinds import EntityAdapter
from mangasync.sync.merge import index_by_key, three_way_diff
from mangasync.sync.models import (
    ItemOutcome,
    LocalStore,
    Outcome,
    Record,
    RemoteService,
    SyncReport,
)
from mangasync.utils.dates import utcnow
from mangasync.utils.logging import SyncLogger

DEFAULT_MAX_WORKERS = 4

Task = Tuple[str, Callable[[], ItemOutcome]]


@dataclass
class _Resolved:
    """A local record before and after identity resolution."""
    original: Record
    resolved: Record


class EntitySyncer:
    """
    Reconciles the local and remote snapshots of one entity kind.

    Algorithm:
    1. Local-only keys are uploaded
    2. Remote-only keys are restored locally when their prerequisite holds
    3. Keys on both sides are merged field by field; each side is written
       only when the merged record differs from it

    Item failures are recorded in the report and never abort the batch.
    AuthRequired is the exception: it propagates once in-flight items
    have finished.
    """

    def __init__(
        self,
        adapter: EntityAdapter,
        local: LocalStore,
        remote: RemoteService,
        resolver: IdentityResolver,
        hydrator: MetadataHydrator,
        user_id: str,
        max_workers: int = DEFAULT_MAX_WORKERS,
        sync_logger: Optional[SyncLogger] = None,
    ):
        self.adapter = adapter
        self.kind = adapter.kind
        self.local = local
        self.remote = remote
        self.resolver = resolver
        self.hydrator = hydrator
        self.user_id = user_id
        self.max_workers = max(1, max_workers)
        self.log = (sync_logger or SyncLogger()).bind(kind=adapter.kind.value)

    def sync(self) -> SyncReport:
        """
        Run the three-way reconciliation.

        Returns:
            SyncReport with per-item outcomes

        Raises:
            AuthRequired: If the session is missing or rejected
        """
        report = SyncReport(kind=self.kind)

        try:
            local_records = self.local.list(self.kind)
            remote_records = self.remote.list(self.kind, self.user_id)
        except AuthRequired:
            raise
        except Exception as e:
            report.error = f"Snapshot failed: {e}"
            report.completed_at = utcnow()
            self.log.error("Snapshot failed", error=str(e))
            return report

        self.log.info(
            "Snapshots loaded",
            local=len(local_records),
            remote=len(remote_records),
        )

        self.adapter.seed(self.resolver, remote_records)
        self.adapter.seed(self.resolver, local_records)

        resolved, unresolved_refs = self._resolve_local(local_records, report)

        local_index, local_duplicates = index_by_key(resolved, lambda item: self.adapter.key(item.resolved))
        remote_index, remote_duplicates = index_by_key(remote_records, self.adapter.key)

        for key, _ in local_duplicates:
            report.record(self._outcome(Outcome.SKIPPED, key, "duplicate_key", "local duplicate"))
        for key, _ in remote_duplicates:
            report.record(self._outcome(Outcome.SKIPPED, key, "duplicate_key", "remote duplicate"))

        diff = three_way_diff(local_index, remote_index)

        tasks: List[Task] = []
        for key, item in diff.upload.items():
            tasks.append(self._task(key, self._upload, key, item))
        for key, record in diff.download.items():
            tasks.append(self._task(key, self._download, key, record, unresolved_refs))
        for key, (item, remote_record) in diff.merge.items():
            tasks.append(self._task(key, self._merge, key, item, remote_record))

        report.extend(self._run(tasks))
        report.completed_at = utcnow()

        self.log.info(
            "Phase completed",
            uploaded=report.uploaded,
            downloaded=report.downloaded,
            merged=report.merged,
            unchanged=report.unchanged,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    # -- identity -------------------------------------------------------------

    def _resolve_local(
        self,
        records: List[Record],
        report: SyncReport,
    ) -> Tuple[List[_Resolved], Set[Tuple[str, str]]]:
        """Give every local record its identity key, failing those that cannot get one."""
        ready: List[_Resolved] = []
        pending: List[Task] = []
        results: Dict[int, Record] = {}

        for index, record in enumerate(records):
            if not self.adapter.needs_identity(record):
                ready.append(_Resolved(record, record))
                continue

            def resolve(index=index, record=record) -> ItemOutcome:
                results[index] = self.adapter.with_identity(record, self.resolver)
                return self._outcome(Outcome.UNCHANGED, self._describe(record))

            pending.append((self._describe(record), self._identity_guard(record, resolve)))

        unresolved_refs: Set[Tuple[str, str]] = set()
        for outcome in self._run(pending):
            if outcome.outcome == Outcome.FAILED:
                report.record(outcome)

        for index, record in enumerate(records):
            if not self.adapter.needs_identity(record):
                continue
            if index in results:
                ready.append(_Resolved(record, results[index]))
            else:
                ref = self.adapter.local_ref(record)
                if ref:
                    unresolved_refs.add(ref)

        return ready, unresolved_refs

    def _identity_guard(self, record: Record, resolve: Callable[[], ItemOutcome]) -> Callable[[], ItemOutcome]:
        def run() -> ItemOutcome:
            try:
                return resolve()
            except AuthRequired:
                raise
            except Exception as e:
                self.log.warning(
                    "Identity resolution failed",
                    record=self._describe(record),
                    error=str(e),
                )
                return self._outcome(
                    Outcome.FAILED,
                    self._describe(record),
                    IdentityResolutionFailed.reason,
                    str(e),
                )
        return run

    # -- item operations ------------------------------------------------------

    def _upload(self, key: Hashable, item: _Resolved) -> ItemOutcome:
        record = self.adapter.prepare_upload(item.resolved, self.resolver)
        self.remote.upsert(self.kind, record, self.user_id)
        if item.resolved != item.original:
            # Keep the resolved identity so later runs skip resolution
            self.local.upsert(item.resolved)
        return self._outcome(Outcome.UPLOADED, key)

    def _download(self, key: Hashable, record: Record, unresolved_refs: Set[Tuple[str, str]]) -> ItemOutcome:
        if self.adapter.local_ref(record) in unresolved_refs:
            return self._outcome(
                Outcome.SKIPPED, key, IdentityResolutionFailed.reason,
                "local copy exists but its identity could not be resolved",
            )

        missing = self.adapter.missing_prerequisite(record, self.local)
        if missing:
            return self._outcome(Outcome.SKIPPED, key, SourceNotInstalled.reason, missing)

        try:
            materialized = self.adapter.materialize(record, self.hydrator)
        except SourceNotInstalled as e:
            return self._outcome(Outcome.SKIPPED, key, e.reason, str(e))
        except ContentProviderError as e:
            self.log.warning("Hydration failed", key=self._label(key), error=str(e))
            return self._outcome(Outcome.SKIPPED, key, e.reason, str(e))

        self.local.upsert(materialized)
        return self._outcome(Outcome.DOWNLOADED, key)

    def _merge(self, key: Hashable, item: _Resolved, remote_record: Record) -> ItemOutcome:
        new_local, new_remote = self.adapter.merge(item.resolved, remote_record)

        wrote = False
        # Compared with the stored record so a newly resolved identity is persisted too
        if new_local != item.original:
            self.local.upsert(new_local)
            wrote = True

        if new_remote != remote_record:
            self.remote.upsert(
                self.kind,
                self.adapter.prepare_upload(new_remote, self.resolver),
                self.user_id,
            )
            wrote = True

        return self._outcome(Outcome.MERGED if wrote else Outcome.UNCHANGED, key)

    # -- plumbing ---------------------------------------------------------------

    def _task(self, key: Hashable, func: Callable[..., ItemOutcome], *args) -> Task:
        label = self._label(key)

        def run() -> ItemOutcome:
            try:
                return func(*args)
            except AuthRequired:
                raise
            except SyncError as e:
                self.log.warning("Item failed", key=label, reason=e.reason, error=str(e))
                return self._outcome(Outcome.FAILED, key, e.reason, str(e))
            except Exception as e:
                self.log.exception("Item failed", key=label, error=str(e))
                return self._outcome(Outcome.FAILED, key, "error", str(e))

        return label, run

    def _run(self, tasks: List[Task]) -> List[ItemOutcome]:
        """Run item tasks on a bounded pool; re-raise AuthRequired after in-flight items finish."""
        outcomes: List[ItemOutcome] = []
        if not tasks:
            return outcomes

        auth_error: Optional[AuthRequired] = None
        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(tasks)),
            thread_name_prefix=f"sync-{self.kind.value}",
        ) as pool:
            futures = [pool.submit(run) for _, run in tasks]
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                try:
                    outcomes.append(future.result())
                except AuthRequired as e:
                    if auth_error is None:
                        auth_error = e
                        for pending in futures:
                            pending.cancel()

        if auth_error is not None:
            raise auth_error
        return outcomes

    def _outcome(
        self,
        outcome: Outcome,
        key: Hashable,
        reason: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> ItemOutcome:
        return ItemOutcome(outcome=outcome, key=self._label(key), reason=reason, detail=detail)

    def _label(self, key: Hashable) -> str:
        return self.adapter.key_label(key)

    def _describe(self, record: Record) -> str:
        ref = self.adapter.local_ref(record)
        if ref:
            return "/".join(ref)
        return self._label(self.adapter.key(record))

