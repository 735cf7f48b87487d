# packstate/app/engine.py
from __future__ import annotations
import asyncio
import logging
from collections.abc import Iterable, Mapping

from packstate.app.context import PROCESS_REGISTRY
from packstate.app.globals import getTracer
from packstate.config.service import ConfigService
from packstate.config.settings import EngineSettings
from packstate.content.archiver import archiveOldVersions
from packstate.content.batch_results import BatchSummary, OperationResult, summarizeResults
from packstate.content.duplicate_analyzer import DuplicateAnalyzer, DuplicateGroup
from packstate.content.instance_locator import InstanceLocator
from packstate.content.orchestrator import (
    LoadUnloadOrchestrator,
    OperationKind,
    OperationThrottle,
    ReleaseHandlesFn,
)
from packstate.content.package_metadata import MetadataCatalog
from packstate.content.resolution_planner import (
    CandidateFallback,
    DisambiguateFn,
    ResolutionDecision,
    ResolutionPlan,
    applyPlan,
    defaultDecisions,
    plan,
)
from packstate.content.safe_file_ops import ProgressFn, RetryPolicy, SafeFileOperator, SleepFn
from packstate.content.status_index import StatusIndex
from packstate.content.storage_roots import StorageRoots

logger = logging.getLogger(__name__)

__all__ = ["PackageEngine"]



class PackageEngine:
    """
    The engine boss. Owns every service and registers itself (plus the roots
    and the status index) in the process registry.
    """
    def __init__(
        self,
        *,
        settings: EngineSettings,
        roots: StorageRoots,
        catalog: MetadataCatalog,
        operator: SafeFileOperator,
        releaseHandles: ReleaseHandlesFn | None = None,
        readManifests: bool = True,
    ) -> None:
        self.settings = settings
        self.readManifests = readManifests
        self.roots = roots
        self.catalog = catalog
        self.operator = operator
        self.locator = InstanceLocator(roots)
        self.analyzer = DuplicateAnalyzer(roots)
        self.statusIndex = StatusIndex(roots, catalog)
        self.orchestrator = LoadUnloadOrchestrator(
            roots,
            operator,
            metadata=catalog,
            statusIndex=self.statusIndex,
            releaseHandles=releaseHandles,
            throttle=OperationThrottle(settings.operations.throttleWindowMs),
            yieldEvery=settings.operations.yieldEvery,
            maxListedErrors=settings.summaries.maxListedErrors,
        )

    @classmethod
    def build(
        cls,
        configService: ConfigService | None = None,
        *,
        releaseHandles: ReleaseHandlesFn | None = None,
        sleep: SleepFn | None = None,
        readManifests: bool = True,
        register: bool = True,
    ) -> "PackageEngine":
        service = configService or ConfigService.bootstrap(register=register)
        settings = service.settings()
        roots = StorageRoots.fromSettings(settings.storage)
        roots.requireConfigured()

        retry = settings.operations.retry
        operator = SafeFileOperator(
            policy=RetryPolicy(maxAttempts=retry.maxAttempts, backoffStepMs=retry.backoffStepMs),
            sleep=sleep,
            yieldEvery=settings.operations.yieldEvery,
        )
        catalog = MetadataCatalog.scan(roots, readManifests=readManifests)
        engine = cls(
            settings=settings,
            roots=roots,
            catalog=catalog,
            operator=operator,
            releaseHandles=releaseHandles,
            readManifests=readManifests,
        )
        engine.statusIndex.refresh(force=True)

        if register:
            PROCESS_REGISTRY.register("engine", engine, overwrite=True)
            PROCESS_REGISTRY.register("storage.roots", roots, overwrite=True)
            PROCESS_REGISTRY.register("status.index", engine.statusIndex, overwrite=True)
        getTracer().traceEvent(
            "engine.ready",
            attrs={"packages": len(catalog), "externalDestinations": len(roots.externalDestinations)},
            level="info",
            tags=["engine"],
        )
        logger.info("Package engine ready: %d package file(s) indexed", len(catalog))
        return engine

    # ----- Catalog -----

    def rescan(self) -> None:
        """Rebuild metadata from disk and force-refresh statuses."""
        self.catalog = MetadataCatalog.scan(self.roots, readManifests=self.readManifests)
        self.statusIndex.metadata = self.catalog
        self.orchestrator.metadata = self.catalog
        self.statusIndex.refresh(force=True)

    # ----- Load / unload -----

    async def load(
        self,
        names: Iterable[str],
        *,
        withDeps: bool = False,
        progress: ProgressFn | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[OperationResult]:
        results = await self.orchestrator.run(names, OperationKind.LOAD, withDeps=withDeps, progress=progress, cancel=cancel)
        return self._afterBatch(results)

    async def unload(
        self,
        names: Iterable[str],
        *,
        withDeps: bool = False,
        progress: ProgressFn | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[OperationResult]:
        results = await self.orchestrator.run(names, OperationKind.UNLOAD, withDeps=withDeps, progress=progress, cancel=cancel)
        return self._afterBatch(results)

    def _afterBatch(self, results: list[OperationResult]) -> list[OperationResult]:
        # Moved files carry new paths; external records may now be loaded
        if any(result.success for result in results):
            self.rescan()
        return results

    # ----- Duplicates -----

    def findDuplicates(self) -> list[DuplicateGroup]:
        return self.analyzer.analyzeAll()

    def planResolution(
        self,
        groups: Iterable[DuplicateGroup],
        decisions: Mapping[str, ResolutionDecision] | None = None,
        *,
        disambiguate: DisambiguateFn | None = None,
        fallback: CandidateFallback = CandidateFallback.NONE,
    ) -> ResolutionPlan:
        groups = list(groups)
        return plan(groups, decisions if decisions is not None else defaultDecisions(groups), disambiguate=disambiguate, fallback=fallback)

    async def applyResolution(
        self,
        resolution: ResolutionPlan,
        *,
        progress: ProgressFn | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[OperationResult]:
        results = await applyPlan(resolution, self.operator, progress=progress, cancel=cancel)
        if any(result.success for result in results):
            self.statusIndex.refresh(force=True)
        return results

    # ----- Archive -----

    async def archiveOldVersions(self, *, progress: ProgressFn | None = None) -> list[OperationResult]:
        self.catalog.detectOldVersions()
        return await archiveOldVersions(
            self.catalog.all(), self.roots, self.operator, statusIndex=self.statusIndex, progress=progress,
        )

    # ----- Reporting -----

    def summarize(self, results: Iterable[OperationResult], verb: str) -> BatchSummary:
        return summarizeResults(results, verb=verb, maxListed=self.settings.summaries.maxListedErrors)
