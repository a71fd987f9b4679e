"""Reconciliation of RobustMQ instances."""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .cluster import ClusterConnection
from .compiler import compile_resources
from .config import Settings
from .engine import ApplyReport, ConvergenceEngine
from .exceptions import OperatorError
from .instances import InstanceClient
from .managers import build_managers
from .models import Phase, ResourceKind, WatchEvent
from .status import StatusAggregator
from .watch import INSTANCE_RESOURCE, ResourceWatcher

logger = logging.getLogger(__name__)

Key = tuple[str, str]  # (namespace, name)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    requeue_after: Optional[float] = None
    report: Optional[ApplyReport] = None
    phase: Optional[Phase] = None


class Reconciler:
    """
    One reconciliation pass for one instance.

    Sequence: read the instance, initialize its status on first sight,
    compile the desired resources, converge them, optionally prune orphans,
    aggregate status and overwrite it. Every pass starts from scratch; no
    state is carried between passes.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        settings: Settings,
        instances: Optional[InstanceClient] = None,
        engine: Optional[ConvergenceEngine] = None,
        aggregator: Optional[StatusAggregator] = None,
    ):
        """
        Initialize reconciler.

        Args:
            cluster: Cluster connection
            settings: Operator settings
            instances: Instance client (built from the cluster by default)
            engine: Convergence engine (built from the cluster by default)
            aggregator: Status aggregator (built from the cluster by default)
        """
        self.cluster = cluster
        self.settings = settings
        managers = None if engine and aggregator else build_managers(cluster)
        self.instances = instances or InstanceClient(cluster)
        self.engine = engine or ConvergenceEngine(cluster, managers)
        self.aggregator = aggregator or StatusAggregator(cluster, managers)

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Reconcile one instance.

        Args:
            namespace: Instance namespace
            name: Instance name

        Returns:
            ReconcileResult; ``requeue_after`` is None when the instance is gone

        Raises:
            OperatorError: If applying resources or writing status fails
            ApiException: If reading the instance or its resources fails
        """
        instance = self.instances.get(name, namespace)
        if instance is None:
            # Children are removed by the garbage collector via owner references.
            logger.info(f"RobustMQ {namespace}/{name} not found, nothing to do")
            return ReconcileResult()

        if instance.status.phase is None:
            logger.info(f"Initializing status of {instance.key}")
            instance = self.instances.replace_status(
                instance,
                instance.status.model_copy(update={"phase": Phase.INITIALIZING}),
            )

        resources = compile_resources(instance)
        report = self.engine.apply(resources)
        if self.settings.prune_orphans:
            self.engine.prune(instance, resources, report)

        if report.changed:
            logger.info(
                f"Converged {instance.key}: created={len(report.created)} "
                f"updated={len(report.updated)} pruned={len(report.pruned)}"
            )

        status = self.aggregator.aggregate(instance)
        self.instances.replace_status(instance, status)

        return ReconcileResult(
            requeue_after=self.settings.requeue_after_seconds,
            report=report,
            phase=status.phase,
        )


class ReconcileLoop:
    """
    Drives the reconciler from watches and timers.

    Triggers for the same instance are collapsed: a key is queued at most
    once, and a trigger arriving while the key is being reconciled marks it
    for one more pass afterwards. Different instances are reconciled
    concurrently by up to ``max_concurrent_reconciles`` workers.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        settings: Settings,
        reconciler: Optional[Reconciler] = None,
        instances: Optional[InstanceClient] = None,
        watch: bool = True,
    ):
        """
        Initialize reconcile loop.

        Args:
            cluster: Cluster connection
            settings: Operator settings
            reconciler: Reconciler (built from the cluster by default)
            instances: Instance client used for the initial listing
            watch: Whether to start Kubernetes watches
        """
        self.cluster = cluster
        self.settings = settings
        self.reconciler = reconciler or Reconciler(cluster, settings)
        self.instances = instances or InstanceClient(cluster)
        self.watcher: Optional[ResourceWatcher] = None
        if watch:
            self.watcher = ResourceWatcher(
                cluster,
                namespace=settings.watch_namespace,
                timeout_seconds=settings.watch_timeout_seconds,
            )

        self._queue: asyncio.Queue[Key] = asyncio.Queue()
        self._queued: set[Key] = set()
        self._processing: set[Key] = set()
        self._dirty: set[Key] = set()
        self._timers: dict[Key, asyncio.TimerHandle] = {}
        self._failures: dict[Key, int] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: list[asyncio.Task] = []
        self._watch_threads: list[threading.Thread] = []
        self._watch_stopped = threading.Event()
        self._running = False

    @property
    def pending(self) -> int:
        """Number of keys waiting for a worker."""
        return len(self._queued)

    def backoff(self, failures: int) -> float:
        """
        Delay before retrying a key that failed ``failures`` times in a row.

        Args:
            failures: Consecutive failure count (>= 1)

        Returns:
            Delay in seconds
        """
        delay = self.settings.error_backoff_base_seconds * 2 ** (failures - 1)
        return min(delay, self.settings.error_backoff_max_seconds)

    def enqueue(self, namespace: str, name: str) -> None:
        """
        Queue an instance for reconciliation now.

        Must be called from the event loop thread.

        Args:
            namespace: Instance namespace
            name: Instance name
        """
        key = (namespace, name)
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()

        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return

        self._queued.add(key)
        self._queue.put_nowait(key)

    def enqueue_after(self, namespace: str, name: str, delay: float) -> None:
        """
        Queue an instance after ``delay`` seconds.

        A later call for the same key replaces the pending timer.
        """
        key = (namespace, name)
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire_timer, key)

    def _fire_timer(self, key: Key) -> None:
        self._timers.pop(key, None)
        self.enqueue(*key)

    def forget(self, namespace: str, name: str) -> None:
        """Drop timers and failure history of a deleted instance."""
        key = (namespace, name)
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()
        self._failures.pop(key, None)

    def _enqueue_threadsafe(self, namespace: str, name: str) -> None:
        if not self._running or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self.enqueue, namespace, name)

    def _on_instance_event(self, event: WatchEvent) -> None:
        """Watch handler for RobustMQ objects (runs on a watch thread)."""
        if not self._running or self._loop is None:
            return
        logger.debug(f"Received {event.event_type} event for RobustMQ {event.namespace}/{event.name}")
        if event.event_type == "DELETED":
            self._loop.call_soon_threadsafe(self.forget, event.namespace, event.name)
            return
        self._enqueue_threadsafe(event.namespace, event.name)

    def _on_owned_event(self, event: WatchEvent) -> None:
        """Watch handler for managed resources (runs on a watch thread)."""
        instance = event.labels.get("instance")
        if not instance:
            return
        logger.debug(
            f"Received {event.event_type} event for {event.resource_type} "
            f"{event.namespace}/{event.name}, owned by {instance}"
        )
        self._enqueue_threadsafe(event.namespace, instance)

    async def _process(self, key: Key) -> None:
        namespace, name = key
        try:
            result = await asyncio.to_thread(self.reconciler.reconcile, namespace, name)
        except Exception as e:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
            delay = self.backoff(failures)
            if isinstance(e, OperatorError):
                logger.warning(
                    f"Reconciliation of {namespace}/{name} failed "
                    f"(attempt {failures}), retrying in {delay:.0f}s: {e}"
                )
            else:
                logger.error(
                    f"Error reconciling {namespace}/{name} "
                    f"(attempt {failures}), retrying in {delay:.0f}s: {e}",
                    exc_info=True,
                )
            self.enqueue_after(namespace, name, delay)
            return

        self._failures.pop(key, None)
        if result.requeue_after is not None:
            self.enqueue_after(namespace, name, result.requeue_after)

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Reconcile worker {worker_id} started")
        while self._running:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            try:
                await self._process(key)
            finally:
                self._processing.discard(key)
                self._queue.task_done()
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(*key)

    def _run_watch(self, resource_type: str) -> None:
        """Keep one watch running until the loop stops."""
        while not self._watch_stopped.is_set():
            try:
                self.watcher.watch(resource_type)
            except Exception as e:
                logger.error(f"Watch on {resource_type} failed: {e}", exc_info=True)
                self._watch_stopped.wait(self.settings.error_backoff_base_seconds)

    def _start_watches(self) -> None:
        self.watcher.register_handler(INSTANCE_RESOURCE, self._on_instance_event)
        resource_types = [INSTANCE_RESOURCE]
        for kind in ResourceKind:
            self.watcher.register_handler(kind.value, self._on_owned_event)
            resource_types.append(kind.value)

        for resource_type in resource_types:
            thread = threading.Thread(
                target=self._run_watch,
                args=(resource_type,),
                name=f"watch-{resource_type}",
                daemon=True,
            )
            thread.start()
            self._watch_threads.append(thread)

    async def start(self) -> None:
        """Start workers and watches, then queue every existing instance."""
        if self._running:
            logger.warning("Reconcile loop already running")
            return

        self._running = True
        self._loop = asyncio.get_running_loop()
        namespace = self.settings.watch_namespace

        logger.info(
            f"Starting reconcile loop for "
            f"{'namespace ' + namespace if namespace else 'all namespaces'} "
            f"with {self.settings.max_concurrent_reconciles} workers"
        )

        for i in range(self.settings.max_concurrent_reconciles):
            self._tasks.append(asyncio.create_task(self._worker(i)))

        if self.watcher:
            self._start_watches()

        existing = await asyncio.to_thread(self.instances.list, namespace)
        for instance in existing:
            self.enqueue(instance.namespace, instance.name)
        logger.info(f"Queued {len(existing)} existing RobustMQ instances")

    async def stop(self) -> None:
        """Stop workers, timers and watches."""
        logger.info("Stopping reconcile loop...")
        self._running = False

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        self._watch_stopped.set()
        if self.watcher:
            self.watcher.stop()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        logger.info("Reconcile loop stopped")
