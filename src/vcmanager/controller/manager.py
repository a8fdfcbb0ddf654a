"""Reconcile workers fed by the work queue."""

import asyncio
import logging

from vcmanager.constants import VIRTUALCLUSTER_PLURAL
from vcmanager.controller.reconciler import ReconcileResult
from vcmanager.controller.workqueue import ShutDown, WorkQueue

logger = logging.getLogger(__name__)


class ControllerManager:
    """Runs ``worker_limit`` workers and a periodic resync.

    Keys are ``(namespace, name)`` tuples. The synchronous reconcile runs in
    a thread so a slow API call never blocks the kopf event loop.
    """

    def __init__(self, reconciler, host, config, queue=None):
        self.reconciler = reconciler
        self.host = host
        self.config = config
        self.queue = queue or WorkQueue(
            base_delay=config.backoff_base, max_delay=config.backoff_max
        )
        self._tasks = []

    def enqueue(self, namespace, name):
        self.queue.add((namespace, name))

    async def enqueue_all(self, cluster_version=None):
        """Enqueue every VirtualCluster, or only those using ``cluster_version``."""
        items = await asyncio.to_thread(self.host.list_custom, VIRTUALCLUSTER_PLURAL)
        count = 0
        for vc in items:
            if cluster_version and (vc.get("spec") or {}).get("clusterVersionName") != cluster_version:
                continue
            self.enqueue(vc["metadata"].get("namespace"), vc["metadata"]["name"])
            count += 1
        return count

    async def start(self):
        loop = asyncio.get_running_loop()
        for index in range(self.config.worker_limit):
            self._tasks.append(loop.create_task(self._worker(index)))
        self._tasks.append(loop.create_task(self._resync()))
        logger.info(f"Started {self.config.worker_limit} reconcile workers")

    async def stop(self):
        self.queue.shutdown(workers=self.config.worker_limit)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Reconcile workers stopped")

    async def _worker(self, index):
        while True:
            try:
                key = await self.queue.get()
            except ShutDown:
                return
            try:
                result = await asyncio.to_thread(self.reconciler.reconcile, *key)
            except Exception as e:
                logger.exception(f"Worker {index} failed reconciling {key[0]}/{key[1]}")
                result = ReconcileResult.backoff(e)
            finally:
                self.queue.done(key)
            self.handle_result(key, result)

    def handle_result(self, key, result):
        if not result.requeue:
            self.queue.forget(key)
            return
        if result.requeue_after is None:
            failures = self.queue.num_requeues(key)
            if failures >= self.config.error_retry_threshold:
                logger.warning(
                    f"{key[0]}/{key[1]} has failed {failures + 1} passes in a row: {result.error}"
                )
            self.queue.add_rate_limited(key)
            return
        self.queue.forget(key)
        self.queue.add_after(key, result.requeue_after)

    async def _resync(self):
        while True:
            await asyncio.sleep(self.config.resync_period)
            try:
                count = await self.enqueue_all()
                logger.debug(f"Resync enqueued {count} VirtualClusters")
            except Exception as e:
                logger.warning(f"Resync failed: {e}")
