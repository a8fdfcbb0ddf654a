"""Reconcile loop: per-key reconciler, work queue and worker pool."""

from .manager import ControllerManager
from .reconciler import ReconcileResult, Reconciler
from .workqueue import ShutDown, WorkQueue

__all__ = ["ControllerManager", "ReconcileResult", "Reconciler", "ShutDown", "WorkQueue"]
