"""Reconcile entrypoint for one VirtualCluster key.

A pass reads fresh state, dispatches on deletion timestamp and phase, runs
the sub-steps in order and returns a requeue directive. Nothing is carried
between passes except what is persisted on the objects themselves.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from vcmanager.config import OperatorConfig
from vcmanager.constants import (
    CONDITION_CONTROL_PLANE_READY,
    CONDITION_NAMESPACE_READY,
    CONDITION_PKI_READY,
    CONDITION_READY,
    CONDITION_UPGRADE_AVAILABLE,
    FINALIZER,
    VIRTUALCLUSTER_PLURAL,
)
from vcmanager.controller.events import EventRecorder
from vcmanager.crd.base import CRDCondition
from vcmanager.errors import (
    ConfigurationError,
    HostAPIError,
    InvariantViolation,
    PKIError,
    TransientError,
)
from vcmanager.services.ca_issuer import CertificateIssuer
from vcmanager.services.deleter import FinalizerGatedDeleter, add_finalizer
from vcmanager.services.namespace_manager import ensure_root_namespace, get_root_namespace
from vcmanager.services.phase import (
    Phase,
    derive_phase,
    next_phase,
    observe_inputs,
    step_toward,
)
from vcmanager.services.pki_manager import PKIMaterializer
from vcmanager.services.resource_reconciler import ResourceReconciler
from vcmanager.services.status_manager import StatusManager, load_status
from vcmanager.services.template_resolver import fetch_cluster_version, resolve
from vcmanager.services.upgrade_coordinator import consume_trigger_label, plan_upgrade

logger = logging.getLogger(__name__)

# Poll interval while waiting on StatefulSet readiness; watch events usually come first
READINESS_POLL_SECONDS = 15.0


@dataclass
class ReconcileResult:
    """Requeue directive returned by a pass.

    ``requeue`` with ``requeue_after`` None means rate-limited backoff;
    ``requeue_after`` 0 means immediately.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None
    phase: Optional[Phase] = None
    error: Optional[Exception] = None

    @classmethod
    def done(cls, phase=None):
        return cls(phase=phase)

    @classmethod
    def backoff(cls, error, phase=None):
        return cls(requeue=True, phase=phase, error=error)

    @classmethod
    def after(cls, seconds, phase=None):
        return cls(requeue=True, requeue_after=seconds, phase=phase)


class Reconciler:
    """Drives one VirtualCluster toward its desired control plane."""

    def __init__(self, host, config=None, issuer=None, events=None, cleanup_hooks=None):
        self.host = host
        self.config = config or OperatorConfig()
        self.events = events or EventRecorder()
        self.status = StatusManager(host)
        self.pki = PKIMaterializer(
            host, issuer or CertificateIssuer(expire_days=self.config.pki_expire_days)
        )
        self.resources = ResourceReconciler(
            host, gate_on_readiness=self.config.gate_on_readiness
        )
        self.deleter = FinalizerGatedDeleter(host, cleanup_hooks)

    def reconcile(self, namespace, name):
        """Run one pass for ``namespace/name``."""
        vc = self.host.get_custom(VIRTUALCLUSTER_PLURAL, namespace, name)
        if vc is None:
            logger.debug(f"VirtualCluster {namespace}/{name} is gone")
            return ReconcileResult.done()

        try:
            return self._reconcile(vc)
        except TransientError as e:
            logger.warning(f"Transient error reconciling {namespace}/{name}: {e}")
            return ReconcileResult.backoff(e)
        except ConfigurationError as e:
            return self._on_configuration_error(vc, e)
        except InvariantViolation as e:
            return self._on_invariant_violation(vc, e)
        except (PKIError, HostAPIError) as e:
            logger.error(f"Failed to reconcile {namespace}/{name}: {e}")
            self.events.warn(vc, reason="ReconcileFailed", message=str(e))
            return ReconcileResult.backoff(e)

    def _reconcile(self, vc):
        meta = vc["metadata"]
        if meta.get("deletionTimestamp"):
            return self._delete(vc)

        if FINALIZER not in (meta.get("finalizers") or []):
            vc = add_finalizer(self.host, vc)

        status = load_status(vc)
        current = Phase.parse(status.phase)

        # The root namespace name is persisted before any child object exists
        if not status.clusterNamespace:
            root_ns = get_root_namespace(vc)

            def assign(s):
                s.clusterNamespace = root_ns
                s.phase = next_phase(
                    observe_inputs(vc, namespace_assigned=True), current
                ).value

            vc = self.status.update(vc, assign)
            status = load_status(vc)
            current = Phase.parse(status.phase)
            self.events.info(
                vc, reason="NamespaceAssigned", message=f"Root namespace {root_ns}"
            )

        root_ns = status.clusterNamespace
        ensure_root_namespace(self.host, vc, root_ns)

        spec = vc.get("spec") or {}
        cluster_version = fetch_cluster_version(self.host, spec.get("clusterVersionName"))
        bundle = resolve(cluster_version, vc, root_ns)

        pki = self.pki.ensure(vc, root_ns)

        plan = plan_upgrade(vc, bundle, status.appliedClusterVersionHash, current)
        applied = self.resources.apply_bundle(bundle, patch_existing=plan.patch_existing)

        inputs = observe_inputs(
            vc,
            secrets_present=pki.all_present,
            services_present=applied.services_present,
            components_ready=applied.all_ready,
            upgrade_applied=plan.upgrade,
        )
        target = derive_phase(inputs, current)
        new_phase = step_toward(current, target)

        def record(s):
            s.phase = new_phase.value
            s.reason = None
            s.message = None
            s.configErrorCount = 0
            s.observedGeneration = meta.get("generation")
            if plan.patch_existing:
                s.appliedClusterVersionHash = plan.content_hash
            s.set_condition(CRDCondition.build(
                CONDITION_NAMESPACE_READY, True, "NamespaceCreated", root_ns))
            s.set_condition(CRDCondition.build(
                CONDITION_PKI_READY,
                pki.all_present,
                "SecretsPresent" if pki.all_present else "SecretsMissing",
                ", ".join(pki.missing),
            ))
            unready = applied.unready()
            s.set_condition(CRDCondition.build(
                CONDITION_CONTROL_PLANE_READY,
                not unready,
                "StatefulSetsReady" if not unready else "StatefulSetsNotReady",
                ", ".join(unready),
            ))
            s.set_condition(CRDCondition.build(
                CONDITION_UPGRADE_AVAILABLE,
                plan.upgrade_available,
                "ClusterVersionChanged" if plan.upgrade_available else "UpToDate",
                bundle.cluster_version_name,
            ))
            s.set_condition(CRDCondition.build(
                CONDITION_READY,
                new_phase == Phase.RUNNING,
                new_phase.value,
            ))

        vc = self.status.update(vc, record)

        if new_phase != current:
            self.events.info(
                vc,
                reason=f"Phase{new_phase.value}",
                message=f"Phase changed from {current.value} to {new_phase.value}",
            )

        # The hash is persisted before the trigger is consumed
        if plan.consume_label:
            consume_trigger_label(self.host, vc)

        if new_phase != target:
            return ReconcileResult.after(0, phase=new_phase)
        if not inputs.ready:
            return ReconcileResult.after(READINESS_POLL_SECONDS, phase=new_phase)
        return ReconcileResult.done(new_phase)

    def _delete(self, vc):
        meta = vc["metadata"]
        namespace, name = meta.get("namespace"), meta["name"]

        if FINALIZER not in (meta.get("finalizers") or []):
            return ReconcileResult.done(Phase.TERMINATING)

        current = Phase.parse(load_status(vc).phase)
        target = next_phase(observe_inputs(vc), current)
        if target != current:
            try:
                vc = self.status.update(vc, lambda s: setattr(s, "phase", target.value))
            except TransientError as e:
                logger.info(f"Could not record Terminating on {namespace}/{name}: {e}")

        result = self.deleter.teardown(vc)
        self.events.info(
            vc,
            reason="Terminated",
            message=f"Root namespace {result.namespace_status}, finalizer removed",
        )
        return ReconcileResult.done(Phase.TERMINATING)

    def _on_configuration_error(self, vc, error):
        meta = vc["metadata"]
        status = load_status(vc)
        count = status.configErrorCount + 1
        exhausted = count >= self.config.error_retry_threshold

        logger.warning(
            f"Configuration error on {meta.get('namespace')}/{meta['name']} "
            f"(attempt {count}/{self.config.error_retry_threshold}): {error}"
        )

        def record(s):
            s.configErrorCount = count
            s.reason = error.reason
            s.message = str(error)
            if exhausted:
                s.phase = next_phase(observe_inputs(vc, failed=True), Phase.parse(s.phase)).value
            s.set_condition(CRDCondition.build(
                CONDITION_READY, False, error.reason, str(error)))

        try:
            self.status.update(vc, record)
        except TransientError as e:
            logger.info(f"Could not record configuration error: {e}")

        self.events.warn(vc, reason=error.reason, message=str(error))
        if exhausted:
            return ReconcileResult.done(Phase.ERROR)
        return ReconcileResult.backoff(error)

    def _on_invariant_violation(self, vc, error):
        meta = vc["metadata"]
        logger.error(
            f"Invariant violated on {meta.get('namespace')}/{meta['name']}: {error}"
        )

        def record(s):
            s.phase = next_phase(observe_inputs(vc, failed=True), Phase.parse(s.phase)).value
            s.reason = error.reason
            s.message = str(error)
            s.set_condition(CRDCondition.build(
                CONDITION_READY, False, error.reason, str(error)))

        try:
            self.status.update(vc, record)
        except TransientError as e:
            logger.info(f"Could not record invariant violation: {e}")
            return ReconcileResult.backoff(e)

        self.events.warn(vc, reason=error.reason, message=str(error))
        return ReconcileResult.done(Phase.ERROR)
