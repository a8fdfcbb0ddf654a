"""Unit tests for phase derivation and transitions."""

from __future__ import annotations

import pytest

from vcmanager.constants import FINALIZER
from vcmanager.services.phase import (
    ALLOWED_TRANSITIONS,
    Phase,
    PhaseInputs,
    derive_phase,
    is_allowed,
    next_phase,
    observe_inputs,
    statefulset_ready,
    step_toward,
)

READY = PhaseInputs(
    has_finalizer=True,
    namespace_assigned=True,
    secrets_present=True,
    services_present=True,
    components_ready=True,
)
NOT_READY = PhaseInputs(has_finalizer=True, namespace_assigned=True, secrets_present=True)


class TestDerivePhase:
    """Tests for derive_phase."""

    @pytest.mark.unit
    @pytest.mark.parametrize("current", list(Phase))
    def test_deletion_wins(self, current: Phase) -> None:
        inputs = PhaseInputs(deleting=True, failed=True, upgrade_applied=True)

        assert derive_phase(inputs, current) == Phase.TERMINATING

    @pytest.mark.unit
    def test_pending_until_finalizer_and_namespace(self) -> None:
        assert derive_phase(PhaseInputs(), Phase.PENDING) == Phase.PENDING
        assert derive_phase(PhaseInputs(has_finalizer=True), Phase.PENDING) == Phase.PENDING

    @pytest.mark.unit
    def test_creating_until_ready(self) -> None:
        assert derive_phase(NOT_READY, Phase.PENDING) == Phase.CREATING
        assert derive_phase(READY, Phase.CREATING) == Phase.RUNNING

    @pytest.mark.unit
    def test_upgrade_holds_until_ready(self) -> None:
        upgrading = PhaseInputs(**{**NOT_READY.__dict__, "upgrade_applied": True})

        assert derive_phase(upgrading, Phase.RUNNING) == Phase.UPGRADING
        assert derive_phase(NOT_READY, Phase.UPGRADING) == Phase.UPGRADING
        assert derive_phase(READY, Phase.UPGRADING) == Phase.RUNNING

    @pytest.mark.unit
    def test_running_loses_readiness(self) -> None:
        assert derive_phase(NOT_READY, Phase.RUNNING) == Phase.CREATING

    @pytest.mark.unit
    def test_failure(self) -> None:
        assert derive_phase(PhaseInputs(failed=True), Phase.CREATING) == Phase.ERROR


class TestStepToward:
    """Tests for step_toward and the transition table."""

    @pytest.mark.unit
    def test_direct_transition(self) -> None:
        assert step_toward(Phase.CREATING, Phase.RUNNING) == Phase.RUNNING

    @pytest.mark.unit
    def test_multi_hop_moves_one_step(self) -> None:
        assert step_toward(Phase.PENDING, Phase.RUNNING) == Phase.CREATING

    @pytest.mark.unit
    def test_terminating_is_final(self) -> None:
        for target in Phase:
            assert step_toward(Phase.TERMINATING, target) == Phase.TERMINATING

    @pytest.mark.unit
    def test_upgrading_only_from_running(self) -> None:
        assert not is_allowed(Phase.CREATING, Phase.UPGRADING)
        assert step_toward(Phase.CREATING, Phase.UPGRADING) == Phase.RUNNING

    @pytest.mark.unit
    def test_error_is_left_for_any_phase(self) -> None:
        assert ALLOWED_TRANSITIONS[Phase.ERROR] == set(Phase) - {Phase.ERROR}

    @pytest.mark.unit
    @pytest.mark.parametrize("current", [p for p in Phase if p != Phase.TERMINATING])
    def test_every_live_phase_may_terminate(self, current: Phase) -> None:
        assert is_allowed(current, Phase.TERMINATING)

    @pytest.mark.unit
    def test_parse(self) -> None:
        assert Phase.parse(None) == Phase.PENDING
        assert Phase.parse("Running") == Phase.RUNNING
        assert Phase.parse("Exploded") == Phase.PENDING


class TestObserveInputs:
    """Tests for observe_inputs and next_phase."""

    @pytest.mark.unit
    def test_fresh_object(self) -> None:
        inputs = observe_inputs({"metadata": {"name": "vc"}})

        assert inputs == PhaseInputs()
        assert next_phase(inputs, Phase.PENDING) == Phase.PENDING

    @pytest.mark.unit
    def test_reads_finalizer_and_namespace(self) -> None:
        vc = {
            "metadata": {"name": "vc", "finalizers": [FINALIZER]},
            "status": {"clusterNamespace": "default-abc123-vc"},
        }

        inputs = observe_inputs(vc, secrets_present=True)

        assert inputs.has_finalizer
        assert inputs.namespace_assigned
        assert inputs.secrets_present
        assert not inputs.deleting
        assert next_phase(inputs, Phase.PENDING) == Phase.CREATING

    @pytest.mark.unit
    def test_observed_value_overrides_object(self) -> None:
        vc = {"metadata": {"finalizers": [FINALIZER]}}

        inputs = observe_inputs(vc, namespace_assigned=True)

        assert inputs.namespace_assigned
        assert next_phase(inputs, Phase.PENDING) == Phase.CREATING

    @pytest.mark.unit
    def test_deletion_timestamp(self) -> None:
        vc = {"metadata": {"deletionTimestamp": "2024-01-01T00:00:00Z", "finalizers": [FINALIZER]}}

        inputs = observe_inputs(vc, failed=True)

        assert inputs.deleting
        assert next_phase(inputs, Phase.RUNNING) == Phase.TERMINATING

    @pytest.mark.unit
    def test_foreign_finalizer_does_not_count(self) -> None:
        vc = {"metadata": {"finalizers": ["example.com/other"]}, "status": {"clusterNamespace": "ns"}}

        assert not observe_inputs(vc).has_finalizer

    @pytest.mark.unit
    def test_failure_moves_one_step_toward_error(self) -> None:
        vc = {"metadata": {"finalizers": [FINALIZER]}}

        assert next_phase(observe_inputs(vc, failed=True), Phase.CREATING) == Phase.ERROR
        assert next_phase(observe_inputs(vc, failed=True), Phase.TERMINATING) == Phase.TERMINATING


class TestStatefulsetReady:
    """Tests for statefulset_ready."""

    @staticmethod
    def sts(spec: int, replicas: int, ready: int, generation: int = 1, observed: int = 1) -> dict:
        return {
            "metadata": {"generation": generation},
            "spec": {"replicas": spec},
            "status": {
                "replicas": replicas,
                "readyReplicas": ready,
                "observedGeneration": observed,
            },
        }

    @pytest.mark.unit
    def test_ready(self) -> None:
        assert statefulset_ready(self.sts(1, 1, 1), 1)

    @pytest.mark.unit
    def test_partially_ready(self) -> None:
        assert not statefulset_ready(self.sts(3, 3, 2), 3)

    @pytest.mark.unit
    def test_spec_differs_from_desired(self) -> None:
        assert not statefulset_ready(self.sts(1, 1, 1), 3)

    @pytest.mark.unit
    def test_stale_status(self) -> None:
        assert not statefulset_ready(self.sts(1, 1, 1, generation=2, observed=1), 1)

    @pytest.mark.unit
    def test_missing(self) -> None:
        assert not statefulset_ready(None, 1)
        assert not statefulset_ready({"spec": {"replicas": 1}}, 1)
