"""Kubernetes events posted on VirtualCluster objects."""

import logging

import kopf

logger = logging.getLogger(__name__)


class EventRecorder:
    """Thin wrapper over kopf's event posting.

    Outside a running operator (CLI, tests) kopf has no event queue; the
    event is then only logged.
    """

    def info(self, vc, reason, message):
        self._post(kopf.info, vc, reason, message)

    def warn(self, vc, reason, message):
        self._post(kopf.warn, vc, reason, message)

    def _post(self, fn, vc, reason, message):
        try:
            fn(vc, reason=reason, message=message)
        except (LookupError, RuntimeError):
            logger.debug(f"Event not posted ({reason}): {message}")


class NullEventRecorder(EventRecorder):
    def _post(self, fn, vc, reason, message):
        logger.debug(f"Event {reason}: {message}")
