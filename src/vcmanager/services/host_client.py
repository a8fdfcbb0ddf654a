"""Host cluster API access used by every reconcile step.

All objects cross this boundary as plain dicts in the API's camelCase
wire format, so the reconcile logic never depends on generated client models.
"""

import logging

import kubernetes
import urllib3
from kubernetes.client.exceptions import ApiException

from vcmanager.constants import GROUP, VERSION
from vcmanager.errors import HostAPIError, TransientError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (409, 429, 500, 502, 503, 504)

# Custom resources accept JSON merge patch, not strategic merge
MERGE_PATCH = "application/merge-patch+json"

# kind -> (api attribute, method suffix, namespaced)
KIND_REGISTRY = {
    "Namespace": ("core_v1", "namespace", False),
    "Secret": ("core_v1", "namespaced_secret", True),
    "Service": ("core_v1", "namespaced_service", True),
    "StatefulSet": ("apps_v1", "namespaced_stateful_set", True),
}


def translate_api_exception(e, kind=None, namespace=None, name=None):
    """Map a client exception onto the operator's error taxonomy."""
    if isinstance(e, ApiException):
        message = f"{e.status} {e.reason}"
        if e.status in TRANSIENT_STATUS_CODES:
            return TransientError(
                message, status=e.status, kind=kind, namespace=namespace, name=name
            )
        return HostAPIError(
            message, status=e.status, kind=kind, namespace=namespace, name=name
        )
    return TransientError(
        f"Host API unreachable: {e}", kind=kind, namespace=namespace, name=name
    )


class HostClient:
    """Get/Create/Patch/Delete for built-in kinds and the tenancy custom resources."""

    def __init__(self, api_client=None, field_manager="vcmanager"):
        self.api_client = api_client or kubernetes.client.ApiClient()
        self.field_manager = field_manager
        self.core_v1 = kubernetes.client.CoreV1Api(self.api_client)
        self.apps_v1 = kubernetes.client.AppsV1Api(self.api_client)
        self.custom = kubernetes.client.CustomObjectsApi(self.api_client)

    def _method(self, verb, kind):
        try:
            api_attr, suffix, namespaced = KIND_REGISTRY[kind]
        except KeyError:
            raise ValueError(f"Unsupported kind: {kind}")
        return getattr(getattr(self, api_attr), f"{verb}_{suffix}"), namespaced

    def _to_dict(self, obj):
        if obj is None or isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    def _call(self, fn, ctx, **kwargs):
        """Invoke ``fn``; ``ctx`` is the (kind, namespace, name) used in errors.

        404 is re-raised as ApiException for the caller to interpret.
        """
        try:
            return fn(**kwargs)
        except ApiException as e:
            if e.status == 404:
                raise
            raise translate_api_exception(e, *ctx) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise translate_api_exception(e, *ctx) from e

    def get(self, kind, namespace, name):
        """Read an object, returning None when it does not exist."""
        fn, namespaced = self._method("read", kind)
        kwargs = {"name": name, "namespace": namespace} if namespaced else {"name": name}
        try:
            return self._to_dict(self._call(fn, (kind, namespace, name), **kwargs))
        except ApiException:
            return None

    def create(self, kind, body):
        fn, namespaced = self._method("create", kind)
        meta = body.get("metadata", {})
        namespace, name = meta.get("namespace"), meta.get("name")
        kwargs = {"body": body, "field_manager": self.field_manager}
        if namespaced:
            kwargs["namespace"] = namespace
        try:
            created = self._call(fn, (kind, namespace, name), **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, kind, namespace, name) from e
        logger.info(f"Created {kind} {namespace or ''}/{name}")
        return self._to_dict(created)

    def patch(self, kind, namespace, name, body):
        """Strategic merge patch restricted to the fields in ``body``."""
        fn, namespaced = self._method("patch", kind)
        kwargs = {"name": name, "body": body, "field_manager": self.field_manager}
        if namespaced:
            kwargs["namespace"] = namespace
        try:
            patched = self._call(fn, (kind, namespace, name), **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, kind, namespace, name) from e
        logger.info(f"Patched {kind} {namespace or ''}/{name}")
        return self._to_dict(patched)

    def delete(self, kind, namespace, name):
        """Delete an object. Returns False when it was already gone."""
        fn, namespaced = self._method("delete", kind)
        kwargs = {"name": name, "propagation_policy": "Background"}
        if namespaced:
            kwargs["namespace"] = namespace
        try:
            self._call(fn, (kind, namespace, name), **kwargs)
        except ApiException:
            logger.info(f"{kind} {namespace or ''}/{name} already deleted")
            return False
        logger.info(f"Deleted {kind} {namespace or ''}/{name}")
        return True

    # Tenancy custom resources

    def get_custom(self, plural, namespace, name):
        try:
            if namespace:
                return self._call(
                    self.custom.get_namespaced_custom_object,
                    (plural, namespace, name),
                    group=GROUP, version=VERSION, namespace=namespace,
                    plural=plural, name=name,
                )
            return self._call(
                self.custom.get_cluster_custom_object,
                (plural, None, name),
                group=GROUP, version=VERSION, plural=plural, name=name,
            )
        except ApiException:
            return None

    def list_custom(self, plural, namespace=None):
        try:
            if namespace:
                result = self.custom.list_namespaced_custom_object(
                    group=GROUP, version=VERSION, namespace=namespace, plural=plural
                )
            else:
                result = self.custom.list_cluster_custom_object(
                    group=GROUP, version=VERSION, plural=plural
                )
        except (ApiException, urllib3.exceptions.HTTPError, OSError) as e:
            raise translate_api_exception(e, plural, namespace) from e
        return result.get("items", [])

    def patch_custom(self, plural, namespace, name, body):
        """JSON merge patch on a namespaced custom object (metadata/spec)."""
        try:
            return self._call(
                self.custom.patch_namespaced_custom_object,
                (plural, namespace, name),
                group=GROUP, version=VERSION, namespace=namespace,
                plural=plural, name=name, body=body,
                _content_type=MERGE_PATCH,
            )
        except ApiException as e:
            raise translate_api_exception(e, plural, namespace, name) from e

    def patch_custom_status(self, plural, namespace, name, body):
        """Write through the status subresource.

        A ``metadata.resourceVersion`` in ``body`` makes the write conditional.
        """
        try:
            return self._call(
                self.custom.patch_namespaced_custom_object_status,
                (plural, namespace, name),
                group=GROUP, version=VERSION, namespace=namespace,
                plural=plural, name=name, body=body,
                _content_type=MERGE_PATCH,
            )
        except ApiException as e:
            raise translate_api_exception(e, plural, namespace, name) from e
