"""Owned-field diff between a desired object and its observed counterpart.

Only fields present in the desired object are compared, so fields set by
other controllers (status, defaults, externally added labels or
annotations) never produce a patch. Lists of dicts keyed by ``name``
(containers, ports, env, volumes) are matched item by item; any other list
is compared exactly. A field missing from the observed object equals a
zero-valued desired field, since the API server drops those on output.
"""

_NO_CHANGE = object()

IGNORED_METADATA_KEYS = (
    "name",
    "namespace",
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "ownerReferences",
    "finalizers",
)


def _is_named_list(value):
    return bool(value) and all(isinstance(i, dict) and "name" in i for i in value)


def _is_zero(value):
    """False, 0, "", [] and {} are omitted from objects the API server returns."""
    if isinstance(value, (bool, int, float, str, list, dict)):
        return not value
    return False


def _scalar_equal(desired, observed):
    if desired == observed:
        return True
    # The API server may echo ints as strings (targetPort, quantities)
    if isinstance(desired, (int, float)) or isinstance(observed, (int, float)):
        return str(desired) == str(observed)
    return False


def _diff(desired, observed):
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return desired
        patch = {}
        for key, value in desired.items():
            if value is None:
                continue
            current = observed.get(key)
            if current is None:
                if _is_zero(value):
                    continue
                if not isinstance(value, dict):
                    patch[key] = value
                    continue
                current = {}
            sub = _diff(value, current)
            if sub is not _NO_CHANGE:
                patch[key] = sub
        return patch if patch else _NO_CHANGE

    if isinstance(desired, list):
        if not isinstance(observed, list):
            return desired
        if _is_named_list(desired) and _is_named_list(observed):
            by_name = {item["name"]: item for item in observed}
            for item in desired:
                current = by_name.get(item["name"])
                if current is None or _diff(item, current) is not _NO_CHANGE:
                    return desired
            return _NO_CHANGE
        if len(desired) != len(observed):
            return desired
        for d, o in zip(desired, observed):
            if _diff(d, o) is not _NO_CHANGE:
                return desired
        return _NO_CHANGE

    return _NO_CHANGE if _scalar_equal(desired, observed) else desired


def compute_patch(desired, observed, ignored_spec_fields=()):
    """Return the merge patch that brings ``observed`` to ``desired``.

    Args:
        desired: Desired object (dict, API wire format)
        observed: Current object read from the host API
        ignored_spec_fields: Top-level spec keys that must not be patched

    Returns:
        dict: patch body, empty when the object is already converged
    """
    desired = dict(desired)
    desired.pop("status", None)
    desired.pop("apiVersion", None)
    desired.pop("kind", None)

    meta = {
        k: v
        for k, v in (desired.pop("metadata", None) or {}).items()
        if k not in IGNORED_METADATA_KEYS
    }
    if meta:
        desired["metadata"] = meta

    if ignored_spec_fields and isinstance(desired.get("spec"), dict):
        desired["spec"] = {
            k: v for k, v in desired["spec"].items() if k not in ignored_spec_fields
        }

    patch = _diff(desired, observed or {})
    return {} if patch is _NO_CHANGE else patch

