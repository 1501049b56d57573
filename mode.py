# mode.py
import os

ANNOTATION = "admgate.io/admission-control"
ALLOWED_ANNOTATION = "admgate.io/allowed-namespaces"

_ON = {"enable", "enabled", "true", "1"}
_OFF = {"disable", "disabled", "false", "0"}


def _parse(value):
    v = str(value or "").strip().lower()
    if v in _ON:
        return True
    if v in _OFF:
        return False
    return None


def admission_enabled(namespace_obj=None) -> bool:
    """
    Decide whether admission control should be registered.
    Priority:
      1) Environment variable ADMISSION_CONTROL (enable/disable)
      2) Annotation admgate.io/admission-control on the gate's namespace
      3) Default to disabled
    """
    env = _parse(os.environ.get("ADMISSION_CONTROL"))
    if env is not None:
        return env

    ann = ((namespace_obj or {}).get("metadata", {}) or {}).get("annotations", {}) or {}
    ns_value = _parse(ann.get(ANNOTATION))
    if ns_value is not None:
        return ns_value

    return False


def allowed_namespace_patterns(namespace_obj=None, base=None) -> list:
    """Allowed namespaces from config plus the comma list in admgate.io/allowed-namespaces."""
    ann = ((namespace_obj or {}).get("metadata", {}) or {}).get("annotations", {}) or {}
    extra = [p.strip() for p in (ann.get(ALLOWED_ANNOTATION) or "").split(",") if p.strip()]
    out = list(base or [])
    for p in extra:
        if p not in out:
            out.append(p)
    return out
