# cabundle.py
from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from typing import Dict, Optional

LABEL_KEY_PREFIX = "admgate.io"


@dataclass(frozen=True)
class LabelKeys:
    tag_key: str
    echo_key: str


def derive_label_keys(service: str) -> LabelKeys:
    return LabelKeys(
        tag_key=f"{LABEL_KEY_PREFIX}/tag-{service}",
        echo_key=f"{LABEL_KEY_PREFIX}/echo-{service}",
    )


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class CABundleRegistry:
    """CA bundle per webhook service, plus the tag/echo label keys the probe uses.

    One instance per process, handed to whoever needs it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._bundles: Dict[str, bytes] = {}
        self._label_keys: Dict[str, LabelKeys] = {}

    def set_bundle(self, service: str, bundle: bytes) -> None:
        """Store the bundle and (re)derive the label keys. Initial sync and rotation."""
        bundle = bytes(bundle or b"")
        with self._lock:
            self._bundles[service] = bundle
            self._label_keys[service] = derive_label_keys(service)
        print(f"[cabundle] set service={service} md5={_md5(bundle)}")

    def reset_bundle(self, service: str, bundle: bytes) -> bool:
        """Replace the bundle only if it is non-empty and different. Label keys are left alone."""
        new = bytes(bundle or b"")
        with self._lock:
            old = self._bundles.get(service, b"")
            if not new or new == old:
                return False
            self._bundles[service] = new
        print(f"[cabundle] reset service={service} old_md5={_md5(old)} new_md5={_md5(new)}")
        return True

    def get_bundle(self, service: str) -> bytes:
        with self._lock:
            return self._bundles.get(service, b"")

    def label_keys(self, service: str) -> Optional[LabelKeys]:
        with self._lock:
            return self._label_keys.get(service)
