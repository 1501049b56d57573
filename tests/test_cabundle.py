from __future__ import annotations

from cabundle import CABundleRegistry, LabelKeys


def test_set_bundle_stores_bundle_and_derives_label_keys() -> None:
    reg = CABundleRegistry()
    reg.set_bundle("admgate-svc", b"-----BEGIN CERTIFICATE-----")

    assert reg.get_bundle("admgate-svc") == b"-----BEGIN CERTIFICATE-----"
    assert reg.label_keys("admgate-svc") == LabelKeys(
        tag_key="admgate.io/tag-admgate-svc",
        echo_key="admgate.io/echo-admgate-svc",
    )


def test_set_bundle_again_keeps_the_same_key_pair() -> None:
    reg = CABundleRegistry()
    reg.set_bundle("svc", b"one")
    first = reg.label_keys("svc")
    reg.set_bundle("svc", b"one")
    reg.set_bundle("svc", b"two")

    assert reg.label_keys("svc") == first
    assert reg.get_bundle("svc") == b"two"


def test_reset_bundle_only_reports_real_changes() -> None:
    reg = CABundleRegistry()
    reg.set_bundle("svc", b"old")

    assert reg.reset_bundle("svc", b"old") is False
    assert reg.reset_bundle("svc", b"") is False
    assert reg.get_bundle("svc") == b"old"

    assert reg.reset_bundle("svc", b"new") is True
    assert reg.get_bundle("svc") == b"new"


def test_reset_bundle_does_not_derive_label_keys() -> None:
    reg = CABundleRegistry()

    assert reg.reset_bundle("fresh", b"pem") is True
    assert reg.get_bundle("fresh") == b"pem"
    assert reg.label_keys("fresh") is None


def test_unknown_service_has_empty_bundle() -> None:
    reg = CABundleRegistry()
    assert reg.get_bundle("nope") == b""
    assert reg.label_keys("nope") is None
