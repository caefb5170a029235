"""Unit tests for nested bundle identity resolution."""

from __future__ import annotations

import plistlib
from pathlib import Path

import pytest

from appship.core import bundle_identity
from appship.core.bundle_identity import (
    IdentityConflictUnresolved,
    derive_identifier,
    discover_nested_bundles,
    ensure_primary_identifier,
    resolve_identities,
    sanitize,
)
from appship.models.identity import BundleScope, IdentityStatus, NestedBundle
from conftest import PRIMARY_ID, read_identifier, write_info_plist


def _resolve(app: Path):
    return resolve_identities(PRIMARY_ID, discover_nested_bundles(app), root=app)


# ---------------------------------------------------------------------------
# Test: discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    """Nested bundles are found by directory suffix."""

    def test_all_scopes_found(self, make_app):
        app = make_app(nested={
            "Frameworks/Alpha.framework": "com.vendor.alpha",
            "PlugIns/Share.appex": "com.acme.app.share",
            "Assets.bundle": "com.acme.assets",
        })
        found = {b.path.relative_to(app).as_posix(): b.scope for b in discover_nested_bundles(app)}
        assert found == {
            "Assets.bundle": BundleScope.RESOURCE_BUNDLE,
            "Frameworks/Alpha.framework": BundleScope.FRAMEWORK,
            "PlugIns/Share.appex": BundleScope.EXTENSION,
        }

    def test_bundles_nested_in_frameworks(self, make_app):
        app = make_app(nested={
            "Frameworks/Alpha.framework": "com.vendor.alpha",
            "Frameworks/Alpha.framework/Resources.bundle": "com.vendor.alpha.res",
        })
        assert len(discover_nested_bundles(app)) == 2

    def test_symlinks_not_followed(self, make_app, tmp_path: Path):
        app = make_app()
        outside = tmp_path / "elsewhere" / "Linked.framework"
        write_info_plist(outside, PRIMARY_ID)
        (app / "Frameworks").mkdir()
        (app / "Frameworks" / "Linked.framework").symlink_to(outside)
        assert discover_nested_bundles(app) == []

    def test_from_path_rejects_unknown_suffix(self, tmp_path: Path):
        with pytest.raises(ValueError):
            NestedBundle.from_path(tmp_path / "Thing.dylib")


# ---------------------------------------------------------------------------
# Test: resolution
# ---------------------------------------------------------------------------


class TestResolution:
    """Colliding identifiers are replaced with derived ones."""

    def test_frameworks_colliding_with_primary(self, make_app):
        app = make_app(nested={
            "Frameworks/Alpha.framework": PRIMARY_ID,
            "Frameworks/Beta.framework": PRIMARY_ID,
        })
        report = _resolve(app)

        assert [i.identifier for i in report.identities] == [
            "com.acme.app.framework.alpha",
            "com.acme.app.framework.beta",
        ]
        assert all(i.status == IdentityStatus.REPAIRED for i in report.identities)
        assert all(i.previous_identifier == PRIMARY_ID for i in report.identities)
        assert read_identifier(app / "Frameworks/Alpha.framework") == "com.acme.app.framework.alpha"
        assert read_identifier(app) == PRIMARY_ID

    def test_unique_identifiers_are_accepted(self, make_app):
        app = make_app(nested={"Frameworks/Alpha.framework": "com.vendor.alpha"})
        report = _resolve(app)
        assert report.identities[0].status == IdentityStatus.ACCEPTED
        assert report.write_count == 0

    def test_duplicate_between_nested_bundles(self, make_app):
        """The first bundle in path order keeps a shared identifier."""
        app = make_app(nested={
            "Frameworks/Alpha.framework": "com.vendor.shared",
            "Frameworks/Beta.framework": "com.vendor.shared",
        })
        report = _resolve(app)
        assert report.identities[0].identifier == "com.vendor.shared"
        assert report.identities[1].identifier == "com.acme.app.framework.beta"

    def test_numeric_suffix_on_derived_collision(self, make_app):
        app = make_app(nested={
            "Frameworks/My-Kit.framework": PRIMARY_ID,
            "PlugIns/Extra/Frameworks/MyKit.framework": PRIMARY_ID,
        })
        report = _resolve(app)
        assert [i.identifier for i in report.identities] == [
            "com.acme.app.framework.mykit",
            "com.acme.app.framework.mykit.2",
        ]

    def test_scope_tags(self, make_app):
        app = make_app(nested={
            "PlugIns/Share.appex": PRIMARY_ID,
            "Assets.bundle": PRIMARY_ID,
        })
        ids = {i.path: i.identifier for i in _resolve(app).identities}
        assert ids == {
            "Assets.bundle": "com.acme.app.bundle.assets",
            "PlugIns/Share.appex": "com.acme.app.extension.share",
        }

    def test_assigned_identifiers_unique(self, make_app):
        app = make_app(nested={
            f"Frameworks/F{i}.framework": PRIMARY_ID for i in range(5)
        } | {"Frameworks/f0.bundle": PRIMARY_ID})
        assigned = _resolve(app).assigned_identifiers()
        assert len(assigned) == len(set(assigned)) == 6
        assert PRIMARY_ID not in assigned

    def test_second_pass_writes_nothing(self, make_app):
        app = make_app(nested={
            "Frameworks/Alpha.framework": PRIMARY_ID,
            "Frameworks/Beta.framework": PRIMARY_ID,
        })
        first = _resolve(app)
        plist = app / "Frameworks/Alpha.framework/Info.plist"
        before = plist.stat().st_mtime_ns
        second = _resolve(app)

        assert second.write_count == 0
        assert second.assigned_identifiers() == first.assigned_identifiers()
        assert plist.stat().st_mtime_ns == before

    def test_undeclared_bundle(self, make_app):
        app = make_app(nested={"Assets.bundle": None})
        report = _resolve(app)
        assert report.identities[0].status == IdentityStatus.UNDECLARED
        assert report.identities[0].identifier is None

    def test_binary_plist_stays_binary(self, make_app):
        app = make_app()
        bundle = app / "Frameworks" / "Alpha.framework"
        write_info_plist(bundle, PRIMARY_ID, fmt=plistlib.FMT_BINARY, CFBundleVersion="7")
        _resolve(app)

        data = (bundle / "Info.plist").read_bytes()
        assert data.startswith(b"bplist00")
        content = plistlib.loads(data)
        assert content["CFBundleIdentifier"] == "com.acme.app.framework.alpha"
        assert content["CFBundleVersion"] == "7"

    def test_unreadable_bundle_does_not_stop_others(self, make_app):
        app = make_app(nested={
            "Frameworks/Alpha.framework": PRIMARY_ID,
            "Frameworks/Beta.framework": PRIMARY_ID,
        })
        (app / "Frameworks/Alpha.framework/Info.plist").write_bytes(b"not a plist")
        report = _resolve(app)

        alpha, beta = report.identities
        assert alpha.status == IdentityStatus.FAILED
        assert "unreadable" in alpha.error
        assert beta.status == IdentityStatus.REPAIRED
        assert not report.primary_conflict

    def test_write_failure_reports_primary_conflict(self, make_app, monkeypatch):
        app = make_app(nested={"Frameworks/Alpha.framework": PRIMARY_ID})

        def refuse(bundle, identifier):
            raise PermissionError(f"read-only: {bundle.name}")

        monkeypatch.setattr(bundle_identity, "write_bundle_identifier", refuse)
        report = _resolve(app)

        assert report.identities[0].status == IdentityStatus.FAILED
        assert report.primary_conflict
        with pytest.raises(IdentityConflictUnresolved, match="Alpha.framework"):
            raise IdentityConflictUnresolved(report)


class TestPrimaryIdentifier:
    """The primary identifier is authoritative."""

    def test_restored_when_drifted(self, make_app):
        app = make_app(identifier="com.acme.wrong")
        assert ensure_primary_identifier(app, PRIMARY_ID) == "com.acme.wrong"
        assert read_identifier(app) == PRIMARY_ID

    def test_untouched_when_correct(self, make_app):
        app = make_app()
        assert ensure_primary_identifier(app, PRIMARY_ID) is None


class TestNaming:
    @pytest.mark.parametrize("name,expected", [
        ("Alpha", "alpha"),
        ("My-Kit_2", "mykit2"),
        ("Ünïcode", "ncode"),
        ("---", "component"),
    ])
    def test_sanitize(self, name, expected):
        assert sanitize(name) == expected

    def test_derive_identifier(self):
        assert derive_identifier(
            PRIMARY_ID, BundleScope.EXTENSION, "Share Extension"
        ) == "com.acme.app.extension.shareextension"
