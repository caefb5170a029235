"""Unit tests for primary bundle discovery and package assembly."""

from __future__ import annotations

import stat
import zipfile
from pathlib import Path

import pytest

from appship.core.archive_assembler import (
    AmbiguousBundleError,
    BundleNotFoundError,
    MissingExecutableError,
    PackageTooSmallError,
    assemble_package,
    find_primary_bundle,
    validate_bundle,
)
from appship.core.hasher import file_sha256
from conftest import PRIMARY_ID, build_app, write_info_plist


# ---------------------------------------------------------------------------
# Test: discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    """Discovery steps run in priority order."""

    def test_conventional_location(self, make_archive):
        archive = make_archive()
        assert find_primary_bundle(archive) == archive / "Products/Applications/Runner.app"

    def test_anywhere_under_products(self, make_archive):
        archive = make_archive(app_rel="Products/Other/Runner.app")
        assert find_primary_bundle(archive) == archive / "Products/Other/Runner.app"

    def test_anywhere_in_archive(self, make_archive):
        archive = make_archive(app_rel="Build/Intermediates/Runner.app")
        (archive / "Products").mkdir()
        assert find_primary_bundle(archive) == archive / "Build/Intermediates/Runner.app"

    def test_bundle_at_archive_root_needs_no_repair(self, make_archive):
        archive = make_archive(app_rel="Runner.app")

        found = find_primary_bundle(archive)

        assert found == archive / "Runner.app"
        assert (found / "Runner").is_file()
        assert not (archive / "Products" / "Applications").exists()

    def test_conventional_location_wins(self, make_archive, tmp_path: Path):
        archive = make_archive()
        build_app(archive / "Build/Stale.app")
        assert find_primary_bundle(archive).name == "Runner.app"

    def test_nested_app_is_not_a_candidate(self, make_archive):
        archive = make_archive()
        build_app(archive / "Products/Applications/Runner.app/Watch/WatchApp.app")
        assert find_primary_bundle(archive).name == "Runner.app"

    def test_ambiguous_step_fails(self, make_archive):
        archive = make_archive()
        build_app(archive / "Products/Applications/Second.app")
        with pytest.raises(AmbiguousBundleError, match="2 candidate bundles"):
            find_primary_bundle(archive)

    def test_symlinked_bundle_is_materialised(self, tmp_path: Path):
        real = build_app(tmp_path / "derived" / "Runner.app")
        archive = tmp_path / "Runner.xcarchive"
        (archive / "Products").mkdir(parents=True)
        (archive / "Products" / "Runner.app").symlink_to(real)

        found = find_primary_bundle(archive)

        assert found == archive / "Products/Applications/Runner.app"
        assert found.is_dir() and not found.is_symlink()
        assert (found / "Runner").is_file()
        assert not (archive / "Products" / "Runner.app").exists()
        assert (real / "Runner").is_file()

    def test_empty_archive(self, tmp_path: Path):
        archive = tmp_path / "Empty.xcarchive"
        archive.mkdir()
        with pytest.raises(BundleNotFoundError, match="No .app bundle"):
            find_primary_bundle(archive)
        assert (archive / "Products" / "Applications").is_dir()

    def test_archive_missing(self, tmp_path: Path):
        with pytest.raises(BundleNotFoundError, match="Archive not found"):
            find_primary_bundle(tmp_path / "absent.xcarchive")


class TestValidation:
    def test_declared_executable(self, make_app):
        info = validate_bundle(make_app())
        assert info.executable == "Runner"
        assert info.identifier == PRIMARY_ID
        assert info.short_version == "1.0.0"

    def test_missing_executable(self, make_app):
        app = make_app()
        (app / "Runner").unlink()
        with pytest.raises(MissingExecutableError, match="'Runner' is missing"):
            validate_bundle(app)

    def test_executable_defaults_to_stem(self, tmp_path: Path):
        app = tmp_path / "Runner.app"
        write_info_plist(app, PRIMARY_ID)
        (app / "Runner").write_bytes(b"\x00" * 16)
        assert validate_bundle(app).executable == "Runner"


# ---------------------------------------------------------------------------
# Test: assembly
# ---------------------------------------------------------------------------


class TestAssembly:
    """Packages hold the bundle under Payload/ and are size checked."""

    def test_payload_layout(self, make_app, tmp_path: Path):
        app = make_app(nested={"Frameworks/Alpha.framework": "com.vendor.alpha"})
        output = tmp_path / "out" / "Acme.ipa"
        manifest = assemble_package(app, output, min_size=1000)

        with zipfile.ZipFile(output) as archive:
            names = archive.namelist()
        assert "Payload/" in names
        assert "Payload/Runner.app/Runner" in names
        assert "Payload/Runner.app/Info.plist" in names
        assert "Payload/Runner.app/Frameworks/Alpha.framework/Info.plist" in names
        assert all(name.startswith("Payload/") for name in names)

        assert manifest.path == output
        assert manifest.container == "Payload"
        assert manifest.bundle_name == "Runner.app"
        assert manifest.entry_count == len(names)
        assert manifest.uncompressed_bytes > 4096
        assert manifest.sha256 == file_sha256(output)

    def test_content_copied_verbatim(self, make_app, tmp_path: Path):
        app = make_app()
        output = tmp_path / "Acme.ipa"
        assemble_package(app, output, min_size=1000)
        with zipfile.ZipFile(output) as archive:
            assert archive.read("Payload/Runner.app/Runner") == (app / "Runner").read_bytes()

    def test_symlinks_kept_as_links(self, make_app, tmp_path: Path):
        app = make_app()
        versions = app / "Frameworks" / "Kit.framework" / "Versions"
        (versions / "A").mkdir(parents=True)
        (versions / "A" / "Kit").write_bytes(b"\x01" * 64)
        (versions / "Current").symlink_to("A")
        (app / "Frameworks" / "Kit.framework" / "Kit").symlink_to("Versions/Current/Kit")

        output = tmp_path / "Acme.ipa"
        assemble_package(app, output, min_size=1000)

        with zipfile.ZipFile(output) as archive:
            links = {
                info.filename: archive.read(info).decode()
                for info in archive.infolist()
                if stat.S_ISLNK(info.external_attr >> 16)
            }
        assert links == {
            "Payload/Runner.app/Frameworks/Kit.framework/Kit": "Versions/Current/Kit",
            "Payload/Runner.app/Frameworks/Kit.framework/Versions/Current": "A",
        }

    def test_undersized_package_is_deleted(self, make_app, tmp_path: Path):
        app = make_app(executable_bytes=512)
        output = tmp_path / "Acme.ipa"
        with pytest.raises(PackageTooSmallError, match="refusing partial build"):
            assemble_package(app, output)
        assert not output.exists()
        assert list(tmp_path.glob("*.partial")) == []
        assert list(tmp_path.glob(".*staging")) == []

    def test_size_at_threshold_is_rejected(self, make_app, tmp_path: Path):
        app = make_app()
        probe = assemble_package(app, tmp_path / "probe.ipa", min_size=0)
        with pytest.raises(PackageTooSmallError):
            assemble_package(app, tmp_path / "Acme.ipa", min_size=probe.uncompressed_bytes)

    def test_missing_executable_aborts_before_writing(self, make_app, tmp_path: Path):
        app = make_app()
        (app / "Runner").unlink()
        output = tmp_path / "Acme.ipa"
        with pytest.raises(MissingExecutableError):
            assemble_package(app, output, min_size=0)
        assert not output.exists()
