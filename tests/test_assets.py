"""Tests for template fetch, validation and web root deployment."""

from datetime import datetime
from pathlib import Path

import aiohttp
import pytest

from conftest import BASE_URL, TEMPLATES, FakeResponse, FakeSession, template_routes
from zaanet_provisioner.assets import AssetProvisioner, StagedAssets, looks_valid
from zaanet_provisioner.errors import EntryPointMissingError, FetchError, MissingFilesError


def make_provisioner(settings, session, manifest=None, required=None):
    remote = settings.remote
    return AssetProvisioner(
        BASE_URL,
        manifest or remote.manifest,
        required or remote.required_files,
        Path(settings.paths.staging_dir),
        session=session,
    )


class TestLooksValid:
    """Tests for per-extension structural checks."""

    def test_markup(self):
        assert looks_valid("splash.html", b"<!DOCTYPE html><p>hi</p>")
        assert looks_valid("session.html", b"<HTML></HTML>")
        assert not looks_valid("splash.html", b"404: Not Found")

    def test_script(self):
        assert looks_valid("config.js", b"const a = 1;")
        assert looks_valid("script.js", b"// generated")
        assert not looks_valid("script.js", b"<html>error page</html>")

    def test_style(self):
        assert looks_valid("styles.css", b"body { color: red; }")
        assert not looks_valid("styles.css", b"plain words only")

    def test_empty_is_never_valid(self):
        assert not looks_valid("notes.txt", b"")
        assert looks_valid("notes.txt", b"anything")


class TestFetch:
    """Tests for AssetProvisioner.fetch."""

    @pytest.mark.asyncio
    async def test_fetches_whole_manifest(self, settings, fake_session):
        provisioner = make_provisioner(settings, fake_session)

        staged = await provisioner.fetch()

        assert sorted(staged.names()) == sorted(TEMPLATES)
        for path in staged.files:
            assert path.read_bytes() == TEMPLATES[path.name]
        assert not fake_session.closed

    @pytest.mark.asyncio
    async def test_invalid_file_fails_whole_fetch(self, settings):
        session = FakeSession(template_routes({"styles.css": FakeResponse(200, b"not a stylesheet")}))
        provisioner = make_provisioner(settings, session)

        with pytest.raises(FetchError) as exc_info:
            await provisioner.fetch()

        assert exc_info.value.failed_files == ["styles.css"]
        assert not isinstance(exc_info.value, MissingFilesError)
        staging = Path(settings.paths.staging_dir)
        assert list(staging.iterdir()) == []

    @pytest.mark.asyncio
    async def test_transport_errors_are_reported_per_file(self, settings):
        session = FakeSession(template_routes({
            "config.js": FakeResponse(404),
            "script.js": aiohttp.ClientConnectionError("connection reset"),
        }))
        provisioner = make_provisioner(settings, session)

        with pytest.raises(FetchError) as exc_info:
            await provisioner.fetch()

        assert exc_info.value.failed_files == ["config.js", "script.js"]

    @pytest.mark.asyncio
    async def test_required_file_outside_downloads_is_missing(self, settings, fake_session):
        provisioner = make_provisioner(
            settings, fake_session,
            manifest=["splash.html", "styles.css"],
            required=["splash.html", "config.js"],
        )

        with pytest.raises(MissingFilesError) as exc_info:
            await provisioner.fetch()

        assert exc_info.value.failed_files == ["config.js"]


class TestDeploy:
    """Tests for AssetProvisioner.deploy."""

    async def staged(self, settings, session):
        return await make_provisioner(settings, session).fetch()

    @pytest.mark.asyncio
    async def test_backs_up_and_replaces_web_root(self, settings, fake_session):
        web_root = Path(settings.paths.web_root)
        web_root.mkdir(parents=True)
        (web_root / "splash.html").write_text("<html>old portal</html>")
        (web_root / "old.css").write_text("a{}")
        (web_root / ".gitkeep").write_text("")

        staged = await self.staged(settings, fake_session)
        provisioner = make_provisioner(settings, fake_session)
        result = await provisioner.deploy(
            staged, web_root, "splash.html", settings.remote.critical_files,
            now=datetime(2024, 5, 1, 12, 30, 0),
        )

        assert result.backup.path == web_root.with_name("htdocs.backup.20240501-123000")
        assert (result.backup.path / "splash.html").read_text() == "<html>old portal</html>"
        assert not (web_root / "old.css").exists()
        assert (web_root / ".gitkeep").exists()
        assert (web_root / "splash.html").read_bytes() == TEMPLATES["splash.html"]
        assert sorted(result.deployed) == sorted(TEMPLATES)
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_fresh_web_root_has_no_backup(self, settings, fake_session):
        staged = await self.staged(settings, fake_session)
        provisioner = make_provisioner(settings, fake_session)

        result = await provisioner.deploy(
            staged, Path(settings.paths.web_root), "splash.html", settings.remote.critical_files,
        )

        assert result.backup is None
        assert (Path(settings.paths.web_root) / "config.js").exists()

    @pytest.mark.asyncio
    async def test_missing_entry_point_is_downloaded_directly(self, settings, fake_session):
        staged = await self.staged(settings, fake_session)
        (staged.staging_dir / "splash.html").unlink()
        staged.files = [p for p in staged.files if p.name != "splash.html"]

        provisioner = make_provisioner(settings, fake_session)
        result = await provisioner.deploy(
            staged, Path(settings.paths.web_root), "splash.html", settings.remote.critical_files,
        )

        assert result.recovered == ["splash.html"]
        assert (Path(settings.paths.web_root) / "splash.html").read_bytes() == TEMPLATES["splash.html"]

    @pytest.mark.asyncio
    async def test_unrecoverable_entry_point_is_fatal(self, settings, fake_session):
        staging = Path(settings.paths.staging_dir)
        staging.mkdir(parents=True)
        (staging / "config.js").write_bytes(TEMPLATES["config.js"])
        staged = StagedAssets(staging_dir=staging, files=[staging / "config.js"])

        session = FakeSession(template_routes({"splash.html": FakeResponse(500)}))
        provisioner = make_provisioner(settings, session)

        with pytest.raises(EntryPointMissingError):
            await provisioner.deploy(
                staged, Path(settings.paths.web_root), "splash.html", settings.remote.critical_files,
            )
