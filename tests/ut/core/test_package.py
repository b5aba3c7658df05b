"""Package 归档读取、依赖图与解包单元测试"""

from __future__ import annotations

import hashlib
import io
import os
import tarfile
from pathlib import Path

import pytest

from dpm.core.exceptions import (
    CyclicDependencyError,
    FormatError,
    PackageIOError,
    SizeMismatchError,
)
from dpm.core.package import Package, is_content_hash

H1 = "a" * 64
H2 = "b" * 64


def _archive_with_link(spec: bytes, link: str, link_target: str, through: str) -> bytes:
    """SPEC.yml + 符号链接 link -> link_target + 经由该链接写入的文件 through"""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:", format=tarfile.GNU_FORMAT) as tf:
        ti = tarfile.TarInfo("SPEC.yml")
        ti.size = len(spec)
        tf.addfile(ti, io.BytesIO(spec))

        ti = tarfile.TarInfo(link)
        ti.type = tarfile.SYMTYPE
        ti.linkname = link_target
        tf.addfile(ti)

        ti = tarfile.TarInfo(through)
        ti.size = 5
        tf.addfile(ti, io.BytesIO(b"pwned"))
    return buf.getvalue()


class TestIdentity:
    def test_sha256_of_bytes(self) -> None:
        pkg = Package.load(b"not really a tar")
        assert pkg.sha256() == hashlib.sha256(b"not really a tar").hexdigest()
        assert is_content_hash(pkg.sha256())
        assert pkg.size == 16

    def test_load_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(PackageIOError):
            Package.load_file(tmp_path / "nope.dpm")

    def test_save_and_reload(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("p"))]))
        path = pkg.save_to_file(tmp_path / "out" / "p.dpm")
        assert Package.load_file(path).sha256() == pkg.sha256()


class TestSpec:
    def test_reads_first_member(self, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("leaf", "3.1"))]))
        s = pkg.spec()
        assert (s.name, s.version) == ("leaf", "3.1")

    def test_spec_not_first(self, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([
            ("README", b"hi"),
            ("SPEC.yml", spec_bytes("leaf")),
        ]))
        with pytest.raises(FormatError, match="SPEC.yml"):
            pkg.spec()

    def test_empty_archive(self, archive_factory) -> None:
        with pytest.raises(FormatError):
            Package.load(archive_factory([])).spec()

    def test_garbage(self) -> None:
        with pytest.raises(FormatError):
            Package.load(b"\x00garbage" * 10).spec()

    def test_truncated_member(self, archive_factory) -> None:
        data = archive_factory([("SPEC.yml", b"x" * 300)])
        truncated = data[:512 + 100]
        with pytest.raises(SizeMismatchError) as exc:
            Package.load(truncated).spec()
        assert exc.value.code == "SIZE_MISMATCH"

    def test_spec_not_utf8(self, archive_factory) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", b"specVersion: \xff\xfe\n")]))
        with pytest.raises(FormatError, match="UTF-8"):
            pkg.spec()

    def test_unquoted_decimal_version(self, archive_factory) -> None:
        data = b"specVersion: 0.1.0\nspec:\n  name: leaf\n  version: 1.10\n"
        pkg = Package.load(archive_factory([("SPEC.yml", data)]))
        assert pkg.spec().version == "1.10"

    def test_read_member_missing(self, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("leaf"))]))
        with pytest.raises(FormatError, match="composition.yml"):
            pkg.read_member("composition.yml")


class TestDeps:
    def test_missing_deps_is_leaf(self, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("leaf"))]))
        assert pkg.deps() == {pkg.sha256(): []}
        assert pkg.order() == [pkg.sha256()]

    def test_self_key_promoted(self, archive_factory, spec_bytes) -> None:
        deps = f"this: [{H2}, {H1}]\n{H1}: []\n{H2}: [{H1}]\n".encode()
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("top")), ("DEPS", deps)]))
        own = pkg.sha256()
        assert pkg.deps() == {own: [H1, H2], H1: [], H2: [H1]}
        assert pkg.order() == [H1, H2, own]

    def test_malformed_deps(self, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("top")), ("DEPS", b"- x\n")]))
        with pytest.raises(FormatError):
            pkg.deps()

    def test_deps_not_utf8(self, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("top")), ("DEPS", b"this: [\xff]\n")]))
        with pytest.raises(FormatError, match="UTF-8"):
            pkg.deps()

    def test_order_validation(self, archive_factory, spec_bytes) -> None:
        deps = f"this: [{H1}]\n{H1}: [{H2}]\n{H2}: [{H1}]\n".encode()
        pkg = Package.load(archive_factory([("SPEC.yml", spec_bytes("top")), ("DEPS", deps)]))
        assert pkg.order() == []
        with pytest.raises(CyclicDependencyError):
            pkg.order(validate=True)


class TestExtract:
    def test_closure_redirected(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([
            ("SPEC.yml", spec_bytes("top")),
            ("DEPS", f"this: [{H1}]\n{H1}: []\n".encode()),
            ("web/index.html", b"<html/>"),
            (f"deps/{H1}/SPEC.yml", spec_bytes("dep")),
            (f"deps/{H1}/app/run.sh", b"#!/bin/sh\n"),
        ]))
        dest, ws = tmp_path / "dest", tmp_path / "ws"
        created = pkg.extract(dest, ws)

        assert created == [H1]
        assert (dest / "web" / "index.html").read_bytes() == b"<html/>"
        assert not (dest / "DEPS").exists()
        assert not (dest / "deps").exists()
        assert (ws / H1 / "app" / "run.sh").read_bytes() == b"#!/bin/sh\n"
        assert [p.name for p in ws.iterdir()] == [H1]

    def test_legacy_top_level_hash(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([
            ("SPEC.yml", spec_bytes("top")),
            (f"{H1}/SPEC.yml", spec_bytes("dep")),
        ]))
        pkg.extract(tmp_path / "dest", tmp_path / "ws")
        assert (tmp_path / "ws" / H1 / "SPEC.yml").exists()

    def test_existing_workspace_untouched(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        ws = tmp_path / "ws"
        (ws / H1).mkdir(parents=True)
        (ws / H1 / "marker").write_text("keep")
        pkg = Package.load(archive_factory([
            ("SPEC.yml", spec_bytes("top")),
            (f"deps/{H1}/SPEC.yml", spec_bytes("dep")),
        ]))
        assert pkg.extract(tmp_path / "dest", ws) == []
        assert not (ws / H1 / "SPEC.yml").exists()
        assert (ws / H1 / "marker").read_text() == "keep"

    def test_unsafe_path(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([
            ("SPEC.yml", spec_bytes("top")),
            ("../evil", b"x"),
        ]))
        with pytest.raises(FormatError, match="不安全"):
            pkg.extract(tmp_path / "dest", tmp_path / "ws")
        assert not (tmp_path / "evil").exists()

    def test_write_through_symlink_rejected(self, tmp_path: Path, spec_bytes) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        pkg = Package.load(_archive_with_link(spec_bytes("top"), "web", str(outside), "web/evil"))
        with pytest.raises(FormatError, match="web/evil"):
            pkg.extract(tmp_path / "dest", tmp_path / "ws")
        assert not (outside / "evil").exists()

    def test_closure_write_through_symlink_rejected(self, tmp_path: Path, spec_bytes) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        pkg = Package.load(_archive_with_link(
            spec_bytes("top"), f"deps/{H1}/web", str(outside), f"deps/{H1}/web/evil",
        ))
        ws = tmp_path / "ws"
        with pytest.raises(FormatError):
            pkg.extract(tmp_path / "dest", ws)
        assert not (outside / "evil").exists()
        assert list(ws.iterdir()) == []

    def test_relative_symlink_inside_allowed(self, tmp_path: Path, spec_bytes) -> None:
        pkg = Package.load(_archive_with_link(spec_bytes("top"), "current", "web", "web/index.html"))
        dest = tmp_path / "dest"
        pkg.extract(dest, tmp_path / "ws")
        assert (dest / "current").is_symlink()
        assert (dest / "web" / "index.html").read_bytes() == b"pwned"

    def test_failed_extract_leaves_no_workspace(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([
            ("SPEC.yml", spec_bytes("top")),
            (f"deps/{H1}/SPEC.yml", spec_bytes("dep")),
            ("/abs/evil", b"x"),
        ]))
        ws = tmp_path / "ws"
        with pytest.raises(FormatError):
            pkg.extract(tmp_path / "dest", ws)
        assert list(ws.iterdir()) == []

    def test_extract_if_not_exist_idempotent(self, tmp_path: Path, archive_factory, spec_bytes) -> None:
        pkg = Package.load(archive_factory([
            ("SPEC.yml", spec_bytes("top")),
            ("data.txt", b"v1"),
        ]))
        ws = tmp_path / "ws"
        first = pkg.extract_if_not_exist(ws)
        assert first == ws / pkg.sha256()
        (first / "data.txt").write_text("local edit")

        second = pkg.extract_if_not_exist(ws)
        assert second == first
        assert (second / "data.txt").read_text() == "local edit"
        assert not [p for p in ws.iterdir() if p.name.startswith(".tmp-")]

    def test_modes_and_symlinks(self, tmp_path: Path, make_source, builder) -> None:
        src = make_source("modes")
        script = src / "web" / "start.sh"
        script.write_text("#!/bin/sh\n")
        os.chmod(script, 0o755)
        os.symlink("Dockerfile", src / "web" / "Dockerfile.link")

        pkg = builder.build(src)
        dest = tmp_path / "out"
        pkg.extract(dest, tmp_path / "ws")

        assert (dest / "web" / "start.sh").stat().st_mode & 0o777 == 0o755
        link = dest / "web" / "Dockerfile.link"
        assert link.is_symlink()
        assert os.readlink(link) == "Dockerfile"


class TestSharedWorkspace:
    def test_common_dependency_extracted_once(
        self, tmp_path: Path, builder, make_source, publish_pkg,
    ) -> None:
        base = builder.build(make_source("base", "1.0", drivers={"m": "none"}))
        publish_pkg(base)
        a = builder.build(make_source("a", "1.0", dependencies={"base": "version=1.0"}))
        b = builder.build(make_source("b", "1.0", dependencies={"base": ""}))

        ws = tmp_path / "fresh-ws"
        assert a.extract(tmp_path / "a", ws) == [base.sha256()]
        assert b.extract(tmp_path / "b", ws) == []
        assert sorted(p.name for p in ws.iterdir()) == [base.sha256()]
        assert (ws / base.sha256() / "SPEC.yml").exists()


class TestFilename:
    def test_platform_tag(self, builder, make_source) -> None:
        pkg = builder.build(make_source("test"))
        assert pkg.platforms() == "do+none"
        assert pkg.filename() == "test_0.1.0.dev-do+none.dpm"

    def test_save_to_dir(self, tmp_path: Path, builder, make_source) -> None:
        pkg = builder.build(make_source("test"))
        path = pkg.save_to_dir(tmp_path / "dist")
        assert path.name == "test_0.1.0.dev-do+none.dpm"
        assert Package.load_file(path).sha256() == pkg.sha256()
