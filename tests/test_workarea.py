from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from playground_orch.errors import InvalidArchive
from playground_orch.jobs.workarea import (
    extract_archive,
    find_artifact,
    find_project_descriptor,
    render_tree,
    working_area,
    zip_directory,
)

from conftest import make_zip


def test_working_area_is_removed_even_on_error(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        with working_area(tmp_path) as area:
            (area / "obj").mkdir()
            (area / "obj" / "x.txt").write_text("x")
            raise RuntimeError("boom")

    assert list(tmp_path.iterdir()) == []


def test_working_areas_are_unique(tmp_path: Path) -> None:
    with working_area(tmp_path) as first, working_area(tmp_path) as second:
        assert first != second
        assert first.parent == second.parent == tmp_path


def test_read_only_files_do_not_block_cleanup(tmp_path: Path) -> None:
    with working_area(tmp_path) as area:
        locked = area / "locked"
        locked.mkdir()
        (locked / "file.txt").write_text("x")
        locked.chmod(0o500)

    assert list(tmp_path.iterdir()) == []


def test_entries_escaping_the_area_are_rejected(tmp_path: Path) -> None:
    archive = make_zip({"src/ok.cs": b"", "../../evil.sh": b"rm -rf /"})
    dest = tmp_path / "area"
    dest.mkdir()

    with pytest.raises(InvalidArchive):
        extract_archive(archive, dest)

    assert not (tmp_path / "evil.sh").exists()
    assert list(dest.iterdir()) == []


def test_extract_returns_files(tmp_path: Path) -> None:
    files = extract_archive(make_zip({"a/b.txt": b"1", "c.txt": b"2"}), tmp_path)

    assert sorted(p.relative_to(tmp_path.resolve()).as_posix() for p in files) == ["a/b.txt", "c.txt"]
    assert (tmp_path / "a" / "b.txt").read_bytes() == b"1"


def test_project_descriptor_selection_is_lexicographic(tmp_path: Path) -> None:
    for rel in ("zeta/Zeta.csproj", "alpha/Beta.csproj", "alpha/Alpha.csproj", "alpha/AlphaTests.csproj"):
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("<Project />")

    assert find_project_descriptor(tmp_path) == tmp_path / "alpha" / "Alpha.csproj"
    assert find_project_descriptor(tmp_path, test_project=True) == tmp_path / "alpha" / "AlphaTests.csproj"


def test_missing_descriptor(tmp_path: Path) -> None:
    assert find_project_descriptor(tmp_path) is None
    assert find_artifact(tmp_path) is None


def test_artifact_named_after_project_wins(tmp_path: Path) -> None:
    out = tmp_path / "bin" / "Debug"
    out.mkdir(parents=True)
    for name in ("AElf.Types.dll", "Contract.dll", "Google.Protobuf.dll"):
        (out / name).write_bytes(b"")

    assert find_artifact(tmp_path, preferred_stem="Contract") == out / "Contract.dll"
    assert find_artifact(tmp_path, preferred_stem="Missing") == out / "AElf.Types.dll"
    assert find_artifact(tmp_path) == out / "AElf.Types.dll"


def test_zip_directory_stores_relative_paths(tmp_path: Path) -> None:
    src = tmp_path / "project"
    (src / "src").mkdir(parents=True)
    (src / "src" / "Contract.cs").write_text("class C {}")
    (src / "README.md").write_text("hi")

    zip_path = zip_directory(src, tmp_path / "out.zip")

    with zipfile.ZipFile(zip_path) as zf:
        assert zf.namelist() == ["README.md", "src/", "src/Contract.cs"]
        assert zf.read("src/Contract.cs") == b"class C {}"


def test_render_tree_lists_nested_entries(tmp_path: Path) -> None:
    extract_archive(make_zip({"src/Contract.cs": b"", "README.md": b""}), tmp_path)

    tree = render_tree(tmp_path)

    assert "+- src" in tree
    assert "+- Contract.cs" in tree
    assert tree.index("src") < tree.index("README.md")




def test_tree_listing_is_skipped_unless_debug(monkeypatch, tmp_path: Path) -> None:
    from playground_orch.jobs import workarea

    def fail(root):
        raise AssertionError("tree rendered")

    monkeypatch.setattr(workarea, "render_tree", fail)
    monkeypatch.setattr(workarea.logger, "isEnabledFor", lambda level: False)

    assert len(extract_archive(make_zip({"a.txt": b"a"}), tmp_path)) == 1
