"""Working areas: per-job scratch directories and the archive helpers used in them."""

from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from playground_orch.errors import InvalidArchive

logger = logging.getLogger(__name__)

PROJECT_DESCRIPTOR_GLOB = "*.csproj"
TEST_PROJECT_SUFFIX = "Tests.csproj"
ARTIFACT_GLOB = "*.dll"


@contextmanager
def working_area(root: Optional[Union[str, Path]] = None, prefix: str = "playground-") -> Iterator[Path]:
    """
    Create a uniquely named directory and remove it when the block exits,
    whatever the outcome.
    """
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(root) if root is not None else None))
    try:
        yield path
    finally:
        remove_tree(path)


def remove_tree(path: Path) -> None:
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except PermissionError:
        # read-only entries written by the toolchain block rmtree
        for p in [path, *path.rglob("*")]:
            os.chmod(p, 0o700)
        shutil.rmtree(path)


def extract_archive(data: bytes, dest: Path) -> List[Path]:
    """
    Extract a zip archive into dest.

    Raises:
        InvalidArchive: Not a zip file, or an entry would land outside dest
    """
    dest = dest.resolve()
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise InvalidArchive(f"Input is not a valid zip archive: {e}") from e

    with archive:
        for member in archive.infolist():
            target = (dest / member.filename).resolve()
            if target != dest and dest not in target.parents:
                raise InvalidArchive(f"Archive entry escapes working area: {member.filename}")
        archive.extractall(dest)
        extracted = [dest / m.filename for m in archive.infolist() if not m.is_dir()]

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Extracted {len(extracted)} files\n{render_tree(dest)}")
    return extracted


def zip_directory(src: Path, dest_zip: Path) -> Path:
    """Zip the contents of src (paths relative to src), in sorted order."""
    with zipfile.ZipFile(dest_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(src.rglob("*")):
            if path == dest_zip:
                continue
            arcname = path.relative_to(src).as_posix()
            if path.is_dir():
                zf.write(path, arcname + "/")
            else:
                zf.write(path, arcname)
    return dest_zip


def _sorted_matches(root: Path, pattern: str) -> List[Path]:
    # Directory enumeration order differs between file systems: order by
    # relative path so the same archive always selects the same file.
    return sorted((p for p in root.rglob(pattern) if p.is_file()), key=lambda p: p.relative_to(root).as_posix())


def is_test_project(path: Path) -> bool:
    return path.name.endswith(TEST_PROJECT_SUFFIX)


def find_project_descriptor(root: Path, test_project: bool = False) -> Optional[Path]:
    """First project descriptor (by relative path) that is, or is not, a test project."""
    for candidate in _sorted_matches(root, PROJECT_DESCRIPTOR_GLOB):
        if is_test_project(candidate) == test_project:
            return candidate
    return None


def find_artifact(root: Path, preferred_stem: Optional[str] = None) -> Optional[Path]:
    """
    Binary produced by a build.

    The artifact named after the project wins; otherwise the first one by
    relative path.
    """
    candidates = _sorted_matches(root, ARTIFACT_GLOB)
    if preferred_stem:
        for candidate in candidates:
            if candidate.stem == preferred_stem:
                return candidate
    return candidates[0] if candidates else None


def render_tree(root: Path) -> str:
    """`tree`-like listing of a directory, for debug logs."""
    lines = [f"+- {root.name}"]

    def walk(directory: Path, indent: str) -> None:
        children = sorted(directory.iterdir(), key=lambda p: (p.is_file(), p.name))
        for i, child in enumerate(children):
            last = i == len(children) - 1
            lines.append(f"{indent}+- {child.name}")
            if child.is_dir():
                walk(child, indent + ("   " if last else "|  "))

    walk(root, "   ")
    return "\n".join(lines)
