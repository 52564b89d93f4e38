"""
NuGet package cache warm-up.

Restoring packages is the slowest part of a cold build. A housekeeping run
fills the local cache once and publishes it as nuget-cache.zip; workers
extract it at startup.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

from playground_orch.errors import ObjectNotFound, ToolProcessFailure
from playground_orch.housekeeping.templates import SAMPLE_PROJECT_NAME, TemplateCatalog
from playground_orch.jobs.toolchain import ToolRunner
from playground_orch.jobs.workarea import extract_archive, working_area, zip_directory

logger = logging.getLogger(__name__)

CACHE_KEY = "nuget-cache.zip"
DEFAULT_SEED_TEMPLATE = "aelf"


def default_cache_dir() -> Path:
    return Path.home() / ".nuget" / "packages"


def populate(
    runner: ToolRunner,
    executable: str = "dotnet",
    template: str = DEFAULT_SEED_TEMPLATE,
    work_root: Optional[Union[str, Path]] = None,
) -> None:
    """Scaffold a sample project and restore it so its packages land in the local cache."""
    with working_area(work_root, prefix="playground-cache-") as area:
        outcome = runner.run(executable, ["new", template, "-n", SAMPLE_PROJECT_NAME], cwd=area)
        if not outcome.ok:
            raise ToolProcessFailure(outcome.stdout or outcome.stderr or f"Scaffolding {template} failed")

        # templates put the contract project under src/
        restore_dir = area / "src"
        if not restore_dir.is_dir():
            restore_dir = area
        outcome = runner.run(executable, ["restore"], cwd=restore_dir)
        if not outcome.ok:
            raise ToolProcessFailure(outcome.stdout or outcome.stderr or "Package restore failed")

    logger.info("Populated NuGet cache")


def upload(store: Any, cache_dir: Optional[Path] = None, work_root: Optional[Union[str, Path]] = None) -> int:
    """
    Zip the local package cache and publish it.

    Returns:
        Size of the published archive in bytes
    """
    cache_dir = cache_dir or default_cache_dir()
    if not cache_dir.is_dir():
        raise FileNotFoundError(f"Package cache not found: {cache_dir}")

    with working_area(work_root, prefix="playground-cache-") as area:
        zip_path = zip_directory(cache_dir, area / CACHE_KEY)
        data = zip_path.read_bytes()
        store.put(CACHE_KEY, data)

    logger.info(f"Uploaded NuGet cache ({len(data)} bytes)")
    return len(data)


def download(store: Any, cache_dir: Optional[Path] = None) -> int:
    """
    Fetch the published package cache and extract it into the local cache.

    Raises:
        ObjectNotFound: No cache has been published yet

    Returns:
        Number of files extracted
    """
    cache_dir = cache_dir or default_cache_dir()
    data = store.get(CACHE_KEY)
    cache_dir.mkdir(parents=True, exist_ok=True)
    files = extract_archive(data, cache_dir)

    logger.info(f"Downloaded NuGet cache ({len(files)} files)")
    return len(files)


def warm_up(store: Any, runner: ToolRunner, executable: str = "dotnet", cache_dir: Optional[Path] = None) -> None:
    """Worker startup: restore the published package cache and install the templates."""
    try:
        download(store, cache_dir)
    except ObjectNotFound:
        logger.warning(f"No {CACHE_KEY} published yet, first builds will restore packages from scratch")
    TemplateCatalog(runner, store, executable=executable).install(publish=False)
