"""Resolution of collection/environment sources and worker discovery."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiohttp

from postman_exporter._internal.errors import SourceResolutionError
from postman_exporter._internal.logging import get_logger
from postman_exporter.engine.worker import CollectionWorker

if TYPE_CHECKING:
    from postman_exporter._internal.config import CollectionSettings, ExporterConfig

logger = get_logger("engine.sources")

_DOWNLOAD_TIMEOUT = 30.0


@dataclass(frozen=True)
class ResolvedSources:
    """Local files a worker runs against.

    Attributes:
        collection_file: Local collection definition.
        environment_file: Local environment definition, if any.
    """

    collection_file: Path
    environment_file: Path | None = None


async def download_source(
    url: str,
    destination: Path,
    *,
    timeout: float = _DOWNLOAD_TIMEOUT,
) -> Path:
    """Download a remote definition to a local file.

    Args:
        url: Remote URL to fetch.
        destination: File the response body is written to (overwritten).
        timeout: Total request timeout in seconds.

    Returns:
        The destination path.

    Raises:
        SourceResolutionError: On transport errors or a non-2xx response.
    """
    try:
        async with (
            aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session,
            session.get(url) as resp,
        ):
            if resp.status >= 300:
                msg = f"Failed to download {url}: HTTP {resp.status}"
                raise SourceResolutionError(msg)
            body = await resp.read()
    except (aiohttp.ClientError, TimeoutError) as exc:
        msg = f"Failed to download {url}: {type(exc).__name__}: {exc}"
        raise SourceResolutionError(msg) from exc

    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(body)
    return destination


async def resolve_sources(
    settings: CollectionSettings,
    *,
    download_dir: Path,
    worker_id: int = 0,
) -> ResolvedSources:
    """Resolve a worker's collection and environment to local files.

    A URL, when set, takes priority over the corresponding local path and is
    downloaded once. The collection file must exist afterwards.

    Args:
        settings: The worker's settings.
        download_dir: Directory receiving downloaded definitions.
        worker_id: Worker index, used to keep downloads of workers apart.

    Returns:
        The resolved local paths.

    Raises:
        SourceResolutionError: If a download fails or a local file is missing.
    """
    collection_file = Path(settings.collection_file)
    if settings.collection_url:
        logger.info("Collection URL will be fetched and used: %s", settings.collection_url)
        collection_file = await download_source(
            settings.collection_url,
            download_dir / f"downloaded-collection-{worker_id}.tmp.json",
        )

    environment_file: Path | None = None
    if settings.environment_url:
        logger.info("Environment URL will be fetched and used: %s", settings.environment_url)
        environment_file = await download_source(
            settings.environment_url,
            download_dir / f"downloaded-env-{worker_id}.tmp.json",
        )
    elif settings.environment_file:
        environment_file = Path(settings.environment_file)

    if not collection_file.is_file():
        msg = f"Collection file '{collection_file}' not found"
        raise SourceResolutionError(msg)

    if environment_file is not None and not environment_file.is_file():
        msg = f"Environment file '{environment_file}' not found"
        raise SourceResolutionError(msg)

    return ResolvedSources(collection_file=collection_file, environment_file=environment_file)


def discover_settings(config: ExporterConfig) -> list[CollectionSettings]:
    """Build one settings object per worker.

    When ``config.settings_dir`` exists and holds files, every regular file
    (sorted by name) becomes one worker's collection, all other settings are
    inherited from the defaults. Otherwise the defaults make a single worker.
    """
    settings_dir = config.settings_dir
    if settings_dir.is_dir():
        files = sorted(p for p in settings_dir.iterdir() if p.is_file())
        if files:
            return [config.defaults.for_collection_file(path) for path in files]
    return [config.defaults]


async def create_workers(config: ExporterConfig) -> list[CollectionWorker]:
    """Create the fixed set of workers, resolving every source up front.

    Raises:
        SourceResolutionError: If any worker's sources cannot be resolved.
    """
    workers: list[CollectionWorker] = []
    for worker_id, settings in enumerate(discover_settings(config)):
        sources = await resolve_sources(
            settings,
            download_dir=config.download_dir,
            worker_id=worker_id,
        )
        workers.append(CollectionWorker(worker_id, settings, sources))
    return workers
