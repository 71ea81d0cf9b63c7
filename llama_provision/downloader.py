"""Sequential, resumable model downloads over HTTP."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx

from llama_provision.config import ModelArtifact

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
USER_AGENT = "llama-provision"

ProgressCallback = Callable[[str, int, int | None], None]


class DownloadError(RuntimeError):
    """Raised when a model file cannot be fetched."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class DownloadResult:
    """Outcome of one artifact download."""

    path: Path
    bytes_written: int
    resumed: bool
    already_complete: bool = False


def build_download_client(
    timeout_seconds: float = 60.0,
    *,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an HTTP client that follows the file host's redirects."""
    return httpx.Client(
        headers={"User-Agent": USER_AGENT},
        timeout=timeout_seconds,
        follow_redirects=True,
        trust_env=trust_env,
    )


def _parse_total_size(response: httpx.Response, *, offset: int) -> int | None:
    """Return the full file size from Content-Range or Content-Length."""
    content_range = response.headers.get("Content-Range")
    if content_range and "/" in content_range:
        total = content_range.rsplit("/", 1)[1]
        if total.isdigit():
            return int(total)
    content_length = response.headers.get("Content-Length")
    if content_length is not None and content_length.isdigit():
        return int(content_length) + offset
    return None


def download_artifact(
    client: httpx.Client,
    artifact: ModelArtifact,
    dest_dir: Path,
    *,
    progress: ProgressCallback | None = None,
) -> DownloadResult:
    """Download one file, continuing a partial local copy like `wget -c`."""
    dest_path = dest_dir / artifact.filename
    offset = dest_path.stat().st_size if dest_path.is_file() else 0
    headers = {"Range": f"bytes={offset}-"} if offset > 0 else None

    try:
        with client.stream("GET", artifact.url, headers=headers) as response:
            if response.status_code == 416 and offset > 0:
                logger.info("%s is already fully retrieved", artifact.filename)
                return DownloadResult(
                    path=dest_path,
                    bytes_written=0,
                    resumed=False,
                    already_complete=True,
                )
            if response.status_code >= 400:
                raise DownloadError(
                    f"Download failed with status {response.status_code} for '{artifact.url}'.",
                    url=artifact.url,
                    status_code=response.status_code,
                )

            resumed = response.status_code == 206
            if offset > 0 and not resumed:
                logger.warning(
                    "Server ignored range request for %s; restarting from zero",
                    artifact.filename,
                )
                offset = 0

            total_size = _parse_total_size(response, offset=offset)
            downloaded = offset
            bytes_written = 0
            with dest_path.open("ab" if resumed else "wb") as handle:
                for chunk in response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    handle.write(chunk)
                    bytes_written += len(chunk)
                    downloaded += len(chunk)
                    if progress is not None:
                        progress(artifact.filename, downloaded, total_size)
    except httpx.HTTPError as error:
        raise DownloadError(
            f"Network error while downloading '{artifact.url}': {error}",
            url=artifact.url,
        ) from error

    return DownloadResult(path=dest_path, bytes_written=bytes_written, resumed=resumed)


def download_models(
    client: httpx.Client,
    artifacts: Sequence[ModelArtifact],
    dest_dir: Path,
    *,
    progress: ProgressCallback | None = None,
) -> list[DownloadResult]:
    """Download artifacts one after another, stopping at the first failure."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    results: list[DownloadResult] = []
    for artifact in artifacts:
        logger.info("Downloading %s ...", artifact.filename)
        result = download_artifact(client, artifact, dest_dir, progress=progress)
        logger.info("Saved: %s", result.path)
        results.append(result)
    return results
