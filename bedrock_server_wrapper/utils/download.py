"""HTTP download helpers shared by the updaters and the map generator."""

import asyncio
import re
import shutil
import zipfile
from pathlib import Path
from typing import Any, Collection, Dict, Optional, Tuple

import aiohttp
from tqdm import tqdm

from ..exceptions import UpdateError
from .constants import DEFAULT_TIMEOUT, DOWNLOAD_CHUNK_SIZE

VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


def create_session() -> aiohttp.ClientSession:
    """Create a client session with the default timeout."""
    timeout = aiohttp.ClientTimeout(total=None, sock_read=DEFAULT_TIMEOUT, sock_connect=DEFAULT_TIMEOUT)
    return aiohttp.ClientSession(
        headers={"Accept": "application/json", "User-Agent": "bedrock-server-wrapper"},
        timeout=timeout,
    )


def parse_version(text: str) -> Optional[Tuple[int, ...]]:
    """Extract a dotted version number, e.g. ``"v1.2.3"`` -> ``(1, 2, 3)``."""
    match = VERSION_RE.search(text)
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def format_version(version: Tuple[int, ...]) -> str:
    return ".".join(str(part) for part in version)


async def fetch_json(session: aiohttp.ClientSession, url: str) -> Any:
    """GET a JSON document.

    Raises:
        UpdateError: On connection errors or a non-200 response
    """
    try:
        async with session.get(url) as response:
            if response.status != 200:
                raise UpdateError(f"{url} returned status {response.status}")
            return await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise UpdateError(f"Request to {url} failed: {str(e)}") from e


async def download_file(
    session: aiohttp.ClientSession,
    url: str,
    target: Path,
    description: str = "Downloading",
) -> Path:
    """Stream ``url`` to ``target`` with a progress bar.

    Raises:
        UpdateError: If the download fails
    """
    try:
        async with session.get(url) as response:
            if response.status != 200:
                raise UpdateError(f"Download of {url} failed with status {response.status}")

            progress_bar = tqdm(
                total=response.content_length,
                unit="B",
                unit_scale=True,
                desc=description,
            )
            try:
                with open(target, "wb") as f:
                    async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        progress_bar.update(len(chunk))
            finally:
                progress_bar.close()

    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        raise UpdateError(f"Download of {url} failed: {str(e)}") from e

    return target


def extract_zip(
    archive: Path,
    target_dir: Path,
    protected: Collection[str] = (),
) -> int:
    """Extract an archive, leaving existing ``protected`` files untouched.

    Returns:
        Number of files extracted
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    root = target_dir.resolve()
    extracted = 0

    with zipfile.ZipFile(archive) as zf:
        for entry in zf.infolist():
            destination = (target_dir / entry.filename).resolve()
            if not destination.is_relative_to(root):
                raise UpdateError(f"Archive entry escapes target folder: {entry.filename}")

            if entry.filename in protected and destination.exists():
                continue

            if entry.is_dir():
                destination.mkdir(parents=True, exist_ok=True)
                continue

            destination.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(entry) as src, open(destination, "wb") as dst:
                shutil.copyfileobj(src, dst, DOWNLOAD_CHUNK_SIZE)
            extracted += 1

    return extracted


def find_release_asset(release: Dict[str, Any], suffix: str) -> Optional[str]:
    """Download URL of the first asset of a GitHub release ending with ``suffix``."""
    for asset in release.get("assets", []):
        url = asset.get("browser_download_url", "")
        if url.endswith(suffix):
            return url
    return None
