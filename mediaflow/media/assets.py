"""Write-once storage of generated assets under the public directory."""

import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from ..core.error_recovery import RetryConfig, execute_with_retry
from ..core.exceptions import ProviderError, TransientError
from ..core.logging import get_logger


logger = get_logger(__name__)

IMAGES_DIR = "generated-images"
VIDEOS_DIR = "generated-videos"


@dataclass(frozen=True)
class StoredAsset:
    local_path: str
    url: str


class AssetStore:
    """Persists assets as ``<public_dir>/<subdir>/<stem>-<ms>-<uuid8><suffix>``.

    Files are opened in exclusive-create mode so an existing asset is never
    overwritten; a failed download leaves no partial file behind.
    """

    def __init__(
        self,
        public_dir: str = "public",
        timeout: float = 120.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.public_dir = Path(public_dir).resolve()
        self.retry_config = retry_config or RetryConfig()
        self._client = httpx.Client(timeout=timeout, follow_redirects=True, transport=transport)

    def directory(self, subdir: str) -> Path:
        path = self.public_dir / subdir
        path.mkdir(parents=True, exist_ok=True)
        return path

    def reserve(self, subdir: str, stem: str, suffix: str) -> StoredAsset:
        """Pick a unique, not-yet-existing path and its public URL."""
        directory = self.directory(subdir)
        filename = f"{stem}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"
        return StoredAsset(local_path=str(directory / filename), url=f"/{subdir}/{filename}")

    def save_bytes(self, subdir: str, stem: str, suffix: str, content: bytes) -> StoredAsset:
        asset = self.reserve(subdir, stem, suffix)
        with open(asset.local_path, "xb") as handle:
            handle.write(content)
        logger.debug(f"Stored {len(content)} bytes at {asset.local_path}")
        return asset

    def download(self, source_url: str, subdir: str, stem: str, suffix: str) -> StoredAsset:
        """Stream a remote asset to a new file, retrying transient failures."""
        asset = self.reserve(subdir, stem, suffix)

        def fetch() -> None:
            try:
                with self._client.stream("GET", source_url) as response:
                    if response.status_code >= 500:
                        raise TransientError(f"Download failed with status {response.status_code}")
                    if response.status_code >= 400:
                        raise ProviderError(
                            f"Download failed with status {response.status_code}",
                            status_code=response.status_code,
                        )
                    with open(asset.local_path, "xb") as handle:
                        for chunk in response.iter_bytes():
                            handle.write(chunk)
            except httpx.TransportError as e:
                self._discard(asset)
                raise TransientError(f"Download connection error: {e}") from e
            except Exception:
                self._discard(asset)
                raise

        fetch.__name__ = "download_asset"
        execute_with_retry(fetch, self.retry_config)
        logger.debug(f"Downloaded {source_url} to {asset.local_path}")
        return asset

    @staticmethod
    def _discard(asset: StoredAsset) -> None:
        Path(asset.local_path).unlink(missing_ok=True)

    def close(self) -> None:
        self._client.close()
