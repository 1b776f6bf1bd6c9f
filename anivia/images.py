"""
Content-addressed image rehosting.

Every image is fetched, fingerprinted by the MD5 of its raw bytes and
stored once per role under ``{role}/{md5}.webp``. The store is probed
before each upload, so an image already rehosted by an earlier run (or
another document) is never transcoded or uploaded again.
"""

import hashlib
import io
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from urllib.parse import quote

import requests
from PIL import Image, UnidentifiedImageError

from .errors import AniviaError, ImageFetchError, ImageProcessingError, StorageAuthError, StorageError
from .models import ImageRef, ImageRole
from .retry import with_retry

logger = logging.getLogger(__name__)

WEBP_QUALITY = 85
WEBP_METHOD = 4
FETCH_TIMEOUT = 30  # seconds

ROLE_PREFIXES = {
    ImageRole.EMBEDDED: "embedded",
    ImageRole.COVER: "cover",
    ImageRole.GALLERY: "gallery",
}

FetchBytes = Callable[[], bytes]


def storage_key(role: ImageRole, fingerprint: str) -> str:
    return f"{ROLE_PREFIXES[role]}/{fingerprint}.webp"


# =========================================================================
# Fetch strategies
# =========================================================================

def fetch_remote(url: str, timeout: float = FETCH_TIMEOUT) -> bytes:
    """
    Download an image over HTTP(S).

    Raises:
        ImageFetchError: On network errors or a non-2xx response.
    """
    def get() -> requests.Response:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response

    try:
        return with_retry(get).content
    except requests.HTTPError as e:
        raise ImageFetchError(url, f"HTTP {e.response.status_code}", status=e.response.status_code) from e
    except requests.RequestException as e:
        raise ImageFetchError(url, e) from e


def read_local(path: str) -> bytes:
    """
    Read an image from disk.

    Raises:
        ImageFetchError: If the file is missing or unreadable.
    """
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ImageFetchError(path, e.strerror or e) from e


def default_fetcher(ref: ImageRef) -> FetchBytes:
    """Pick the fetch strategy for a ref from its locator."""
    if ref.is_remote:
        return lambda: fetch_remote(ref.locator)
    return lambda: read_local(ref.locator)


def transcode_to_webp(data: bytes) -> bytes:
    """
    Re-encode image bytes as WebP.

    Raises:
        ImageProcessingError: If Pillow cannot decode or encode the image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            animated = getattr(img, "is_animated", False)
            if not animated and img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() or "transparency" in img.info else "RGB")
            out = io.BytesIO()
            img.save(out, format="WEBP", quality=WEBP_QUALITY, method=WEBP_METHOD, save_all=animated)
            return out.getvalue()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageProcessingError(f"Could not convert image to WebP: {e}", details=e) from e


# =========================================================================
# Deduplicator
# =========================================================================

class ImageDeduplicator:
    """
    Resolves image refs to public URLs on the object store.

    Per-image failures leave the ref unresolved and are logged; only a
    storage authentication failure escapes, since every other upload of
    the run would fail the same way.
    """

    def __init__(self, store):
        self.store = store
        # Fingerprints uploaded during this run
        self.uploaded: set[str] = set()
        self._lock = threading.Lock()

    def resolve(self, ref: ImageRef, fetch_bytes: FetchBytes) -> ImageRef:
        """
        Resolve one ref in place.

        Args:
            ref: Image to rehost.
            fetch_bytes: Returns the raw image bytes.

        Returns:
            The same ref, with ``resolved_url`` set on success.

        Raises:
            StorageAuthError: If the store rejects the credentials.
        """
        try:
            data = fetch_bytes()
            ref.content_fingerprint = hashlib.md5(data).hexdigest()
            key = storage_key(ref.role, ref.content_fingerprint)

            if self.store.exists(key):
                logger.debug("Already stored: %s -> %s", ref.locator, key)
                ref.resolved_url = self.store.public_url(key)
                return ref

            webp = transcode_to_webp(data)
            ref.resolved_url = self.store.put(key, webp, "image/webp", self._metadata(ref, data, webp))
            with self._lock:
                self.uploaded.add(ref.content_fingerprint)
            logger.info("Uploaded %s -> %s (%d -> %d bytes)", ref.locator, key, len(data), len(webp))

        except StorageAuthError:
            raise
        except (ImageFetchError, ImageProcessingError, StorageError) as e:
            logger.warning("Image skipped, keeping original reference: %s", e.message)

        return ref

    @staticmethod
    def _metadata(ref: ImageRef, original: bytes, webp: bytes) -> dict[str, str]:
        # S3 user metadata must be ASCII
        return {
            "original-locator": quote(ref.locator, safe=":/?&=%#@+"),
            "original-size": str(len(original)),
            "webp-size": str(len(webp)),
            "compression-ratio": f"{(1 - len(webp) / len(original)) * 100:.2f}%" if original else "0%",
            "content-hash": ref.content_fingerprint,
            "uploaded-at": datetime.now(timezone.utc).isoformat(),
        }

    def resolve_all(
        self,
        refs: list[ImageRef],
        fetcher_for: Callable[[ImageRef], FetchBytes] = default_fetcher,
    ) -> list[ImageRef]:
        """
        Resolve refs concurrently, one worker per image.

        Returns:
            The refs in input order once every worker has finished.
        """
        if not refs:
            return []

        results: list[ImageRef] = list(refs)
        with ThreadPoolExecutor(max_workers=len(refs)) as executor:
            future_to_index = {
                executor.submit(self.resolve, ref, fetcher_for(ref)): i
                for i, ref in enumerate(refs)
            }

            auth_error = None
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except StorageAuthError as e:
                    auth_error = e
                except AniviaError as e:
                    logger.warning("Image skipped: %s (%s)", refs[index].locator, e.message)

        if auth_error is not None:
            raise auth_error
        return results
