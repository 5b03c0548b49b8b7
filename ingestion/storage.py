"""
Object storage client for quiz documents.

Talks to the Supabase Storage REST API directly:
    GET {SUPABASE_URL}/storage/v1/object/{bucket}/{path}
authenticated with the service-role key.
"""

import logging
import os
from typing import Optional
from urllib.parse import quote

import httpx

from generation.errors import NotFoundError, TransportError

log = logging.getLogger(__name__)

# ── Storage config ─────────────────────────────────────────────────────────────
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "files")
DOWNLOAD_TIMEOUT = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "60"))


class SupabaseBlobStore:
    """
    Download objects from one storage bucket.

    Args:
        base_url: Project URL (defaults to SUPABASE_URL env var)
        api_key:  Service-role key (defaults to SUPABASE_SERVICE_ROLE_KEY env var)
        bucket:   Bucket name
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        bucket: str = STORAGE_BUCKET,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not self.base_url or not self.api_key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set. Add them to your .env file."
            )
        self.bucket = bucket
        self.transport = transport

    def object_url(self, path: str) -> str:
        key = quote(path.lstrip("/"), safe="/")
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{key}"

    async def download(self, path: str) -> bytes:
        """
        Download one object.

        Raises:
            NotFoundError:  object (or bucket) does not exist
            TransportError: network failure or any other non-2xx answer
        """
        url = self.object_url(path)
        log.info("Downloading '%s' from bucket '%s'", path, self.bucket)
        try:
            async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, transport=self.transport) as client:
                response = await client.get(
                    url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "apikey": self.api_key,
                    },
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Download of '{path}' failed: {e}") from e

        if response.status_code == 200:
            return response.content
        if response.status_code == 404 or _is_not_found_body(response):
            raise NotFoundError(f"Object '{path}' not found in bucket '{self.bucket}'")
        raise TransportError(
            f"Download of '{path}' failed: {response.status_code} - {response.text[:200]}"
        )


def _is_not_found_body(response: httpx.Response) -> bool:
    """Storage answers some missing objects with 400 and a JSON error body."""
    if response.status_code != 400:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    return str(body.get("statusCode")) == "404" or body.get("error") == "not_found"
