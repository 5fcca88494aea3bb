"""Supabase object storage for entry photos."""

from __future__ import annotations

import logging
from typing import Iterable
from urllib.parse import quote

import httpx

from services.errors import RemoteError, RemoteRequestError, RemoteUnavailable
from services.remote import raise_for_response


logger = logging.getLogger(__name__)


class SupabaseStorage:
    """Upload, public URL and download for one public bucket."""

    def __init__(self, client: httpx.AsyncClient, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def _object_path(self, path: str) -> str:
        return f"/storage/v1/object/{self.bucket}/{quote(path.lstrip('/'))}"

    async def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "image/jpeg",
        overwrite: bool = True,
    ) -> None:
        headers = {"Content-Type": content_type, "x-upsert": "true" if overwrite else "false"}
        try:
            response = await self.client.post(self._object_path(path), content=data, headers=headers)
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"upload {path}: {exc}") from exc
        raise_for_response(response, f"upload {self.bucket}/{path}")
        logger.debug("Uploaded %d bytes to %s/%s", len(data), self.bucket, path)

    def public_url(self, path: str) -> str:
        base = str(self.client.base_url).rstrip("/")
        return f"{base}/storage/v1/object/public/{self.bucket}/{quote(path.lstrip('/'))}"

    async def download(self, url: str) -> bytes:
        try:
            request = self.client.build_request("GET", url)
            if request.url.host != self.client.base_url.host:
                # Project credentials stay with the project.
                for name in ("apikey", "Authorization"):
                    request.headers.pop(name, None)
            response = await self.client.send(request, follow_redirects=True)
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"download {url}: {exc}") from exc
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise RemoteError(f"download {url}: {exc}") from exc
        raise_for_response(response, f"download {url}")
        if not response.content:
            raise RemoteRequestError(response.status_code, f"empty body from {url}")
        return response.content

    async def remove(self, paths: Iterable[str]) -> None:
        prefixes = [p.lstrip("/") for p in paths if p]
        if not prefixes:
            return
        try:
            response = await self.client.request(
                "DELETE", f"/storage/v1/object/{self.bucket}", json={"prefixes": prefixes}
            )
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"remove {prefixes}: {exc}") from exc
        raise_for_response(response, f"remove from {self.bucket}")


__all__ = ["SupabaseStorage"]
