"""Async HTTP client for the hosted backend (storage, REST tables, functions)."""

import json
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from fieldsync import __version__
from fieldsync.config import Settings
from fieldsync.errors import EnrichmentError, PersistenceError, TransferError
from fieldsync.sync.records import PhotoAnalysis, PhotoRecord

# Errors a request can raise instead of returning a response
_REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError, RuntimeError)


class BackendClient:
    """Async client for the backend-as-a-service used by the field app.

    Uses httpx.AsyncClient for connection pooling. Every call maps its
    failures onto one fieldsync error type so the drain loop can decide
    what to do without knowing about HTTP.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        bucket: str = "project-photos",
        table: str = "project_photos",
        classify_function: str = "analyze-photo",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Backend project URL (e.g., https://abc.example.co)
            api_key: Public anon key sent as the apikey header
            access_token: Signed-in user's token; the anon key is used if absent
            bucket: Object storage bucket for photos
            table: REST table receiving photo rows
            classify_function: Name of the photo classification function
            timeout: Request timeout in seconds
            transport: Optional transport override (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.table = table
        self.classify_function = classify_function

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
                "User-Agent": f"fieldsync/{__version__}",
            },
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BackendClient":
        """Build a client from application settings."""
        return cls(
            base_url=settings.backend_url,
            api_key=settings.api_key,
            access_token=settings.access_token,
            bucket=settings.photo_bucket,
            table=settings.photo_table,
            classify_function=settings.classify_function,
            timeout=settings.request_timeout,
            transport=transport,
        )

    def _object_url(self, path: str) -> str:
        return f"/storage/v1/object/{self.bucket}/{quote(path)}"

    def public_url(self, path: str) -> str:
        """Public URL of a stored photo."""
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    async def upload_object(self, path: str, data: bytes, content_type: str) -> str:
        """Write a binary to object storage without overwriting.

        Args:
            path: Object path inside the bucket
            data: Binary payload
            content_type: MIME type of the payload

        Returns:
            The stored object key reported by storage

        Raises:
            TransferError: On any network or storage failure
        """
        try:
            response = await self._client.post(
                self._object_url(path),
                content=data,
                headers={
                    "Content-Type": content_type,
                    "cache-control": "max-age=3600",
                    "x-upsert": "false",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransferError(
                f"Storage rejected {path}: {e.response.status_code} - {e.response.text}"
            ) from e
        except _REQUEST_ERRORS as e:
            raise TransferError(f"Storage upload failed for {path}: {e}") from e

        try:
            return response.json().get("Key") or path
        except (json.JSONDecodeError, AttributeError):
            return path

    async def delete_object(self, path: str) -> None:
        """Remove a stored object.

        Raises:
            TransferError: On any network or storage failure
        """
        try:
            response = await self._client.request(
                "DELETE",
                f"/storage/v1/object/{self.bucket}",
                json={"prefixes": [path]},
            )
            response.raise_for_status()
        except _REQUEST_ERRORS as e:
            raise TransferError(f"Storage delete failed for {path}: {e}") from e

    async def classify_photo(self, image_url: str, project_id: str) -> PhotoAnalysis:
        """Ask the classification function to tag a stored photo.

        Returns:
            PhotoAnalysis holding only the fields the function returned

        Raises:
            EnrichmentError: On any failure, including malformed output
        """
        try:
            response = await self._client.post(
                f"/functions/v1/{self.classify_function}",
                json={"imageUrl": image_url, "projectId": project_id},
            )
            response.raise_for_status()
            payload: Any = response.json()
        except _REQUEST_ERRORS as e:
            raise EnrichmentError(f"Classification call failed: {e}") from e
        except json.JSONDecodeError as e:
            raise EnrichmentError(f"Classification returned invalid JSON: {e}") from e

        if payload is None:
            return PhotoAnalysis()
        try:
            return PhotoAnalysis.model_validate(payload)
        except ValidationError as e:
            raise EnrichmentError(f"Classification returned unexpected shape: {e}") from e

    async def insert_photo_record(self, record: PhotoRecord) -> None:
        """Insert a photo row.

        Raises:
            PersistenceError: On any network or database failure
        """
        try:
            response = await self._client.post(
                f"/rest/v1/{self.table}",
                json=record.model_dump(),
                headers={"Prefer": "return=minimal"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PersistenceError(
                f"Insert into {self.table} rejected: {e.response.status_code} - {e.response.text}"
            ) from e
        except _REQUEST_ERRORS as e:
            raise PersistenceError(f"Insert into {self.table} failed: {e}") from e

    async def check_health(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if the health endpoint answers 200, False otherwise
        """
        try:
            response = await self._client.get(
                "/auth/v1/health",
                timeout=httpx.Timeout(5.0),
            )
            return response.status_code == 200
        except _REQUEST_ERRORS:
            return False

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        await self.close()
