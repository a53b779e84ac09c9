"""
Google Drive API client for Drive Watch.

Handles all HTTP interactions with the Drive, Docs and Sheets APIs:
watch channels, metadata, folder listing, the Changes API and content
retrieval.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

import requests

from ..constants import DRIVE_API, DOCS_API, SHEETS_API, SHEETS_EXPORT, DEFAULT_FILE_NAME
from ..errors import AuthError, CursorInvalidated, FetchError, RegistrationError

logger = logging.getLogger(__name__)

# Status codes worth another attempt; everything else fails immediately
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _json(response: requests.Response) -> dict:
    """Decode a JSON body; a 200 that is not JSON is a failed fetch."""
    try:
        return response.json()
    except ValueError as e:
        raise FetchError(f"Invalid JSON from {response.url}: {e}")


@dataclass
class DriveClientConfig:
    """Configuration for DriveClient."""
    timeout: int = 30
    max_retries: int = 1


@dataclass
class DocumentMetadata:
    """The metadata fields reconciliation needs for one document."""
    id: str
    name: str
    mime_type: str
    modified_time: Optional[str]
    parents: list[str] = field(default_factory=list)
    trashed: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "DocumentMetadata":
        return cls(
            id=data.get("id", ""),
            name=data.get("name") or DEFAULT_FILE_NAME,
            mime_type=data.get("mimeType", ""),
            modified_time=data.get("modifiedTime"),
            parents=list(data.get("parents") or []),
            trashed=bool(data.get("trashed", False)),
        )


@dataclass
class Change:
    """One entry of a changes.list response."""
    file_id: str
    removed: bool = False


@dataclass
class ChangeBatch:
    """
    Result of a single changes.list call.

    new_start_page_token is set once the listing has caught up;
    otherwise next_page_token continues the listing.
    """
    changes: list[Change]
    new_start_page_token: Optional[str] = None
    next_page_token: Optional[str] = None

    @property
    def next_cursor(self) -> Optional[str]:
        """Cursor to store after processing: caught-up token preferred."""
        return self.new_start_page_token or self.next_page_token


@dataclass
class Channel:
    """A watch channel as returned by files.watch / changes.watch."""
    id: str
    resource_id: str
    expiration: Optional[int] = None  # epoch ms

    @classmethod
    def from_api(cls, data: dict) -> "Channel":
        expiration = data.get("expiration")
        return cls(
            id=data.get("id", ""),
            resource_id=data.get("resourceId", ""),
            expiration=int(expiration) if expiration else None,
        )


class DriveClient:
    """
    Google Drive API client.

    Every request asks token_source for a bearer token first, so credential
    refresh happens right before each remote operation. Timeouts are never
    retried; they surface as FetchError.
    """

    API_FILES = f"{DRIVE_API}/files"
    API_CHANGES = f"{DRIVE_API}/changes"
    API_CHANNELS = f"{DRIVE_API}/channels"

    def __init__(self, config: DriveClientConfig, token_source: Callable[[], str]):
        """
        Initialize the Drive client.

        Args:
            config: Client configuration
            token_source: Callable returning a valid access token
        """
        self.config = config
        self.token_source = token_source
        self._api_calls = 0

    @property
    def api_calls(self) -> int:
        """Total API calls made by this client."""
        return self._api_calls

    def _get_headers(self) -> dict:
        """Get request headers."""
        return {"Authorization": f"Bearer {self.token_source()}"}

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """Make a request, retrying only on rate limits and server errors."""
        timeout = kwargs.pop("timeout", self.config.timeout)
        attempts = max(1, self.config.max_retries)

        for attempt in range(attempts):
            try:
                response = requests.request(
                    method, url, timeout=timeout, headers=self._get_headers(), **kwargs
                )
                self._api_calls += 1
                response.raise_for_status()
                return response
            except requests.exceptions.Timeout:
                raise FetchError(f"{method} {url} timed out after {timeout}s")
            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status == 401:
                    raise AuthError(f"{method} {url} unauthorized")
                if status in RETRYABLE_STATUS and attempt < attempts - 1:
                    time.sleep(2 ** attempt)
                    continue
                raise FetchError(f"{method} {url} failed: HTTP {status}", status_code=status)
            except requests.exceptions.RequestException as e:
                raise FetchError(f"{method} {url} failed: {e}")

        raise FetchError(f"Request failed after {attempts} attempts")

    # ------------------------------------------------------------------
    # Watch channels
    # ------------------------------------------------------------------

    def _watch(self, url: str, channel_id: str, address: str, expiration_ms: int, params: dict) -> Channel:
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "expiration": expiration_ms,
        }
        try:
            response = self._request_with_retry("POST", url, params=params, json=body)
        except FetchError as e:
            raise RegistrationError(f"Watch request {channel_id} rejected: {e}")

        channel = Channel.from_api(_json(response))
        if not channel.id:
            channel.id = channel_id
        if channel.expiration is None:
            channel.expiration = expiration_ms
        return channel

    def watch_file(self, file_id: str, channel_id: str, address: str, expiration_ms: int) -> Channel:
        """Open a push channel for a single file."""
        return self._watch(
            f"{self.API_FILES}/{file_id}/watch", channel_id, address, expiration_ms,
            params={"supportsAllDrives": "true"},
        )

    def watch_changes(self, page_token: str, channel_id: str, address: str, expiration_ms: int) -> Channel:
        """Open a push channel for the Changes API starting at page_token."""
        return self._watch(
            f"{self.API_CHANGES}/watch", channel_id, address, expiration_ms,
            params={
                "pageToken": page_token,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            },
        )

    def stop_channel(self, channel_id: str, resource_id: str):
        """Stop delivering notifications for a channel."""
        self._request_with_retry(
            "POST", f"{self.API_CHANNELS}/stop",
            json={"id": channel_id, "resourceId": resource_id},
        )

    # ------------------------------------------------------------------
    # Metadata and listing
    # ------------------------------------------------------------------

    def get_file_metadata(self, file_id: str) -> DocumentMetadata:
        """
        Get metadata for a single file.

        Args:
            file_id: Google Drive file ID

        Returns:
            DocumentMetadata for the file
        """
        response = self._request_with_retry(
            "GET", f"{self.API_FILES}/{file_id}",
            params={
                "fields": "id,name,mimeType,modifiedTime,parents,trashed",
                "supportsAllDrives": "true",
            },
        )
        return DocumentMetadata.from_api(_json(response))

    def list_folder_page(self, folder_id: str, page_token: Optional[str] = None) -> tuple[list[DocumentMetadata], Optional[str]]:
        """
        List one page of non-trashed children of a folder.

        Returns:
            Tuple of (items, next_page_token)
        """
        params = {
            "q": f"'{folder_id}' in parents and trashed = false",
            "fields": "nextPageToken, files(id, name, mimeType, modifiedTime, parents)",
            "pageSize": 100,
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        if page_token:
            params["pageToken"] = page_token

        response = self._request_with_retry("GET", self.API_FILES, params=params)
        data = _json(response)
        items = [DocumentMetadata.from_api(f) for f in data.get("files", [])]
        return items, data.get("nextPageToken")

    def list_folder(self, folder_id: str) -> Iterator[DocumentMetadata]:
        """Iterate all non-trashed children of a folder, following pagination."""
        page_token = None
        while True:
            items, page_token = self.list_folder_page(folder_id, page_token)
            yield from items
            if not page_token:
                break

    # ------------------------------------------------------------------
    # Changes API
    # ------------------------------------------------------------------

    def get_changes_start_token(self) -> str:
        """
        Get the starting page token for the Changes API.

        Returns:
            Start page token string
        """
        response = self._request_with_retry(
            "GET", f"{self.API_CHANGES}/startPageToken",
            params={"supportsAllDrives": "true"},
        )
        token = _json(response).get("startPageToken")
        if not token:
            raise FetchError("startPageToken missing from response")
        return token

    def get_changes(self, page_token: str) -> ChangeBatch:
        """
        Get one page of changes since the given page token.

        Args:
            page_token: Page token from previous call or getStartPageToken

        Returns:
            ChangeBatch with the changes and the cursor to continue from

        Raises:
            CursorInvalidated: if the store no longer accepts page_token
        """
        params = {
            "pageToken": page_token,
            "pageSize": 1000,
            "spaces": "drive",
            "fields": "nextPageToken, newStartPageToken, changes(fileId, removed)",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        try:
            response = self._request_with_retry("GET", self.API_CHANGES, params=params)
        except FetchError as e:
            if e.status_code in (400, 404, 410):
                raise CursorInvalidated(page_token, status_code=e.status_code)
            raise

        data = _json(response)
        changes = [
            Change(file_id=c.get("fileId", ""), removed=bool(c.get("removed", False)))
            for c in data.get("changes", [])
            if c.get("fileId")
        ]
        return ChangeBatch(
            changes=changes,
            new_start_page_token=data.get("newStartPageToken"),
            next_page_token=data.get("nextPageToken"),
        )

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def download(self, file_id: str) -> bytes:
        """Download the raw bytes of a binary (non Google-native) file."""
        response = self._request_with_retry(
            "GET", f"{self.API_FILES}/{file_id}",
            params={"alt": "media", "supportsAllDrives": "true"},
        )
        return response.content

    def export(self, file_id: str, mime_type: str) -> bytes:
        """Export a Google-native file to mime_type."""
        response = self._request_with_retry(
            "GET", f"{self.API_FILES}/{file_id}/export",
            params={"mimeType": mime_type},
        )
        return response.content

    def get_document(self, document_id: str) -> dict:
        """Fetch the structured body of a Google Doc."""
        response = self._request_with_retry("GET", f"{DOCS_API}/{document_id}")
        return _json(response)

    def get_sheet_titles(self, spreadsheet_id: str) -> list[str]:
        """List sheet titles of a Google Sheet, in tab order."""
        response = self._request_with_retry(
            "GET", f"{SHEETS_API}/{spreadsheet_id}",
            params={"fields": "sheets.properties.title"},
        )
        return [
            s.get("properties", {}).get("title", "")
            for s in _json(response).get("sheets", [])
        ]

    def export_sheet_csv(self, spreadsheet_id: str, sheet_title: str) -> bytes:
        """Export a single sheet of a Google Sheet as CSV."""
        response = self._request_with_retry(
            "GET", f"{SHEETS_EXPORT}/{spreadsheet_id}/gviz/tq",
            params={"tqx": "out:csv", "sheet": sheet_title},
        )
        return response.content
