"""HTTP client for the library server's sync and search endpoints."""

from typing import Any

import requests
from loguru import logger

from ebook_sync.config import REQUEST_TIMEOUT, STRUCTURE_NOTE_LIMIT
from ebook_sync.exceptions import ApiError, AuthError, TransientNetworkError, ValidationError
from ebook_sync.models.job import Credentials, Job, JobKind

_JOB_ENDPOINTS: dict[JobKind, str] = {
    JobKind.SYNC_STRUCTURE: "sync-structure",
    JobKind.SYNC_BOOKS: "sync-books",
    JobKind.SYNC_TAGGED_BOOKS: "sync-tagged-books",
    JobKind.FORCE_SYNC_BOOKS: "force-sync-books",
    JobKind.RECREATE_BOOK_FOLDER: "recreate-book-folder",
}


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or response.reason)
    return response.reason


class LibraryApi:
    """Encapsulated library server API."""

    def __init__(self, base_url: str, *, timeout: float = REQUEST_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sess = requests.Session()
        logger.debug("API ready: base_url {!r}, timeout {!r}", self.base_url, self.timeout)

    def call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Invoke an endpoint, return the decoded JSON body.

        Raises:
            AuthError: on HTTP 401/403.
            ValidationError: on HTTP 400.
            TransientNetworkError: on connection failures, timeouts and 5xx.
            ApiError: on any other error response.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug("Making request: {} {!r} {}", method, path, repr(params or body)[:64])
        try:
            r = self.sess.request(method, url, params=params, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            msg = f"Request timed out: {method} {path}"
            raise TransientNetworkError(msg) from e
        except requests.RequestException as e:
            msg = f"Cannot reach server: {method} {path}: {e}"
            raise TransientNetworkError(msg) from e

        if r.status_code in (401, 403):
            msg = f"Authentication failed ({r.status_code}): {_error_message(r)}"
            raise AuthError(msg, status=r.status_code)
        if r.status_code == 400:
            raise ValidationError(_error_message(r))
        if r.status_code >= 500:
            msg = f"Server error ({r.status_code}): {_error_message(r)}"
            raise TransientNetworkError(msg, status=r.status_code)
        if r.status_code >= 400:
            msg = f"API call failed ({r.status_code}): {method} {path}: {_error_message(r)}"
            raise ApiError(msg, status=r.status_code)

        try:
            return r.json()
        except ValueError as e:
            msg = f"Malformed response (HTTP {r.status_code}) from {method} {path}"
            raise ApiError(msg, status=r.status_code) from e

    # --- sync ---

    def test_connection(self, credentials: Credentials | None) -> bool:
        """Ask the server whether it can reach the note backend."""
        body = {"port": credentials.port, "token": credentials.token} if credentials else {}
        rv = self.call("POST", "api/joplin/test-connection", body=body)
        return bool(rv.get("connected"))

    def issue_sync_job(
        self, kind: JobKind, credentials: Credentials | None, params: dict[str, Any]
    ) -> int:
        """Start a server-side sync job and return its id."""
        path = f"api/joplin/{_JOB_ENDPOINTS[kind]}"
        if kind is JobKind.RECREATE_BOOK_FOLDER:
            path += f"/{params['book_id']}"
        body = {"port": credentials.port, "token": credentials.token} if credentials else {}
        rv = self.call("POST", path, body=body)
        if "jobId" not in rv:
            msg = f"Server did not return a job id for {kind}: {rv!r}"
            raise ApiError(msg)
        return int(rv["jobId"])

    def get_job(self, job_id: int) -> Job:
        return Job.from_dict(self.call("GET", f"api/joplin/jobs/{job_id}"))

    def list_jobs(self, limit: int = 50) -> list[Job]:
        rows = self.call("GET", "api/joplin/jobs", params={"limit": limit})
        return [Job.from_dict(row) for row in rows]

    def get_flat_structure(self) -> dict[str, list[dict[str, Any]]]:
        folders = self.call("GET", "api/joplin/folders")
        notes = self.call("GET", "api/joplin/notes", params={"limit": STRUCTURE_NOTE_LIMIT})
        return {"folders": folders or [], "notes": notes or []}

    def get_nested_structure(self) -> list[dict[str, Any]]:
        return self.call("GET", "api/joplin/onenote/structure") or []

    # --- search ---

    def execute_search(self, query: str, pages: int) -> Any:
        return self.call("GET", "api/search", params={"keyword": query, "pages": pages})

    def get_search_history(self, keyword: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if keyword:
            params["keyword"] = keyword
        rv = self.call("GET", "api/search/history", params=params)
        return rv.get("searches") or []

    def delete_search_result(self, result_id: int | str) -> None:
        self.call("DELETE", f"api/search/{result_id}")
