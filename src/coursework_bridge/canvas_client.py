from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from .models import Assignment, Course

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://bcourses.berkeley.edu"
PAGE_SIZE = 100
REQUEST_TIMEOUT_SECONDS = 15
RETRY_DELAYS_SECONDS = (0.0, 0.4, 1.0)
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class CanvasClientError(RuntimeError):
    """Raised for Canvas API client errors."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        status_code: int | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
        self.error_type = error_type


@dataclass
class CanvasClient:
    """Canvas LMS REST client.

    Calls made before a token is set raise ``CanvasClientError`` with
    ``error_type="auth"`` and are never sent.
    """

    base_url: str = DEFAULT_BASE_URL
    api_token: str | None = None

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    @property
    def logged_in(self) -> bool:
        return bool(self.api_token)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    def _require_login(self, endpoint: str) -> None:
        if not self.logged_in:
            raise CanvasClientError(
                "Not logged in to Canvas. Call lms_login first.",
                endpoint=endpoint,
                error_type="auth",
            )

    def _request_with_retry(
        self,
        url: str,
        endpoint: str,
        params: dict | None = None,
    ) -> requests.Response:
        for attempt, delay in enumerate(RETRY_DELAYS_SECONDS, start=1):
            last_attempt = attempt == len(RETRY_DELAYS_SECONDS)
            if delay:
                time.sleep(delay)
            try:
                resp = requests.get(
                    url,
                    headers=self._headers,
                    params=params,
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
                if resp.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
                    logger.debug("retrying %s after status %s", endpoint, resp.status_code)
                    retry_after = resp.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        time.sleep(float(retry_after))
                    continue
                resp.raise_for_status()
                return resp
            except requests.Timeout as exc:
                if not last_attempt:
                    continue
                raise CanvasClientError(
                    f"timeout calling {url}",
                    endpoint=endpoint,
                    error_type="timeout",
                ) from exc
            except requests.ConnectionError as exc:
                if not last_attempt:
                    continue
                raise CanvasClientError(
                    f"network error calling {url}",
                    endpoint=endpoint,
                    error_type="network",
                ) from exc
            except requests.HTTPError as exc:
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code in {401, 403}:
                    raise CanvasClientError(
                        f"http error {status_code} calling {url}",
                        endpoint=endpoint,
                        status_code=status_code,
                        error_type="http_auth",
                    ) from exc
                raise CanvasClientError(
                    f"http error {status_code} calling {url}",
                    endpoint=endpoint,
                    status_code=status_code,
                    error_type="http",
                ) from exc
            except requests.RequestException as exc:
                if not last_attempt:
                    continue
                raise CanvasClientError(
                    f"request error calling {url}: {exc}",
                    endpoint=endpoint,
                    error_type="request",
                ) from exc

        raise CanvasClientError(
            f"request error calling {url}", endpoint=endpoint, error_type="request"
        )

    def _json(self, resp: requests.Response, endpoint: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise CanvasClientError(
                f"invalid JSON from {endpoint}; check the Canvas base URL",
                endpoint=endpoint,
                status_code=resp.status_code,
                error_type="request",
            ) from exc

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1/{path.lstrip('/')}"

    def _get(self, path: str, params: dict | None = None) -> Any:
        self._require_login(path)
        resp = self._request_with_retry(self._url(path), path, params=params)
        return self._json(resp, path)

    def _get_paginated(self, path: str, params: dict | None = None) -> list[dict]:
        self._require_login(path)
        items: list[dict] = []
        url: str | None = self._url(path)
        page_params = {"per_page": PAGE_SIZE, **(params or {})}
        while url:
            resp = self._request_with_retry(url, path, params=page_params)
            data = self._json(resp, path)
            if isinstance(data, list):
                items.extend(data)
            # The next link already carries the query string.
            url = resp.links.get("next", {}).get("url")
            page_params = None
        return items

    def login(self, api_token: str) -> dict:
        """Set the token and verify it against ``users/self``.

        The previous token is restored when verification fails.
        """
        previous = self.api_token
        self.api_token = api_token.strip()
        try:
            profile = self._get("users/self")
        except CanvasClientError:
            self.api_token = previous
            raise
        if not isinstance(profile, dict):
            profile = {}
        logger.info("logged in to Canvas as %s", profile.get("name"))
        return profile

    def list_courses(self) -> list[Course]:
        data = self._get_paginated("courses", params={"enrollment_state": "active"})
        return [Course.from_api(item) for item in data if item.get("id") is not None]

    def list_assignments(self, course_id: int) -> list[Assignment]:
        data = self._get_paginated(
            f"courses/{course_id}/assignments",
            params={"order_by": "due_at"},
        )
        return [Assignment.from_api(item) for item in data if item.get("id") is not None]

    def get_assignment(self, course_id: int, assignment_id: int) -> Assignment:
        data = self._get(f"courses/{course_id}/assignments/{assignment_id}")
        if not isinstance(data, dict) or data.get("id") is None:
            raise CanvasClientError(
                f"assignment {assignment_id} not found in course {course_id}",
                endpoint=f"courses/{course_id}/assignments/{assignment_id}",
                status_code=404,
                error_type="http",
            )
        return Assignment.from_api(data)
