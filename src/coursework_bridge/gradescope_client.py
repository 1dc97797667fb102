from __future__ import annotations

import logging
import re
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests
from bs4 import BeautifulSoup, Tag

from .models import SubmissionAssignment, SubmissionCourse, SubmissionRecord

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.gradescope.com"
REQUEST_TIMEOUT_SECONDS = 30
UPLOAD_FAILED_MESSAGE = "Upload failed - possibly past due date or invalid submission"

_COURSE_ID = re.compile(r"/courses/(\d+)")
_ASSIGNMENT_ID = re.compile(r"/assignments/(\d+)")
_YEAR = re.compile(r"\d{4}")
_SCORE = re.compile(r"\d+/\d+|\d+\.\d+")
_STATUS_WORDS = ("Submitted", "Not Submitted", "Graded")
_SUBMISSION_ID = re.compile(r"/submissions/(\d+)")
_SCORE_FRACTION = re.compile(r"[\d.]+\s*/\s*[\d.]+")
_HISTORY_STATUS_WORDS = ("Graded", "Submitted", "Processing", "Pending")


class GradescopeClientError(RuntimeError):
    """Raised for Gradescope scraping and session errors."""

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


@dataclass(frozen=True)
class UploadResult:
    success: bool
    url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "url": self.url, "error": self.error}


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _csrf_token(html: str) -> str:
    meta = _soup(html).find("meta", attrs={"name": "csrf-token"})
    return str(meta.get("content", "")) if meta else ""


def parse_cookie_string(cookie_string: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for pair in cookie_string.split(";"):
        name, sep, value = pair.strip().partition("=")
        if sep and name:
            cookies[name] = value
    return cookies


def _heading_before(node: Any) -> str:
    for sibling in node.previous_siblings:
        if not isinstance(sibling, Tag):
            continue
        if sibling.name in {"h1", "h2"}:
            return sibling.get_text(" ", strip=True)
        break
    return ""


def parse_courses(html: str) -> dict[str, list[SubmissionCourse]]:
    """Read the account page course boxes, split by the heading above each list."""
    courses: dict[str, list[SubmissionCourse]] = {"instructor": [], "student": []}
    for course_list in _soup(html).select(".courseList"):
        role = "instructor" if "instructor" in _heading_before(course_list).lower() else "student"
        for box in course_list.select(".courseBox"):
            match = _COURSE_ID.search(box.get("href") or "")
            if not match:
                continue
            short = box.select_one(".courseBox--shortname")
            term = box.select_one(".courseBox--term")
            short_name = short.get_text(strip=True) if short else ""
            full = box.select_one(".courseBox--name")
            courses[role].append(
                SubmissionCourse(
                    id=match.group(1),
                    name=full.get_text(strip=True) if full else short_name,
                    short_name=short_name,
                    term=term.get_text(strip=True) if term else "",
                    role=role,
                )
            )
    return courses


def _classify_cells(cells: list[str]) -> tuple[str, str, str]:
    due_date = status = score = ""
    for text in cells:
        if _YEAR.search(text):
            due_date = text
        elif any(word in text for word in _STATUS_WORDS):
            status = text
        elif _SCORE.search(text):
            score = text
    return due_date, status, score


def parse_assignments(html: str) -> list[SubmissionAssignment]:
    soup = _soup(html)
    found: dict[str, SubmissionAssignment] = {}

    for row in soup.select("table.table tbody tr"):
        link = row.select_one("th a, td a")
        if link is None:
            continue
        match = _ASSIGNMENT_ID.search(link.get("href") or "")
        name = link.get_text(strip=True)
        if not match or not name:
            continue
        cells = [td.get_text(" ", strip=True) for td in row.find_all("td")]
        due_date, status, score = _classify_cells(cells)
        found.setdefault(
            match.group(1),
            SubmissionAssignment(
                id=match.group(1), name=name, due_date=due_date, status=status, score=score
            ),
        )

    for row in soup.select(".assignments-student-table tr, .assignmentsTable tr"):
        link = row.find("a")
        match = _ASSIGNMENT_ID.search(link.get("href") or "") if link else None
        if not match or match.group(1) in found:
            continue
        header = row.find("th")
        name = link.get_text(strip=True) or (header.get_text(strip=True) if header else "")
        if not name:
            continue
        time_el = row.find("time")
        status_el = row.select_one(".submissionStatus, .submission-status")
        score_el = row.select_one(".submissionScore, .score")
        found[match.group(1)] = SubmissionAssignment(
            id=match.group(1),
            name=name,
            due_date=(time_el.get("datetime") or time_el.get_text(strip=True)) if time_el else "",
            status=status_el.get_text(strip=True) if status_el else "",
            score=score_el.get_text(strip=True) if score_el else "",
        )

    return list(found.values())


def parse_submission_history(html: str) -> list[SubmissionRecord]:
    """Submission rows of an assignment, newest first as the page lists them."""
    records: list[SubmissionRecord] = []
    rows = _soup(html).select(
        ".submissionHistoryTable tr, table.table tbody tr, .submission-history tr"
    )
    for row in rows:
        if row.find("th"):
            continue
        link = row.find("a")
        match = _SUBMISSION_ID.search(link.get("href") or "") if link else None
        if not match:
            continue
        cells = row.find_all("td")
        time_el = row.find("time")
        if time_el:
            submitted_at = time_el.get("datetime") or time_el.get_text(strip=True)
        else:
            submitted_at = cells[0].get_text(strip=True) if cells else ""
        score_el = row.select_one(".score, .submissionScore")
        score = score_el.get_text(strip=True) if score_el else ""
        status = ""
        for cell in cells:
            text = cell.get_text(strip=True)
            if any(word in text for word in _HISTORY_STATUS_WORDS):
                status = text
        records.append(
            SubmissionRecord(
                id=match.group(1),
                submitted_at=submitted_at,
                score=score if _SCORE_FRACTION.search(score) else "",
                status=status or "Submitted",
                is_latest=not records,
            )
        )
    return records


@dataclass
class GradescopeClient:
    base_url: str = DEFAULT_BASE_URL
    session: requests.Session = field(default_factory=requests.Session)
    logged_in: bool = False

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    def _require_login(self, endpoint: str) -> None:
        if not self.logged_in:
            raise GradescopeClientError(
                "Not logged in to Gradescope. Call submission_login first.",
                endpoint=endpoint,
                error_type="auth",
            )

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        kwargs.setdefault("timeout", REQUEST_TIMEOUT_SECONDS)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            raise GradescopeClientError(
                f"timeout calling {url}", endpoint=path, error_type="timeout"
            ) from exc
        except requests.RequestException as exc:
            raise GradescopeClientError(
                f"request error calling {url}: {exc}", endpoint=path, error_type="network"
            ) from exc

    def _get_html(self, path: str) -> str:
        resp = self._request("GET", path)
        if resp.status_code >= 400:
            raise GradescopeClientError(
                f"http error {resp.status_code} calling {path}",
                endpoint=path,
                status_code=resp.status_code,
                error_type="http",
            )
        return resp.text

    def login(self, email: str, password: str) -> bool:
        token = _csrf_token(self._request("GET", "/").text)
        form = {
            "utf8": "✓",
            "authenticity_token": token,
            "session[email]": email,
            "session[password]": password,
            "session[remember_me]": "1",
            "commit": "Log In",
            "session[remember_me_sso]": "0",
        }
        resp = self._request(
            "POST",
            "/login",
            data=form,
            headers={"Referer": self.base_url},
            allow_redirects=False,
        )
        location = resp.headers.get("Location", "")
        self.logged_in = resp.status_code in {302, 303} and "login" not in location
        logger.info("gradescope password login %s", "succeeded" if self.logged_in else "failed")
        return self.logged_in

    def login_with_cookies(self, cookie_string: str) -> bool:
        for name, value in parse_cookie_string(cookie_string).items():
            self.session.cookies.set(name, value)
        resp = self._request("GET", "/account", allow_redirects=False)
        self.logged_in = resp.status_code == 200
        logger.info("gradescope cookie login %s", "succeeded" if self.logged_in else "failed")
        return self.logged_in

    def login_from_env(self, session_cookie: str | None, signed_token: str | None) -> bool:
        if not (session_cookie and signed_token):
            return False
        return self.login_with_cookies(
            f"_gradescope_session={session_cookie}; signed_token={signed_token}"
        )

    def list_courses(self) -> dict[str, list[SubmissionCourse]]:
        self._require_login("/account")
        return parse_courses(self._get_html("/account"))

    def list_assignments(self, course_id: str) -> list[SubmissionAssignment]:
        path = f"/courses/{course_id}"
        self._require_login(path)
        return parse_assignments(self._get_html(path))

    def list_submission_history(
        self, course_id: str, assignment_id: str
    ) -> list[SubmissionRecord]:
        path = f"/courses/{course_id}/assignments/{assignment_id}/submissions"
        self._require_login(path)
        return parse_submission_history(self._get_html(path))

    def upload_submission(
        self,
        course_id: str,
        assignment_id: str,
        file_paths: list[str],
    ) -> UploadResult:
        course_path = f"/courses/{course_id}"
        upload_path = f"{course_path}/assignments/{assignment_id}/submissions"
        self._require_login(upload_path)

        paths = [Path(p).expanduser().resolve() for p in file_paths]
        for original, path in zip(file_paths, paths, strict=True):
            if not path.exists():
                return UploadResult(success=False, error=f"File not found: {original}")

        token = _csrf_token(self._get_html(course_path))
        form = {
            "utf8": "✓",
            "authenticity_token": token,
            "submission[method]": "upload",
        }
        with ExitStack() as stack:
            files = [
                ("submission[files][]", (path.name, stack.enter_context(path.open("rb"))))
                for path in paths
            ]
            resp = self._request(
                "POST",
                upload_path,
                data=form,
                files=files,
                headers={"Referer": f"{self.base_url}{course_path}"},
                allow_redirects=True,
            )

        final_url = resp.url
        if final_url == f"{self.base_url}{course_path}" or final_url.endswith("submissions"):
            logger.warning("gradescope upload bounced to %s", final_url)
            return UploadResult(success=False, error=UPLOAD_FAILED_MESSAGE)
        return UploadResult(success=True, url=final_url)
