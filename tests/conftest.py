from __future__ import annotations

from pathlib import Path

import pytest

from coursework_bridge.canvas_client import CanvasClientError
from coursework_bridge.gradescope_client import UploadResult
from coursework_bridge.models import (
    Assignment,
    Course,
    SubmissionAssignment,
    SubmissionCourse,
    SubmissionRecord,
)
from coursework_bridge.service import CourseworkService

CS170 = Course(id=101, name="CS 170: Efficient Algorithms", course_code="CS 170")
EECS16A = Course(id=102, name="EECS 16A: Designing Information Devices", course_code="EECS 16A")

HW17 = Assignment(
    id=9017,
    name="Homework 17",
    description="<p>Implement the algorithm and submit a PDF.</p>",
    due_at="2026-11-01T23:59:00Z",
    points_possible=10.0,
    submission_types=("online_upload",),
    course_id=101,
)
MIDTERM = Assignment(
    id=9100,
    name="Midterm Exam 1",
    points_possible=100.0,
    submission_types=("on_paper",),
    course_id=101,
)

GS_CS170 = SubmissionCourse(id="555", name="CS 170", short_name="CS 170", term="Fall 2026")
GS_HW17 = SubmissionAssignment(id="777", name="Homework 17", status="No Submission")


class FakeLms:
    def __init__(self, courses=None, assignments=None) -> None:
        self.courses = list(courses if courses is not None else [CS170, EECS16A])
        self.assignments = dict(assignments if assignments is not None else {101: [HW17, MIDTERM]})
        self.token: str | None = None

    def login(self, api_token: str) -> dict:
        if api_token != "good-token":
            raise CanvasClientError("http error 401", status_code=401, error_type="http_auth")
        self.token = api_token
        return {"id": 1, "name": "Oski Bear"}

    def list_courses(self) -> list[Course]:
        return list(self.courses)

    def list_assignments(self, course_id: int) -> list[Assignment]:
        return list(self.assignments.get(course_id, []))

    def get_assignment(self, course_id: int, assignment_id: int) -> Assignment:
        for assignment in self.assignments.get(course_id, []):
            if assignment.id == assignment_id:
                return assignment
        raise CanvasClientError("not found", status_code=404, error_type="http")


class FakeSubmission:
    def __init__(self, courses=None, assignments=None, upload=None) -> None:
        self.courses = courses if courses is not None else {"instructor": [], "student": [GS_CS170]}
        self.assignments = dict(assignments if assignments is not None else {"555": [GS_HW17]})
        self.upload = upload or UploadResult(
            success=True,
            url="https://www.gradescope.com/courses/555/assignments/777/submissions/1",
        )
        self.uploads: list[tuple[str, str, list[str]]] = []
        self.history: dict[tuple[str, str], list[SubmissionRecord]] = {}

    def login(self, email: str, password: str) -> bool:
        return password == "secret"

    def login_with_cookies(self, cookies: str) -> bool:
        return "signed_token=" in cookies

    def list_courses(self) -> dict[str, list[SubmissionCourse]]:
        return self.courses

    def list_assignments(self, course_id: str) -> list[SubmissionAssignment]:
        return list(self.assignments.get(course_id, []))

    def list_submission_history(self, course_id: str, assignment_id: str):
        return list(self.history.get((course_id, assignment_id), []))

    def upload_submission(self, course_id: str, assignment_id: str, file_paths: list[str]):
        self.uploads.append((course_id, assignment_id, list(file_paths)))
        return self.upload


@pytest.fixture
def lms() -> FakeLms:
    return FakeLms()


@pytest.fixture
def submission() -> FakeSubmission:
    return FakeSubmission()


@pytest.fixture
def service(lms: FakeLms, submission: FakeSubmission, tmp_path: Path) -> CourseworkService:
    return CourseworkService(lms, submission, drafts_dir=tmp_path / "drafts", action_log=None)
