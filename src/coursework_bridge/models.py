from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class AssignmentType(StrEnum):
    ESSAY = "essay"
    REFLECTION = "reflection"
    CODE = "code"
    QUIZ = "quiz"
    EXAM = "exam"
    PRESENTATION = "presentation"
    GROUP_PROJECT = "group_project"
    DISCUSSION = "discussion"
    LAB = "lab"
    HOMEWORK = "homework"
    ATTENDANCE = "attendance"
    UNKNOWN = "unknown"


class SessionStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    AWAITING_REVIEW = "awaiting_review"
    APPROVED = "approved"
    SUBMITTED = "submitted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {SessionStatus.SUBMITTED, SessionStatus.FAILED}


class DraftStatus(StrEnum):
    DRAFT = "draft"
    READY_FOR_REVIEW = "ready_for_review"
    APPROVED = "approved"
    SUBMITTED = "submitted"


class SolutionFormat(StrEnum):
    ESSAY = "essay"
    CODE = "code"
    SHORT_ANSWER = "short_answer"
    FILE_UPLOAD = "file_upload"


class WorkflowAction(StrEnum):
    RESOLVE_COURSE = "resolve_course"
    RESOLVE_ASSIGNMENT = "resolve_assignment"
    ANALYZE_ASSIGNMENT = "analyze_assignment"
    PREPARE_SOLUTION = "prepare_solution"
    GENERATE_SOLUTION = "generate_solution"
    SAVE_DRAFT = "save_draft"
    REVIEW_DRAFT = "review_draft"
    APPROVE_DRAFT = "approve_draft"
    SUBMIT_ASSIGNMENT = "submit_assignment"
    ERROR = "error"


@dataclass(frozen=True)
class Course:
    """A course as reported by the LMS."""

    id: int
    name: str
    course_code: str = ""
    term: str = ""
    workflow_state: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Course:
        term = data.get("term")
        if isinstance(term, dict):
            term = term.get("name")
        if term is None:
            term = data.get("enrollment_term_id")
        return cls(
            id=int(data["id"]),
            name=str(data.get("name") or ""),
            course_code=str(data.get("course_code") or ""),
            term="" if term is None else str(term),
            workflow_state=str(data.get("workflow_state") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Assignment:
    """An assignment as reported by the LMS."""

    id: int
    name: str
    description: str | None = None
    due_at: str | None = None
    points_possible: float = 0.0
    submission_types: tuple[str, ...] = ()
    html_url: str = ""
    course_id: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Assignment:
        course_id = data.get("course_id")
        return cls(
            id=int(data["id"]),
            name=str(data.get("name") or ""),
            description=data.get("description"),
            due_at=data.get("due_at"),
            points_possible=float(data.get("points_possible") or 0),
            submission_types=tuple(data.get("submission_types") or ()),
            html_url=str(data.get("html_url") or ""),
            course_id=int(course_id) if course_id is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["submission_types"] = list(self.submission_types)
        return out


@dataclass(frozen=True)
class SubmissionCourse:
    """A course as listed on the submission service."""

    id: str
    name: str
    short_name: str = ""
    term: str = ""
    role: str = "student"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SubmissionAssignment:
    """An assignment row scraped from a submission-service course page."""

    id: str
    name: str
    due_date: str = ""
    status: str = ""
    score: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CourseMapping:
    lms_course_id: int
    lms_course_name: str
    submission_course_id: str
    submission_course_name: str
    excluded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AssignmentMapping:
    lms_assignment_id: int
    lms_assignment_name: str
    submission_assignment_id: str
    submission_assignment_name: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MatchResult:
    """Outcome of a greedy catalog match: accepted pairs plus leftover sources."""

    matched: list[Any] = field(default_factory=list)
    unmatched: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class SubmissionRecord:
    """One row of a submission-service assignment's submission history."""

    id: str
    submitted_at: str = ""
    score: str = ""
    status: str = "Submitted"
    is_latest: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
