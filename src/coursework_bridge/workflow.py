from __future__ import annotations

import itertools
import json
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .analyzer import AnalyzedAssignment
from .models import (
    Assignment,
    Course,
    DraftStatus,
    SessionStatus,
    SolutionFormat,
    SubmissionAssignment,
    SubmissionCourse,
    WorkflowAction,
)
from .solution import Draft, SolutionContext, word_count

ACTIVE_STATES = (SessionStatus.IN_PROGRESS, SessionStatus.AWAITING_REVIEW)
PREVIEW_CHARS = 500
RULE_WIDTH = 60

DRAFT_EXTENSIONS = {
    SolutionFormat.ESSAY: ".md",
    SolutionFormat.CODE: ".txt",
    SolutionFormat.SHORT_ANSWER: ".txt",
    SolutionFormat.FILE_UPLOAD: ".txt",
}


def utc_now() -> datetime:
    return datetime.now(UTC)


def drafts_root() -> Path:
    return Path.home() / ".local" / "share" / "coursework-bridge" / "drafts"


@dataclass
class WorkflowLogEntry:
    timestamp: datetime
    action: WorkflowAction
    details: str
    data: dict[str, Any] | None = None
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "details": self.details,
            "data": self.data,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class WorkflowSession:
    id: str
    started_at: datetime
    original_request: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    completed_at: datetime | None = None
    lms_course: Course | None = None
    lms_assignment: Assignment | None = None
    submission_course: SubmissionCourse | None = None
    submission_assignment: SubmissionAssignment | None = None
    analysis: AnalyzedAssignment | None = None
    solution_context: SolutionContext | None = None
    generated_prompt: str | None = None
    draft: Draft | None = None
    submission_url: str | None = None
    draft_path: str | None = None
    logs: list[WorkflowLogEntry] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.status in ACTIVE_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "original_request": self.original_request,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "lms_course": self.lms_course.to_dict() if self.lms_course else None,
            "lms_assignment": self.lms_assignment.to_dict() if self.lms_assignment else None,
            "submission_course": (
                self.submission_course.to_dict() if self.submission_course else None
            ),
            "submission_assignment": (
                self.submission_assignment.to_dict() if self.submission_assignment else None
            ),
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "draft": self.draft.to_dict() if self.draft else None,
            "submission_url": self.submission_url,
            "draft_path": self.draft_path,
            "logs": [entry.to_dict() for entry in self.logs],
        }


class WorkflowOrchestrator:
    """Owns workflow sessions and their append-only audit logs.

    Every method that changes a session also appends a log entry. Sessions
    are never removed.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, WorkflowSession] = {}
        self._counter = itertools.count(1)

    def create_session(self, original_request: str) -> WorkflowSession:
        session_id = f"wf-{int(time.time() * 1000)}-{next(self._counter)}"
        session = WorkflowSession(
            id=session_id,
            started_at=utc_now(),
            original_request=original_request,
        )
        self._sessions[session_id] = session
        self.log(
            session,
            WorkflowAction.RESOLVE_COURSE,
            "Workflow session started",
            {"original_request": original_request},
        )
        return session

    def get_session(self, session_id: str) -> WorkflowSession | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[WorkflowSession]:
        return list(self._sessions.values())

    def list_active_sessions(self) -> list[WorkflowSession]:
        return [s for s in self._sessions.values() if s.active]

    def log(
        self,
        session: WorkflowSession,
        action: WorkflowAction,
        details: str,
        data: dict[str, Any] | None = None,
        success: bool = True,
        error: str | None = None,
    ) -> WorkflowLogEntry:
        entry = WorkflowLogEntry(
            timestamp=utc_now(),
            action=action,
            details=details,
            data=data,
            success=success,
            error=error,
        )
        session.logs.append(entry)
        return entry

    def set_course(self, session: WorkflowSession, course: Course, confidence: int) -> None:
        session.lms_course = course
        self.log(
            session,
            WorkflowAction.RESOLVE_COURSE,
            f"Resolved course: {course.name}",
            {
                "course_id": course.id,
                "course_name": course.name,
                "course_code": course.course_code,
                "confidence": confidence,
            },
        )

    def set_assignment(
        self,
        session: WorkflowSession,
        assignment: Assignment,
        confidence: int,
    ) -> None:
        session.lms_assignment = assignment
        self.log(
            session,
            WorkflowAction.RESOLVE_ASSIGNMENT,
            f"Resolved assignment: {assignment.name}",
            {
                "assignment_id": assignment.id,
                "assignment_name": assignment.name,
                "due_at": assignment.due_at,
                "confidence": confidence,
            },
        )

    def set_submission_target(
        self,
        session: WorkflowSession,
        course: SubmissionCourse,
        assignment: SubmissionAssignment,
    ) -> None:
        session.submission_course = course
        session.submission_assignment = assignment
        self.log(
            session,
            WorkflowAction.SUBMIT_ASSIGNMENT,
            f"Submission target: {course.name} / {assignment.name}",
            {"course_id": course.id, "assignment_id": assignment.id},
        )

    def set_analysis(self, session: WorkflowSession, analysis: AnalyzedAssignment) -> None:
        session.analysis = analysis
        self.log(
            session,
            WorkflowAction.ANALYZE_ASSIGNMENT,
            f"Analyzed: {analysis.type.value}, automatable: {analysis.automatable}",
            {
                "type": analysis.type.value,
                "automatable": analysis.automatable,
                "reason": analysis.automatable_reason,
            },
        )

    def set_solution_context(
        self,
        session: WorkflowSession,
        context: SolutionContext,
        prompt: str,
    ) -> None:
        session.solution_context = context
        session.generated_prompt = prompt
        self.log(
            session,
            WorkflowAction.PREPARE_SOLUTION,
            f"Prepared {context.format.value} solution context",
            {
                "format": context.format.value,
                "constraints": list(context.constraints),
                "prompt_length": len(prompt),
            },
        )

    def set_draft(self, session: WorkflowSession, draft: Draft) -> bool:
        if session.status.terminal:
            return False
        session.draft = draft
        session.status = SessionStatus.AWAITING_REVIEW
        self.log(
            session,
            WorkflowAction.SAVE_DRAFT,
            f"Draft saved: {len(draft.content)} characters",
            {
                "draft_id": draft.id,
                "format": draft.format.value,
                "word_count": word_count(draft.content),
            },
        )
        return True

    def set_draft_path(self, session: WorkflowSession, path: Path) -> None:
        session.draft_path = str(path)
        self.log(
            session, WorkflowAction.SAVE_DRAFT, f"Draft written to {path}", {"path": str(path)}
        )

    def approve_draft(self, session: WorkflowSession) -> bool:
        if session.draft is None or session.status.terminal:
            return False
        session.draft.status = DraftStatus.APPROVED
        session.status = SessionStatus.APPROVED
        self.log(
            session,
            WorkflowAction.APPROVE_DRAFT,
            "Draft approved for submission",
            {"draft_id": session.draft.id},
        )
        return True

    def record_submission(self, session: WorkflowSession, url: str) -> bool:
        if session.status.terminal:
            return False
        session.submission_url = url
        session.status = SessionStatus.SUBMITTED
        session.completed_at = utc_now()
        if session.draft is not None:
            session.draft.status = DraftStatus.SUBMITTED
        self.log(session, WorkflowAction.SUBMIT_ASSIGNMENT, "Submitted successfully", {"url": url})
        return True

    def record_error(self, session: WorkflowSession, message: str) -> None:
        # Resolved fields stay in place so a failed session can be inspected.
        if not session.status.terminal:
            session.status = SessionStatus.FAILED
        self.log(session, WorkflowAction.ERROR, message, {}, success=False, error=message)

    def get_summary(self, session: WorkflowSession) -> str:
        lines = [
            f"# Workflow Session: {session.id}",
            "",
            f"**Request:** {session.original_request}",
            f"**Status:** {session.status.value}",
            f"**Started:** {session.started_at.isoformat()}",
        ]
        if session.completed_at:
            lines.append(f"**Completed:** {session.completed_at.isoformat()}")
        lines.append("")

        if session.lms_course:
            course = session.lms_course
            lines.append(f"**Course:** {course.name} ({course.course_code})")
        if session.lms_assignment:
            lines.append(f"**Assignment:** {session.lms_assignment.name}")
            if session.lms_assignment.due_at:
                lines.append(f"**Due:** {session.lms_assignment.due_at}")
        if session.analysis:
            lines.append(f"**Type:** {session.analysis.type.value}")
            lines.append(f"**Automatable:** {'Yes' if session.analysis.automatable else 'No'}")
        if session.draft:
            words = word_count(session.draft.content)
            lines.append(f"**Draft:** {words} words, status: {session.draft.status.value}")
        if session.submission_url:
            lines.append(f"**Submission:** {session.submission_url}")
        lines.extend(["", "## Activity Log", ""])

        for entry in session.logs:
            mark = "ok" if entry.success else "FAILED"
            lines.append(
                f"{entry.timestamp.strftime('%H:%M:%S')} [{mark}] "
                f"**{entry.action.value}**: {entry.details}"
            )
            if entry.error:
                lines.append(f"  Error: {entry.error}")
        return "\n".join(lines)

    def get_documentation(self, session: WorkflowSession) -> str:
        """Plain-text completion report covering the whole session."""
        heavy = "=" * RULE_WIDTH
        light = "-" * RULE_WIDTH

        def section(title: str) -> list[str]:
            return [light, title, light]

        lines = [heavy, "ASSIGNMENT COMPLETION REPORT", heavy, ""]
        lines.append(f"Session ID: {session.id}")
        lines.append(f"Date: {session.started_at.date().isoformat()}")
        end = session.completed_at or utc_now()
        lines.append(f"Duration: {format_duration(session.started_at, end)}")
        lines.append("")

        lines.extend(section("REQUEST"))
        lines.extend([session.original_request, ""])

        if session.lms_course and session.lms_assignment:
            assignment = session.lms_assignment
            lines.extend(section("RESOLVED TO"))
            lines.append(f"Course: {session.lms_course.name}")
            lines.append(f"Code: {session.lms_course.course_code}")
            lines.append(f"Assignment: {assignment.name}")
            if assignment.due_at:
                lines.append(f"Due: {assignment.due_at}")
            lines.append(f"Points: {assignment.points_possible:g}")
            lines.append("")

        if session.analysis:
            analysis = session.analysis
            requirements = analysis.requirements
            lines.extend(section("ANALYSIS"))
            lines.append(f"Type: {analysis.type.value}")
            lines.append(f"Automatable: {analysis.automatable}")
            lines.append(f"Reason: {analysis.automatable_reason}")
            if requirements.word_count and requirements.word_count.min:
                lines.append(f"Word Count Required: {requirements.word_count.min}+")
            if requirements.citations:
                style = requirements.citation_style or "unspecified style"
                lines.append(f"Citations: Required ({style})")
            lines.append("")

        if session.draft:
            draft = session.draft
            preview = draft.content[:PREVIEW_CHARS]
            if len(draft.content) > PREVIEW_CHARS:
                preview += "..."
            lines.extend(section("SOLUTION"))
            lines.append(f"Format: {draft.format.value}")
            lines.append(f"Word Count: {word_count(draft.content)}")
            lines.append(f"Status: {draft.status.value}")
            lines.extend(["", f"Content Preview (first {PREVIEW_CHARS} chars):", "```"])
            lines.extend([preview, "```", ""])

        lines.extend(section("OUTCOME"))
        lines.append(f"Final Status: {session.status.value.upper()}")
        if session.submission_url:
            lines.append(f"Submission URL: {session.submission_url}")
        lines.append("")

        lines.extend(section("DETAILED LOG"))
        for entry in session.logs:
            lines.append(f"[{entry.timestamp.isoformat()}] {entry.action.value}: {entry.details}")
            if entry.data:
                lines.append(f"  Data: {json.dumps(entry.data, sort_keys=True, default=str)}")
            if entry.error:
                lines.append(f"  ERROR: {entry.error}")
        lines.extend(["", heavy])
        return "\n".join(lines)


def format_duration(start: datetime, end: datetime) -> str:
    seconds = int((end - start).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _slug(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "draft"


def write_draft_file(draft: Draft, out_dir: Path | None = None) -> Path:
    """Write a draft to disk so it can be uploaded or submitted by hand."""
    target_dir = out_dir or drafts_root()
    target_dir.mkdir(parents=True, exist_ok=True)
    name = f"{draft.id}-{_slug(draft.assignment_name)}{DRAFT_EXTENSIONS[draft.format]}"
    path = target_dir / name
    path.write_text(draft.content)
    return path
