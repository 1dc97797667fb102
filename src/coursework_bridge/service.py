"""Tool surface shared by the MCP server and the CLI.

Every public tool returns an envelope and never raises:

    {"ok": True, "command": <tool>, "result": {...}, "lines": [...]}
    {"ok": False, "command": <tool>, "error": {"code", "message", "details"}}
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from . import config
from .analyzer import analyze, summarize
from .canvas_client import CanvasClient, CanvasClientError
from .gradescope_client import GradescopeClient, GradescopeClientError
from .history import log_action
from .mapping import MappingStore
from .matcher import PARSE_ERROR_MESSAGE, find_assignment, find_course, parse_request
from .models import (
    Assignment,
    Course,
    DraftStatus,
    SessionStatus,
    SubmissionAssignment,
    SubmissionCourse,
    WorkflowAction,
)
from .solution import DraftStore, format_for_review, generate_prompt, prepare_context
from .workflow import WorkflowOrchestrator, WorkflowSession, write_draft_file

logger = logging.getLogger(__name__)

ERROR_CODES = {
    "NOT_AUTHENTICATED",
    "NOT_FOUND",
    "PARSE_ERROR",
    "LOW_CONFIDENCE",
    "NOT_AUTOMATABLE",
    "UPLOAD_FAILED",
    "INVALID_STATE",
    "VALIDATION_ERROR",
    "UPSTREAM_ERROR",
    "INTERNAL_ERROR",
}

CLIENT_ERRORS = (CanvasClientError, GradescopeClientError)

ToolResult = tuple[dict[str, Any], list[str]]


class ToolError(RuntimeError):
    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        if code not in ERROR_CODES:
            code = "INTERNAL_ERROR"
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


def map_client_error(exc: CanvasClientError | GradescopeClientError) -> ToolError:
    platform = "Canvas" if isinstance(exc, CanvasClientError) else "Gradescope"
    if exc.error_type in {"auth", "http_auth"}:
        code = "NOT_AUTHENTICATED"
    elif exc.status_code == 404:
        code = "NOT_FOUND"
    else:
        code = "UPSTREAM_ERROR"
    details = {"endpoint": exc.endpoint, "status_code": exc.status_code}
    return ToolError(code, f"{platform} error: {exc}", details)


def error_envelope(command: str, err: ToolError) -> dict[str, Any]:
    return {
        "ok": False,
        "command": command,
        "error": {"code": err.code, "message": err.message, "details": err.details},
    }


def tool(name: str) -> Callable:
    """Wrap a ``(result, lines)`` method into an envelope-returning tool."""

    def decorator(func: Callable[..., ToolResult]) -> Callable[..., dict[str, Any]]:
        @functools.wraps(func)
        def wrapper(self: CourseworkService, *args: Any, **kwargs: Any) -> dict[str, Any]:
            try:
                result, lines = func(self, *args, **kwargs)
            except ToolError as exc:
                envelope = error_envelope(name, exc)
            except CLIENT_ERRORS as exc:
                envelope = error_envelope(name, map_client_error(exc))
            except Exception as exc:
                logger.exception("tool %s crashed", name)
                envelope = error_envelope(name, ToolError("INTERNAL_ERROR", str(exc)))
            else:
                envelope = {"ok": True, "command": name, "result": result, "lines": lines}
            self._record(name, envelope)
            return envelope

        wrapper.tool_name = name
        return wrapper

    return decorator


def _course_line(course: Course) -> str:
    code = f" ({course.course_code})" if course.course_code else ""
    return f"- {course.id}: {course.name}{code}"


def _assignment_line(assignment: Assignment) -> str:
    due = f" (due: {assignment.due_at})" if assignment.due_at else ""
    return f"- {assignment.id}: {assignment.name}{due}"


class CourseworkService:
    """Owns the stores for one process and drives both collaborators."""

    def __init__(
        self,
        lms: CanvasClient,
        submission: GradescopeClient,
        *,
        mappings: MappingStore | None = None,
        drafts: DraftStore | None = None,
        workflows: WorkflowOrchestrator | None = None,
        drafts_dir: Path | None = None,
        action_log: Callable[..., None] | None = log_action,
    ) -> None:
        self.lms = lms
        self.submission = submission
        self.mappings = mappings or MappingStore()
        self.drafts = drafts or DraftStore()
        self.workflows = workflows or WorkflowOrchestrator()
        self.drafts_dir = drafts_dir
        self._action_log = action_log

    def _record(self, name: str, envelope: dict[str, Any]) -> None:
        if self._action_log is None:
            return
        payload = "" if envelope["ok"] else envelope["error"]["code"]
        self._action_log(f"tool {name}", payload, ok=envelope["ok"])

    def _session(self, session_id: str) -> WorkflowSession:
        session = self.workflows.get_session(session_id)
        if session is None:
            raise ToolError("NOT_FOUND", f"Workflow session not found: {session_id}")
        return session

    @contextmanager
    def _failing_session(self, session: WorkflowSession) -> Iterator[None]:
        """Record any failure in the session log before it becomes an envelope."""
        try:
            yield
        except ToolError as exc:
            self.workflows.record_error(session, exc.message)
            exc.details.setdefault("session_id", session.id)
            raise
        except CLIENT_ERRORS as exc:
            err = map_client_error(exc)
            self.workflows.record_error(session, err.message)
            err.details["session_id"] = session.id
            raise err from exc
        except Exception as exc:
            logger.exception("session %s crashed", session.id)
            err = ToolError(
                "INTERNAL_ERROR", f"Unexpected error: {exc}", {"session_id": session.id}
            )
            self.workflows.record_error(session, err.message)
            raise err from exc

    def _all_submission_courses(self) -> list[SubmissionCourse]:
        listing = self.submission.list_courses()
        return [*listing.get("instructor", []), *listing.get("student", [])]

    def _lms_course(self, course_id: int) -> Course:
        course = next((c for c in self.lms.list_courses() if c.id == course_id), None)
        if course is None:
            raise ToolError("NOT_FOUND", f"Canvas course not found: {course_id}")
        return course

    # Authentication

    @tool("lms_login")
    def lms_login(self, api_token: str) -> ToolResult:
        profile = self.lms.login(api_token)
        name = profile.get("name") or "unknown user"
        user = {"id": profile.get("id"), "name": name}
        return {"user": user}, [f"Logged in to Canvas as {name}."]

    @tool("submission_login")
    def submission_login(self, email: str, password: str) -> ToolResult:
        if not self.submission.login(email, password):
            raise ToolError(
                "NOT_AUTHENTICATED", "Gradescope login failed. Check email and password."
            )
        return {"logged_in": True}, ["Logged in to Gradescope."]

    @tool("submission_login_with_cookies")
    def submission_login_with_cookies(self, cookies: str) -> ToolResult:
        if not self.submission.login_with_cookies(cookies):
            raise ToolError(
                "NOT_AUTHENTICATED",
                "Gradescope rejected the cookies. Copy fresh _gradescope_session and signed_token.",
            )
        return {"logged_in": True}, ["Logged in to Gradescope with cookies."]

    # Catalog listings

    @tool("lms_list_courses")
    def lms_list_courses(self) -> ToolResult:
        courses = self.lms.list_courses()
        lines = [_course_line(c) for c in courses] or ["No courses found."]
        return {"courses": [c.to_dict() for c in courses]}, lines

    @tool("lms_list_assignments")
    def lms_list_assignments(self, course_id: int) -> ToolResult:
        assignments = self.lms.list_assignments(course_id)
        lines = [_assignment_line(a) for a in assignments] or ["No assignments found."]
        return {
            "course_id": course_id,
            "assignments": [a.to_dict() for a in assignments],
        }, lines

    @tool("lms_get_assignment")
    def lms_get_assignment(self, course_id: int, assignment_id: int) -> ToolResult:
        assignment = self.lms.get_assignment(course_id, assignment_id)
        lines = [
            assignment.name,
            f"ID: {assignment.id}",
            f"Due: {assignment.due_at or 'no due date'}",
            f"Points: {assignment.points_possible:g}",
            f"Submission types: {', '.join(assignment.submission_types) or 'none'}",
        ]
        return {"assignment": assignment.to_dict()}, lines

    @tool("submission_list_courses")
    def submission_list_courses(self) -> ToolResult:
        listing = self.submission.list_courses()
        result = {role: [c.to_dict() for c in courses] for role, courses in listing.items()}
        lines = []
        for role, courses in listing.items():
            lines.append(f"{role.title()} courses:")
            lines.extend(f"- {c.id}: {c.name} ({c.term})" for c in courses)
        return result, lines

    @tool("submission_list_assignments")
    def submission_list_assignments(self, course_id: str) -> ToolResult:
        assignments = self.submission.list_assignments(course_id)
        lines = [
            f"- {a.id}: {a.name} ({a.status or 'no status'})" for a in assignments
        ] or ["No assignments found."]
        return {"course_id": course_id, "assignments": [a.to_dict() for a in assignments]}, lines

    @tool("submission_list_history")
    def submission_list_history(self, course_id: str, assignment_id: str) -> ToolResult:
        records = self.submission.list_submission_history(course_id, assignment_id)
        lines = [
            f"- {r.id}: {r.submitted_at or 'unknown time'} {r.status}"
            + (f" {r.score}" if r.score else "")
            + (" (latest)" if r.is_latest else "")
            for r in records
        ] or ["No submissions yet."]
        return {
            "course_id": course_id,
            "assignment_id": assignment_id,
            "submissions": [r.to_dict() for r in records],
        }, lines

    @tool("submission_upload")
    def submission_upload(
        self, course_id: str, assignment_id: str, file_paths: list[str]
    ) -> ToolResult:
        """Upload files straight to a Gradescope assignment, outside any workflow."""
        if not file_paths:
            raise ToolError("VALIDATION_ERROR", "Give at least one file to upload.")
        upload = self.submission.upload_submission(course_id, assignment_id, list(file_paths))
        if not upload.success:
            raise ToolError(
                "UPLOAD_FAILED",
                upload.error or "Upload failed",
                {"file_paths": list(file_paths)},
            )
        return {"course_id": course_id, "assignment_id": assignment_id, **upload.to_dict()}, [
            f"Uploaded {len(file_paths)} file(s) to Gradescope assignment {assignment_id}.",
            f"Submission: {upload.url}",
        ]

    # Mappings

    @tool("auto_match_courses")
    def auto_match_courses(self) -> ToolResult:
        result = self.mappings.auto_match_courses(
            self.lms.list_courses(),
            self._all_submission_courses(),
        )
        lines = [f"Matched {len(result.matched)} course(s):"]
        lines.extend(f"- {m.lms_course_name} -> {m.submission_course_name}" for m in result.matched)
        if result.unmatched:
            lines.append(f"Unmatched ({len(result.unmatched)}):")
            lines.extend(f"- {c.name}" for c in result.unmatched)
        return {
            "matched": [m.to_dict() for m in result.matched],
            "unmatched": [c.to_dict() for c in result.unmatched],
        }, lines

    @tool("manual_map_course")
    def manual_map_course(self, lms_course_id: int, submission_course_id: str) -> ToolResult:
        course = self._lms_course(lms_course_id)
        target = next(
            (c for c in self._all_submission_courses() if c.id == str(submission_course_id)),
            None,
        )
        if target is None:
            raise ToolError("NOT_FOUND", f"Gradescope course not found: {submission_course_id}")
        mapping = self.mappings.manual_map_course(course, target)
        return {"mapping": mapping.to_dict()}, [f"Mapped {course.name} -> {target.name}."]

    @tool("get_course_mappings")
    def get_course_mappings(self) -> ToolResult:
        mappings = self.mappings.get_course_mappings()
        lines = [
            f"- {m.lms_course_name} -> {m.submission_course_name}"
            + (" (excluded)" if m.excluded else "")
            for m in mappings
        ] or ["No course mappings yet. Run auto_match_courses first."]
        return {"mappings": [m.to_dict() for m in mappings]}, lines

    @tool("exclude_course")
    def exclude_course(self, lms_course_id: int) -> ToolResult:
        if not self.mappings.exclude_course(lms_course_id):
            raise ToolError("NOT_FOUND", f"No mapping for Canvas course {lms_course_id}")
        return {"lms_course_id": lms_course_id, "excluded": True}, [
            f"Course {lms_course_id} excluded from automation."
        ]

    @tool("include_course")
    def include_course(self, lms_course_id: int) -> ToolResult:
        if not self.mappings.include_course(lms_course_id):
            raise ToolError("NOT_FOUND", f"No mapping for Canvas course {lms_course_id}")
        return {"lms_course_id": lms_course_id, "excluded": False}, [
            f"Course {lms_course_id} included in automation."
        ]

    def _match_assignments_for(self, lms_course_id: int) -> Any:
        mapping = self.mappings.get_mapping_for_lms_course(lms_course_id)
        if mapping is None:
            raise ToolError(
                "NOT_FOUND",
                f"No Gradescope course mapped to Canvas course {lms_course_id}. "
                "Run auto_match_courses or manual_map_course first.",
            )
        return self.mappings.auto_match_assignments(
            lms_course_id,
            self.lms.list_assignments(lms_course_id),
            self.submission.list_assignments(mapping.submission_course_id),
        )

    @tool("auto_match_assignments")
    def auto_match_assignments(self, lms_course_id: int) -> ToolResult:
        result = self._match_assignments_for(lms_course_id)
        lines = [f"Matched {len(result.matched)} assignment(s):"]
        lines.extend(
            f"- {m.lms_assignment_name} -> {m.submission_assignment_name}" for m in result.matched
        )
        if result.unmatched:
            lines.append(f"Unmatched ({len(result.unmatched)}):")
            lines.extend(f"- {a.name}" for a in result.unmatched)
        return {
            "lms_course_id": lms_course_id,
            "matched": [m.to_dict() for m in result.matched],
            "unmatched": [a.to_dict() for a in result.unmatched],
        }, lines

    @tool("get_assignment_mappings")
    def get_assignment_mappings(self, lms_course_id: int) -> ToolResult:
        mappings = self.mappings.get_assignment_mappings(lms_course_id)
        lines = [
            f"- {m.lms_assignment_name} -> {m.submission_assignment_name}" for m in mappings
        ] or [f"No assignment mappings for course {lms_course_id}."]
        return {
            "lms_course_id": lms_course_id,
            "mappings": [m.to_dict() for m in mappings],
        }, lines

    @tool("analyze_assignment")
    def analyze_assignment(self, course_id: int, assignment_id: int) -> ToolResult:
        analysis = analyze(self.lms.get_assignment(course_id, assignment_id), course_id)
        return {"analysis": analysis.to_dict()}, summarize(analysis)

    # Workflow

    @tool("start_assignment")
    def start_assignment(self, request: str) -> ToolResult:
        session = self.workflows.create_session(request)
        with self._failing_session(session):
            parsed = parse_request(request)
            if parsed is None:
                raise ToolError("PARSE_ERROR", PARSE_ERROR_MESSAGE)

            courses = self.lms.list_courses()
            course_match = find_course(courses, parsed.course_query)
            if course_match is None:
                raise ToolError(
                    "LOW_CONFIDENCE",
                    f"Could not find a course matching '{parsed.course_query}'.",
                    {"available_courses": [f"{c.name} ({c.course_code})" for c in courses]},
                )
            course = course_match.item
            self.workflows.set_course(session, course, course_match.confidence)

            assignments = self.lms.list_assignments(course.id)
            assignment_match = find_assignment(assignments, parsed.assignment_query)
            if assignment_match is None:
                raise ToolError(
                    "LOW_CONFIDENCE",
                    f"Could not find an assignment matching '{parsed.assignment_query}' "
                    f"in {course.name}.",
                    {"available_assignments": [a.name for a in assignments]},
                )
            assignment = self.lms.get_assignment(course.id, assignment_match.item.id)
            self.workflows.set_assignment(session, assignment, assignment_match.confidence)

            analysis = analyze(assignment, course.id)
            self.workflows.set_analysis(session, analysis)
            if not analysis.automatable:
                raise ToolError(
                    "NOT_AUTOMATABLE",
                    f"Assignment cannot be automated: {analysis.automatable_reason}",
                    {"type": analysis.type.value, "reason": analysis.automatable_reason},
                )

            context = prepare_context(analysis)
            prompt = generate_prompt(context)
            self.workflows.set_solution_context(session, context, prompt)

        lines = [
            f"Session: {session.id}",
            f"Course: {course.name} (confidence {course_match.confidence})",
            f"Assignment: {assignment.name} (confidence {assignment_match.confidence})",
            *summarize(analysis),
            "",
            prompt,
            "",
            f"Generate the solution, then call save_and_review with session_id={session.id}.",
        ]
        return {
            "session_id": session.id,
            "status": session.status.value,
            "course": course.to_dict(),
            "course_confidence": course_match.confidence,
            "assignment": assignment.to_dict(),
            "assignment_confidence": assignment_match.confidence,
            "analysis": analysis.to_dict(),
            "solution_context": context.to_dict(),
            "prompt": prompt,
        }, lines

    @tool("save_and_review")
    def save_and_review(self, session_id: str, content: str) -> ToolResult:
        session = self._session(session_id)
        if session.status.terminal:
            raise ToolError(
                "INVALID_STATE",
                f"Session {session_id} is already {session.status.value}.",
            )
        context = session.solution_context
        if context is None:
            raise ToolError("INVALID_STATE", f"Session {session_id} has no prepared solution.")
        if not content.strip():
            raise ToolError("VALIDATION_ERROR", "Draft content is empty.")

        self.workflows.log(
            session,
            WorkflowAction.GENERATE_SOLUTION,
            "Solution content received",
            {"characters": len(content)},
        )
        draft = self.drafts.save_draft(
            context.assignment_id,
            context.course_id,
            context.assignment_name,
            content,
            context.format,
        )
        self.drafts.update_draft_status(
            draft.course_id, draft.assignment_id, DraftStatus.READY_FOR_REVIEW
        )
        self.workflows.set_draft(session, draft)
        review = format_for_review(draft)
        self.workflows.log(session, WorkflowAction.REVIEW_DRAFT, "Draft rendered for review")
        return {
            "session_id": session.id,
            "status": session.status.value,
            "draft": draft.to_dict(),
            "review": review,
        }, [*review.splitlines(), "", "Call approve_draft or submit_assignment when ready."]

    def _approve(self, session: WorkflowSession, feedback: str | None = None) -> None:
        draft = session.draft
        if draft is not None:
            self.drafts.update_draft_status(
                draft.course_id, draft.assignment_id, DraftStatus.APPROVED, feedback
            )
        self.workflows.approve_draft(session)

    @tool("approve_draft")
    def approve_draft(self, session_id: str, feedback: str | None = None) -> ToolResult:
        session = self._session(session_id)
        if session.status is not SessionStatus.AWAITING_REVIEW:
            raise ToolError(
                "INVALID_STATE",
                f"Session {session_id} is {session.status.value}; only drafts awaiting review "
                "can be approved.",
            )
        self._approve(session, feedback)
        return {"session_id": session.id, "status": session.status.value}, ["Draft approved."]

    def _submission_target(
        self,
        course: Course,
        assignment: Assignment,
    ) -> tuple[SubmissionCourse, SubmissionAssignment]:
        mapping = self.mappings.get_mapping_for_lms_course(course.id)
        if mapping is None:
            raise ToolError(
                "NOT_FOUND",
                f"No Gradescope course mapped to {course.name}. "
                "Run auto_match_courses or manual_map_course first.",
            )
        if mapping.excluded:
            raise ToolError(
                "VALIDATION_ERROR",
                f"{course.name} is excluded from automation. Use include_course to re-enable it.",
            )
        if not self.mappings.has_assignment_mappings(course.id):
            self._match_assignments_for(course.id)

        target = next(
            (
                m
                for m in self.mappings.get_assignment_mappings(course.id)
                if m.lms_assignment_id == assignment.id
            ),
            None,
        )
        if target is None:
            raise ToolError(
                "NOT_FOUND",
                f"No Gradescope assignment matched to {assignment.name}. "
                "Run auto_match_assignments for this course.",
            )
        return (
            SubmissionCourse(id=mapping.submission_course_id, name=mapping.submission_course_name),
            SubmissionAssignment(
                id=target.submission_assignment_id, name=target.submission_assignment_name
            ),
        )

    @tool("submit_assignment")
    def submit_assignment(self, session_id: str, file_path: str | None = None) -> ToolResult:
        session = self._session(session_id)
        if session.status.terminal:
            raise ToolError(
                "INVALID_STATE",
                f"Session {session_id} is already {session.status.value}.",
            )
        draft = session.draft
        if draft is None or session.lms_course is None or session.lms_assignment is None:
            raise ToolError(
                "INVALID_STATE",
                f"Session {session_id} has no draft. Call save_and_review first.",
            )
        if session.status is SessionStatus.AWAITING_REVIEW:
            self._approve(session)

        with self._failing_session(session):
            if file_path is None:
                path = write_draft_file(draft, self.drafts_dir)
                self.workflows.set_draft_path(session, path)
                file_path = str(path)

            course, assignment = self._submission_target(session.lms_course, session.lms_assignment)
            self.workflows.set_submission_target(session, course, assignment)

            upload = self.submission.upload_submission(course.id, assignment.id, [file_path])
            if not upload.success or not upload.url:
                raise ToolError(
                    "UPLOAD_FAILED",
                    f"{upload.error or 'Upload failed'}. Submit manually from {file_path}.",
                    {"file_path": file_path},
                )

        self.workflows.record_submission(session, upload.url)
        self.drafts.update_draft_status(draft.course_id, draft.assignment_id, DraftStatus.SUBMITTED)
        return {
            "session_id": session.id,
            "status": session.status.value,
            "submission_url": upload.url,
            "file_path": file_path,
        }, [f"Submitted {draft.assignment_name}.", f"Submission: {upload.url}"]

    @tool("get_workflow_status")
    def get_workflow_status(self, session_id: str) -> ToolResult:
        session = self._session(session_id)
        summary = self.workflows.get_summary(session)
        return {"session": session.to_dict(), "summary": summary}, summary.splitlines()

    @tool("list_workflows")
    def list_workflows(self, active_only: bool = False) -> ToolResult:
        sessions = (
            self.workflows.list_active_sessions()
            if active_only
            else self.workflows.list_sessions()
        )
        lines = [
            f"- {s.id} [{s.status.value}] {s.original_request}" for s in sessions
        ] or ["No workflow sessions."]
        return {
            "sessions": [
                {
                    "id": s.id,
                    "status": s.status.value,
                    "original_request": s.original_request,
                    "started_at": s.started_at.isoformat(),
                }
                for s in sessions
            ]
        }, lines

    @tool("get_workflow_documentation")
    def get_workflow_documentation(self, session_id: str) -> ToolResult:
        session = self._session(session_id)
        documentation = self.workflows.get_documentation(session)
        result = {"session_id": session.id, "documentation": documentation}
        return result, documentation.splitlines()


TOOL_NAMES = tuple(
    getattr(member, "tool_name")
    for member in vars(CourseworkService).values()
    if hasattr(member, "tool_name")
)


def build_service() -> CourseworkService:
    """Service wired from configuration, with environment auto-login to Gradescope."""
    lms = CanvasClient(base_url=config.get_canvas_base_url(), api_token=config.get_canvas_token())
    submission = GradescopeClient(base_url=config.get_gradescope_base_url())
    session_cookie, signed_token = config.get_gradescope_cookies()
    try:
        if submission.login_from_env(session_cookie, signed_token):
            logger.info("logged in to Gradescope from environment cookies")
    except GradescopeClientError as exc:
        logger.warning("automatic Gradescope login failed: %s", exc)
    return CourseworkService(lms, submission, drafts_dir=config.get_drafts_dir())
