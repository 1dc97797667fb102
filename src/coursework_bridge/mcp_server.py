from __future__ import annotations

import json
from functools import cache
from pathlib import Path
from typing import Any

from jsonschema import ValidationError, validate
from mcp.server.fastmcp import FastMCP

from . import __version__
from .config import configure_logging
from .service import CourseworkService, build_service

SCHEMA_VERSION = "v1"
SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
ENVELOPE_SCHEMA = "envelope.schema.json"

mcp = FastMCP("coursework-bridge")

TOOL_RESULT_SCHEMAS: dict[str, str] = {
    "analyze_assignment": "analyze_assignment.schema.json",
    "auto_match_courses": "auto_match_courses.schema.json",
    "start_assignment": "start_assignment.schema.json",
    "save_and_review": "save_and_review.schema.json",
    "submit_assignment": "submit_assignment.schema.json",
    "get_workflow_status": "get_workflow_status.schema.json",
    "list_workflows": "list_workflows.schema.json",
}

_service: CourseworkService | None = None


def get_service() -> CourseworkService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


def set_service(service: CourseworkService | None) -> None:
    global _service
    _service = service


@cache
def _load_schema(schema_name: str) -> dict[str, Any]:
    return json.loads((SCHEMAS_DIR / schema_name).read_text())


def _schema_error(command: Any, message: str, details: dict[str, Any]) -> dict[str, Any]:
    return {
        "ok": False,
        "command": command if isinstance(command, str) else "unknown",
        "error": {"code": "SCHEMA_VALIDATION_ERROR", "message": message, "details": details},
    }


def _validate_envelope(payload: dict[str, Any]) -> dict[str, Any] | None:
    command = payload.get("command")
    schema_names = [ENVELOPE_SCHEMA]
    if payload.get("ok") is True and command in TOOL_RESULT_SCHEMAS:
        schema_names.append(TOOL_RESULT_SCHEMAS[command])

    for schema_name in schema_names:
        schema_path = SCHEMAS_DIR / schema_name
        if not schema_path.exists():
            return _schema_error(
                command,
                "Registered schema file is missing.",
                {"schema_file": str(schema_path)},
            )
        try:
            validate(instance=payload, schema=_load_schema(schema_name))
        except ValidationError as exc:
            return _schema_error(
                command,
                "Tool result failed schema validation.",
                {
                    "schema_file": str(schema_path),
                    "validation_error": exc.message,
                    "validator": exc.validator,
                    "path": list(exc.absolute_path),
                },
            )
    return None


def _checked(payload: dict[str, Any]) -> dict[str, Any]:
    return _validate_envelope(payload) or payload


@mcp.tool()
def mcp_version_info() -> dict[str, Any]:
    """Return server and schema version metadata."""
    return {
        "ok": True,
        "mcp_server": "coursework-bridge",
        "version": __version__,
        "schema_version": SCHEMA_VERSION,
    }


@mcp.tool()
def lms_login(api_token: str) -> dict[str, Any]:
    """Log in to Canvas with a personal API token."""
    return _checked(get_service().lms_login(api_token))


@mcp.tool()
def submission_login(email: str, password: str) -> dict[str, Any]:
    """Log in to Gradescope with email and password."""
    return _checked(get_service().submission_login(email, password))


@mcp.tool()
def submission_login_with_cookies(cookies: str) -> dict[str, Any]:
    """Log in to Gradescope with a browser cookie string (for SSO accounts)."""
    return _checked(get_service().submission_login_with_cookies(cookies))


@mcp.tool()
def lms_list_courses() -> dict[str, Any]:
    """List active Canvas courses."""
    return _checked(get_service().lms_list_courses())


@mcp.tool()
def lms_list_assignments(course_id: int) -> dict[str, Any]:
    """List assignments of a Canvas course ordered by due date."""
    return _checked(get_service().lms_list_assignments(course_id))


@mcp.tool()
def lms_get_assignment(course_id: int, assignment_id: int) -> dict[str, Any]:
    """Get one Canvas assignment with its full description."""
    return _checked(get_service().lms_get_assignment(course_id, assignment_id))


@mcp.tool()
def submission_list_courses() -> dict[str, Any]:
    """List Gradescope courses split into instructor and student roles."""
    return _checked(get_service().submission_list_courses())


@mcp.tool()
def submission_list_assignments(course_id: str) -> dict[str, Any]:
    """List assignments of a Gradescope course."""
    return _checked(get_service().submission_list_assignments(course_id))


@mcp.tool()
def submission_list_history(course_id: str, assignment_id: str) -> dict[str, Any]:
    """List past submissions of a Gradescope assignment, latest first."""
    return _checked(get_service().submission_list_history(course_id, assignment_id))


@mcp.tool()
def submission_upload(course_id: str, assignment_id: str, file_paths: list[str]) -> dict[str, Any]:
    """Upload files to a Gradescope assignment directly, e.g. after a failed submit."""
    return _checked(get_service().submission_upload(course_id, assignment_id, file_paths))


@mcp.tool()
def auto_match_courses() -> dict[str, Any]:
    """Match Canvas courses to Gradescope courses by name and code."""
    return _checked(get_service().auto_match_courses())


@mcp.tool()
def manual_map_course(lms_course_id: int, submission_course_id: str) -> dict[str, Any]:
    """Map one Canvas course to a Gradescope course, replacing any prior mapping."""
    return _checked(get_service().manual_map_course(lms_course_id, submission_course_id))


@mcp.tool()
def get_course_mappings() -> dict[str, Any]:
    """Show current course mappings."""
    return _checked(get_service().get_course_mappings())


@mcp.tool()
def exclude_course(lms_course_id: int) -> dict[str, Any]:
    """Exclude a mapped course from automation."""
    return _checked(get_service().exclude_course(lms_course_id))


@mcp.tool()
def include_course(lms_course_id: int) -> dict[str, Any]:
    """Re-include a previously excluded course."""
    return _checked(get_service().include_course(lms_course_id))


@mcp.tool()
def auto_match_assignments(lms_course_id: int) -> dict[str, Any]:
    """Match assignments of a mapped course to its Gradescope assignments."""
    return _checked(get_service().auto_match_assignments(lms_course_id))


@mcp.tool()
def get_assignment_mappings(lms_course_id: int) -> dict[str, Any]:
    """Show assignment mappings for a Canvas course."""
    return _checked(get_service().get_assignment_mappings(lms_course_id))


@mcp.tool()
def analyze_assignment(course_id: int, assignment_id: int) -> dict[str, Any]:
    """Classify an assignment and decide whether it can be automated."""
    return _checked(get_service().analyze_assignment(course_id, assignment_id))


@mcp.tool()
def start_assignment(request: str) -> dict[str, Any]:
    """Start a workflow from a request such as 'hw 17 from cs 170'.

    Returns a session id and a solution prompt. Generate the solution, then
    call save_and_review.
    """
    return _checked(get_service().start_assignment(request))


@mcp.tool()
def save_and_review(session_id: str, content: str) -> dict[str, Any]:
    """Save generated solution content as a draft and return it for review."""
    return _checked(get_service().save_and_review(session_id, content))


@mcp.tool()
def approve_draft(session_id: str, feedback: str | None = None) -> dict[str, Any]:
    """Approve a draft that is awaiting review."""
    return _checked(get_service().approve_draft(session_id, feedback))


@mcp.tool()
def submit_assignment(session_id: str, file_path: str | None = None) -> dict[str, Any]:
    """Submit the session draft to Gradescope. Only call after the user approves."""
    return _checked(get_service().submit_assignment(session_id, file_path))


@mcp.tool()
def get_workflow_status(session_id: str) -> dict[str, Any]:
    """Show status and activity log of a workflow session."""
    return _checked(get_service().get_workflow_status(session_id))


@mcp.tool()
def list_workflows(active_only: bool = False) -> dict[str, Any]:
    """List workflow sessions, optionally only active ones."""
    return _checked(get_service().list_workflows(active_only))


@mcp.tool()
def get_workflow_documentation(session_id: str) -> dict[str, Any]:
    """Full completion report for a workflow session."""
    return _checked(get_service().get_workflow_documentation(session_id))


def main() -> None:
    configure_logging()
    mcp.run()


if __name__ == "__main__":
    main()
