from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import typer
from rich import print
from rich.markup import escape

from .config import (
    CONFIG_FILE,
    configure_logging,
    get_canvas_base_url,
    get_canvas_token,
    get_drafts_dir,
    get_gradescope_base_url,
    get_gradescope_cookies,
    save_canvas_token,
)
from .history import init_db, log_action, recent_actions
from .matcher import PARSE_ERROR_MESSAGE, parse_assignment_query, parse_course_query, parse_request
from .service import CourseworkService, build_service

SCHEMA_VERSION = "v1"

app = typer.Typer(help="Bridge Canvas assignments to Gradescope submissions (human-in-the-loop)")
auth_app = typer.Typer()
courses_app = typer.Typer()
assignment_app = typer.Typer()
gradescope_app = typer.Typer()
match_app = typer.Typer()

app.add_typer(auth_app, name="auth")
app.add_typer(courses_app, name="courses")
app.add_typer(assignment_app, name="assignment")
app.add_typer(gradescope_app, name="gradescope")
app.add_typer(match_app, name="match")


@dataclass
class AppContext:
    json_mode: bool = False


def _ctx_or_default(ctx: typer.Context | None) -> AppContext:
    if ctx is None or not isinstance(ctx.obj, AppContext):
        return AppContext()
    return ctx.obj


def _dump(data: dict[str, Any]) -> str:
    return json.dumps({"schema_version": SCHEMA_VERSION, **data}, sort_keys=True, default=str)


def _emit(ctx: typer.Context | None, data: dict[str, Any]) -> None:
    if _ctx_or_default(ctx).json_mode:
        typer.echo(_dump(data))
    else:
        for line in data.get("lines", []):
            print(escape(line))


def _emit_error(ctx: typer.Context | None, data: dict[str, Any]) -> None:
    error = data["error"]
    if _ctx_or_default(ctx).json_mode:
        typer.echo(_dump(data))
    else:
        print(f"[red]{error['code']}[/red]: {escape(error['message'])}")
        for key, value in error.get("details", {}).items():
            if isinstance(value, list):
                print(f"{key}:")
                for item in value:
                    print(f"  - {escape(str(item))}")
    raise typer.Exit(code=1)


def _emit_envelope(ctx: typer.Context | None, envelope: dict[str, Any]) -> None:
    if envelope["ok"]:
        _emit(ctx, envelope)
    else:
        _emit_error(ctx, envelope)


def get_service() -> CourseworkService:
    return build_service()


@app.callback()
def main(
    ctx: typer.Context,
    json_mode: bool = typer.Option(False, "--json", help="Machine-readable JSON output."),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING..."),
) -> None:
    init_db()
    configure_logging(log_level)
    ctx.obj = AppContext(json_mode=json_mode)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    token: str = typer.Option(..., prompt=True, hide_input=True),
) -> None:
    envelope = get_service().lms_login(token)
    if envelope["ok"]:
        path = save_canvas_token(token)
        envelope["result"]["config_file"] = str(path)
        envelope["lines"].append(f"Token saved to {path}")
    _emit_envelope(ctx, envelope)


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    session_cookie, signed_token = get_gradescope_cookies()
    canvas_token = "configured" if get_canvas_token() else "not configured"
    gradescope = "configured" if session_cookie and signed_token else "not configured"
    log_action("auth status")
    _emit(
        ctx,
        {
            "ok": True,
            "command": "auth.status",
            "result": {
                "canvas_base_url": get_canvas_base_url(),
                "canvas_token": canvas_token,
                "gradescope_base_url": get_gradescope_base_url(),
                "gradescope_cookies": gradescope,
                "drafts_dir": str(get_drafts_dir()),
                "config_file": str(CONFIG_FILE),
            },
            "lines": [
                f"Canvas: {get_canvas_base_url()} (token {canvas_token})",
                f"Gradescope: {get_gradescope_base_url()} (cookies {gradescope})",
                f"Drafts: {get_drafts_dir()}",
            ],
        },
    )


@courses_app.command("list")
def courses_list(ctx: typer.Context) -> None:
    _emit_envelope(ctx, get_service().lms_list_courses())


@courses_app.command("assignments")
def courses_assignments(ctx: typer.Context, course_id: int) -> None:
    _emit_envelope(ctx, get_service().lms_list_assignments(course_id))


@assignment_app.command("show")
def assignment_show(ctx: typer.Context, course_id: int, assignment_id: int) -> None:
    _emit_envelope(ctx, get_service().lms_get_assignment(course_id, assignment_id))


@assignment_app.command("analyze")
def assignment_analyze(ctx: typer.Context, course_id: int, assignment_id: int) -> None:
    _emit_envelope(ctx, get_service().analyze_assignment(course_id, assignment_id))


@gradescope_app.command("courses")
def gradescope_courses(ctx: typer.Context) -> None:
    _emit_envelope(ctx, get_service().submission_list_courses())


@gradescope_app.command("assignments")
def gradescope_assignments(ctx: typer.Context, course_id: str) -> None:
    _emit_envelope(ctx, get_service().submission_list_assignments(course_id))


@gradescope_app.command("history")
def gradescope_history(ctx: typer.Context, course_id: str, assignment_id: str) -> None:
    _emit_envelope(ctx, get_service().submission_list_history(course_id, assignment_id))


@gradescope_app.command("upload")
def gradescope_upload(
    ctx: typer.Context,
    course_id: str,
    assignment_id: str,
    files: list[str] = typer.Argument(..., help="Files to submit."),
) -> None:
    """Submit files to a Gradescope assignment without a workflow session."""
    _emit_envelope(ctx, get_service().submission_upload(course_id, assignment_id, files))


@match_app.command("courses")
def match_courses(ctx: typer.Context) -> None:
    """Preview how Canvas courses would pair with Gradescope courses."""
    _emit_envelope(ctx, get_service().auto_match_courses())


@match_app.command("assignments")
def match_assignments(
    ctx: typer.Context,
    lms_course_id: int,
    submission_course_id: str = typer.Option(..., "--gradescope-course"),
) -> None:
    """Preview assignment pairing between one Canvas and one Gradescope course."""
    service = get_service()
    mapped = service.manual_map_course(lms_course_id, submission_course_id)
    if not mapped["ok"]:
        _emit_error(ctx, mapped)
    _emit_envelope(ctx, service.auto_match_assignments(lms_course_id))


@app.command("parse")
def parse_command(ctx: typer.Context, request: str) -> None:
    """Show how a request is split into course and assignment queries."""
    parsed = parse_request(request)
    log_action("parse", "ok" if parsed else "PARSE_ERROR", ok=parsed is not None)
    if parsed is None:
        _emit_error(
            ctx,
            {
                "ok": False,
                "command": "parse",
                "error": {"code": "PARSE_ERROR", "message": PARSE_ERROR_MESSAGE, "details": {}},
            },
        )

    course = parse_course_query(parsed.course_query)
    assignment = parse_assignment_query(parsed.assignment_query)
    _emit(
        ctx,
        {
            "ok": True,
            "command": "parse",
            "result": {
                "course_query": parsed.course_query,
                "assignment_query": parsed.assignment_query,
                "course_code": course.course_code,
                "course_terms": list(course.search_terms),
                "assignment_number": assignment.assignment_number,
                "assignment_terms": list(assignment.search_terms),
            },
            "lines": [
                f"Course query: {parsed.course_query}"
                + (f" (code {course.course_code})" if course.course_code else ""),
                f"Assignment query: {parsed.assignment_query}"
                + (
                    f" (number {assignment.assignment_number})"
                    if assignment.assignment_number is not None
                    else ""
                ),
            ],
        },
    )


@app.command("history")
def history_command(ctx: typer.Context, limit: int = typer.Option(20, min=1)) -> None:
    rows = recent_actions(limit)
    _emit(
        ctx,
        {
            "ok": True,
            "command": "history",
            "result": {"actions": rows},
            "lines": [
                f"- {r['ts']} {r['command']}" + ("" if r["ok"] else f" failed: {r['payload']}")
                for r in rows
            ]
            or ["No history yet."],
        },
    )


@app.command("serve")
def serve() -> None:
    """Run the MCP server over stdio."""
    from .mcp_server import main as run_server

    run_server()


if __name__ == "__main__":
    app()
