from __future__ import annotations

from pathlib import Path

import pytest

from conftest import CS170, HW17, FakeLms, FakeSubmission
from coursework_bridge.canvas_client import CanvasClientError
from coursework_bridge.gradescope_client import UploadResult
from coursework_bridge.models import SubmissionRecord
from coursework_bridge.service import TOOL_NAMES, CourseworkService, ToolError

SOLUTION = "def solve(graph):\n    return sorted(graph)\n"


def _started(service: CourseworkService, request: str = "hw 17 from cs 170") -> str:
    envelope = service.start_assignment(request)
    assert envelope["ok"] is True, envelope
    return envelope["result"]["session_id"]


def _reviewed(service: CourseworkService) -> str:
    session_id = _started(service)
    assert service.save_and_review(session_id, SOLUTION)["ok"] is True
    return session_id


def test_tool_names_cover_workflow_surface() -> None:
    for name in (
        "lms_login",
        "auto_match_courses",
        "start_assignment",
        "save_and_review",
        "approve_draft",
        "submit_assignment",
        "get_workflow_documentation",
    ):
        assert name in TOOL_NAMES


def test_unknown_error_code_becomes_internal() -> None:
    assert ToolError("SOMETHING_ELSE", "x").code == "INTERNAL_ERROR"


def test_lms_login_bad_token_is_not_authenticated(service: CourseworkService) -> None:
    envelope = service.lms_login("nope")
    assert envelope["ok"] is False
    assert envelope["command"] == "lms_login"
    assert envelope["error"]["code"] == "NOT_AUTHENTICATED"
    assert envelope["error"]["message"].startswith("Canvas error:")
    assert envelope["error"]["details"]["status_code"] == 401


def test_lms_login_success(service: CourseworkService) -> None:
    envelope = service.lms_login("good-token")
    assert envelope["ok"] is True
    assert envelope["result"]["user"]["name"] == "Oski Bear"


def test_submission_logins(service: CourseworkService) -> None:
    assert service.submission_login("oski@berkeley.edu", "secret")["ok"] is True
    assert service.submission_login("oski@berkeley.edu", "wrong")["error"]["code"] == (
        "NOT_AUTHENTICATED"
    )
    good = service.submission_login_with_cookies("_gradescope_session=a; signed_token=b")
    assert good["ok"] is True
    bad = service.submission_login_with_cookies("_gradescope_session=a")
    assert bad["error"]["code"] == "NOT_AUTHENTICATED"


def test_missing_assignment_maps_to_not_found(service: CourseworkService) -> None:
    envelope = service.lms_get_assignment(101, 1)
    assert envelope["error"]["code"] == "NOT_FOUND"


def test_assignment_lines_are_plain_text(service: CourseworkService) -> None:
    lines = service.lms_get_assignment(101, 9017)["lines"]
    assert lines[0] == "Homework 17"
    assert not any("[/" in line for line in lines)


def test_unexpected_exception_becomes_internal_error(submission: FakeSubmission) -> None:
    class BrokenLms(FakeLms):
        def list_courses(self):
            raise ValueError("boom")

    service = CourseworkService(BrokenLms(), submission, action_log=None)
    envelope = service.lms_list_courses()
    assert envelope["error"]["code"] == "INTERNAL_ERROR"
    assert envelope["error"]["message"] == "boom"


def test_unexpected_exception_fails_the_session(submission: FakeSubmission) -> None:
    class BrokenLms(FakeLms):
        def list_courses(self):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

    service = CourseworkService(BrokenLms(), submission, action_log=None)
    envelope = service.start_assignment("hw 17 from cs 170")
    assert envelope["error"]["code"] == "INTERNAL_ERROR"
    assert "Expecting value" in envelope["error"]["message"]

    session_id = envelope["error"]["details"]["session_id"]
    session = service.get_workflow_status(session_id)["result"]["session"]
    assert session["status"] == "failed"
    last = session["logs"][-1]
    assert (last["action"], last["success"]) == ("error", False)


def test_upstream_client_error_fails_the_session(submission: FakeSubmission) -> None:
    class HtmlLms(FakeLms):
        def list_courses(self):
            raise CanvasClientError(
                "invalid JSON from courses", status_code=200, error_type="request"
            )

    service = CourseworkService(HtmlLms(), submission, action_log=None)
    envelope = service.start_assignment("hw 17 from cs 170")
    assert envelope["error"]["code"] == "UPSTREAM_ERROR"
    session_id = envelope["error"]["details"]["session_id"]
    assert service.get_workflow_status(session_id)["result"]["session"]["status"] == "failed"


def test_every_call_is_recorded(lms: FakeLms, submission: FakeSubmission) -> None:
    calls = []
    service = CourseworkService(
        lms,
        submission,
        action_log=lambda command, payload, ok: calls.append((command, payload, ok)),
    )
    service.lms_list_courses()
    service.lms_login("nope")
    assert calls == [
        ("tool lms_list_courses", "", True),
        ("tool lms_login", "NOT_AUTHENTICATED", False),
    ]


def test_listings(service: CourseworkService) -> None:
    courses = service.lms_list_courses()
    assert [c["id"] for c in courses["result"]["courses"]] == [101, 102]
    assert courses["lines"][0] == "- 101: CS 170: Efficient Algorithms (CS 170)"

    assignments = service.lms_list_assignments(102)
    assert assignments["result"]["assignments"] == []
    assert assignments["lines"] == ["No assignments found."]

    gs = service.submission_list_courses()
    assert gs["result"]["student"][0]["id"] == "555"
    assert "Student courses:" in gs["lines"]


def test_course_mapping_tools(service: CourseworkService) -> None:
    matched = service.auto_match_courses()
    assert matched["ok"] is True
    assert [m["lms_course_id"] for m in matched["result"]["matched"]] == [101]
    assert [c["id"] for c in matched["result"]["unmatched"]] == [102]

    manual = service.manual_map_course(102, "555")
    assert manual["result"]["mapping"]["submission_course_id"] == "555"
    assert service.manual_map_course(102, "999")["error"]["code"] == "NOT_FOUND"
    assert service.manual_map_course(404, "555")["error"]["code"] == "NOT_FOUND"

    assert service.exclude_course(101)["result"]["excluded"] is True
    mappings = service.get_course_mappings()["result"]["mappings"]
    assert {m["lms_course_id"]: m["excluded"] for m in mappings} == {101: True, 102: False}
    assert service.include_course(101)["result"]["excluded"] is False
    assert service.include_course(303)["error"]["code"] == "NOT_FOUND"


def test_assignment_mapping_requires_course_mapping(service: CourseworkService) -> None:
    assert service.auto_match_assignments(101)["error"]["code"] == "NOT_FOUND"
    service.auto_match_courses()
    result = service.auto_match_assignments(101)["result"]
    assert [(m["lms_assignment_id"], m["submission_assignment_id"]) for m in result["matched"]] == [
        (9017, "777")
    ]
    stored = service.get_assignment_mappings(101)["result"]["mappings"]
    assert stored[0]["submission_assignment_name"] == "Homework 17"


def test_analyze_assignment(service: CourseworkService) -> None:
    envelope = service.analyze_assignment(101, 9017)
    assert envelope["result"]["analysis"]["type"] == "homework"
    assert envelope["result"]["analysis"]["automatable"] is True
    assert "Type: homework" in envelope["lines"]


def test_start_assignment_resolves_and_prepares(service: CourseworkService) -> None:
    envelope = service.start_assignment("hw 17 from cs 170")
    result = envelope["result"]
    assert result["status"] == "in_progress"
    assert result["course"]["id"] == CS170.id
    assert result["course_confidence"] == 100
    assert result["assignment"]["id"] == HW17.id
    assert result["assignment_confidence"] == 60
    assert result["solution_context"]["format"] == "code"
    assert result["prompt"].startswith("# Assignment Solution Request")
    assert envelope["lines"][-1].endswith(f"session_id={result['session_id']}.")


def test_start_assignment_parse_error_fails_session(service: CourseworkService) -> None:
    envelope = service.start_assignment("please do my homework")
    assert envelope["error"]["code"] == "PARSE_ERROR"
    session_id = envelope["error"]["details"]["session_id"]
    status = service.get_workflow_status(session_id)["result"]["session"]
    assert status["status"] == "failed"
    assert status["logs"][-1]["action"] == "error"


def test_start_assignment_unknown_course(service: CourseworkService) -> None:
    envelope = service.start_assignment("hw 1 from underwater basket weaving")
    assert envelope["error"]["code"] == "LOW_CONFIDENCE"
    available = envelope["error"]["details"]["available_courses"]
    assert "CS 170: Efficient Algorithms (CS 170)" in available


def test_start_assignment_unknown_assignment(service: CourseworkService) -> None:
    envelope = service.start_assignment("essay 9 from cs 170")
    assert envelope["error"]["code"] == "LOW_CONFIDENCE"
    assert envelope["error"]["details"]["available_assignments"] == [
        "Homework 17",
        "Midterm Exam 1",
    ]
    session = service.get_workflow_status(envelope["error"]["details"]["session_id"])
    assert session["result"]["session"]["lms_course"]["id"] == 101


def test_start_assignment_not_automatable(service: CourseworkService) -> None:
    envelope = service.start_assignment("midterm exam 1 from cs 170")
    assert envelope["error"]["code"] == "NOT_AUTOMATABLE"
    assert envelope["error"]["details"]["type"] == "quiz"
    assert "real-time responses" in envelope["error"]["message"]


def test_save_and_review(service: CourseworkService) -> None:
    session_id = _started(service)
    envelope = service.save_and_review(session_id, SOLUTION)
    result = envelope["result"]
    assert result["status"] == "awaiting_review"
    assert result["draft"]["status"] == "ready_for_review"
    assert result["draft"]["id"] == "101-9017"
    assert result["review"].startswith("# Draft Review: Homework 17")
    assert service.drafts.get_draft(101, 9017).content == SOLUTION


def test_save_and_review_rejections(service: CourseworkService) -> None:
    assert service.save_and_review("wf-0-0", SOLUTION)["error"]["code"] == "NOT_FOUND"
    session_id = _started(service)
    assert service.save_and_review(session_id, "   ")["error"]["code"] == "VALIDATION_ERROR"

    failed = service.start_assignment("please do my homework")
    failed_id = failed["error"]["details"]["session_id"]
    assert service.save_and_review(failed_id, SOLUTION)["error"]["code"] == "INVALID_STATE"


def test_approve_requires_awaiting_review(service: CourseworkService) -> None:
    session_id = _started(service)
    assert service.approve_draft(session_id)["error"]["code"] == "INVALID_STATE"
    service.save_and_review(session_id, SOLUTION)
    envelope = service.approve_draft(session_id, "Ship it")
    assert envelope["result"]["status"] == "approved"
    assert service.drafts.get_draft(101, 9017).feedback == "Ship it"


def test_submit_full_flow(
    service: CourseworkService, submission: FakeSubmission, tmp_path: Path
) -> None:
    service.auto_match_courses()
    session_id = _reviewed(service)

    envelope = service.submit_assignment(session_id)
    result = envelope["result"]
    assert result["status"] == "submitted"
    assert result["submission_url"].endswith("/submissions/1")

    path = Path(result["file_path"])
    assert path.parent == tmp_path / "drafts"
    assert path.read_text() == SOLUTION
    assert submission.uploads == [("555", "777", [str(path)])]
    assert service.drafts.get_draft(101, 9017).status.value == "submitted"

    session = service.get_workflow_status(session_id)["result"]["session"]
    actions = [entry["action"] for entry in session["logs"]]
    assert "approve_draft" in actions
    assert actions[-1] == "submit_assignment"
    assert session["completed_at"] is not None

    doc = service.get_workflow_documentation(session_id)["result"]["documentation"]
    assert "Final Status: SUBMITTED" in doc
    assert "Submission URL: https://www.gradescope.com/courses/555" in doc

    again = service.submit_assignment(session_id)
    assert again["error"]["code"] == "INVALID_STATE"


def test_submit_with_explicit_file(
    service: CourseworkService, submission: FakeSubmission, tmp_path: Path
) -> None:
    service.auto_match_courses()
    session_id = _reviewed(service)
    pdf = tmp_path / "hw17.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    envelope = service.submit_assignment(session_id, str(pdf))
    assert envelope["result"]["file_path"] == str(pdf)
    assert submission.uploads[0][2] == [str(pdf)]
    assert not (tmp_path / "drafts").exists()


def test_submit_without_course_mapping_fails_session(service: CourseworkService) -> None:
    session_id = _reviewed(service)
    envelope = service.submit_assignment(session_id)
    assert envelope["error"]["code"] == "NOT_FOUND"
    assert envelope["error"]["details"]["session_id"] == session_id
    assert service.get_workflow_status(session_id)["result"]["session"]["status"] == "failed"


def test_submit_to_excluded_course(service: CourseworkService) -> None:
    service.auto_match_courses()
    service.exclude_course(101)
    session_id = _reviewed(service)
    envelope = service.submit_assignment(session_id)
    assert envelope["error"]["code"] == "VALIDATION_ERROR"
    assert "include_course" in envelope["error"]["message"]


def test_submit_upload_failure_keeps_draft_file(
    lms: FakeLms, tmp_path: Path
) -> None:
    submission = FakeSubmission(upload=UploadResult(success=False, error="Upload did not complete"))
    service = CourseworkService(lms, submission, drafts_dir=tmp_path, action_log=None)
    service.auto_match_courses()
    session_id = _reviewed(service)

    envelope = service.submit_assignment(session_id)
    assert envelope["error"]["code"] == "UPLOAD_FAILED"
    file_path = envelope["error"]["details"]["file_path"]
    assert Path(file_path).exists()
    assert file_path in envelope["error"]["message"]

    session = service.get_workflow_status(session_id)["result"]["session"]
    assert session["status"] == "failed"
    assert session["draft_path"] == file_path


def test_submit_before_review_is_invalid(service: CourseworkService) -> None:
    session_id = _started(service)
    assert service.submit_assignment(session_id)["error"]["code"] == "INVALID_STATE"


def test_list_workflows(service: CourseworkService) -> None:
    active_id = _started(service)
    service.start_assignment("please do my homework")

    everything = service.list_workflows()["result"]["sessions"]
    assert len(everything) == 2
    active = service.list_workflows(active_only=True)["result"]["sessions"]
    assert [s["id"] for s in active] == [active_id]


def test_workflow_status_unknown_session(service: CourseworkService) -> None:
    assert service.get_workflow_status("wf-1-1")["error"]["code"] == "NOT_FOUND"
    assert service.get_workflow_documentation("wf-1-1")["error"]["code"] == "NOT_FOUND"


@pytest.mark.parametrize("request_text", ["cs170 homework 17", "complete hw 17 for cs 170"])
def test_request_shapes_resolve_same_assignment(service: CourseworkService, request_text) -> None:
    result = service.start_assignment(request_text)["result"]
    assert result["assignment"]["id"] == HW17.id


def test_submission_history(service: CourseworkService, submission: FakeSubmission) -> None:
    assert service.submission_list_history("555", "777")["lines"] == ["No submissions yet."]
    submission.history[("555", "777")] = [
        SubmissionRecord(id="2", submitted_at="2026-10-02", score="9.0 / 10.0", is_latest=True),
        SubmissionRecord(id="1", submitted_at="2026-10-01", status="Graded"),
    ]
    envelope = service.submission_list_history("555", "777")
    assert [s["id"] for s in envelope["result"]["submissions"]] == ["2", "1"]
    assert envelope["lines"][0] == "- 2: 2026-10-02 Submitted 9.0 / 10.0 (latest)"


def test_direct_upload_after_failed_submit(lms: FakeLms, tmp_path: Path) -> None:
    submission = FakeSubmission(upload=UploadResult(success=False, error="Upload did not complete"))
    service = CourseworkService(lms, submission, drafts_dir=tmp_path, action_log=None)
    service.auto_match_courses()
    session_id = _reviewed(service)
    failed = service.submit_assignment(session_id)
    file_path = failed["error"]["details"]["file_path"]

    submission.upload = UploadResult(success=True, url="https://gs.test/submissions/2")
    envelope = service.submission_upload("555", "777", [file_path])
    assert envelope["ok"] is True
    assert envelope["result"] == {
        "course_id": "555",
        "assignment_id": "777",
        "success": True,
        "url": "https://gs.test/submissions/2",
        "error": None,
    }
    assert envelope["lines"][-1] == "Submission: https://gs.test/submissions/2"
    assert submission.uploads[-1] == ("555", "777", [file_path])


def test_direct_upload_failures(submission: FakeSubmission, service: CourseworkService) -> None:
    assert service.submission_upload("555", "777", [])["error"]["code"] == "VALIDATION_ERROR"
    assert submission.uploads == []

    submission.upload = UploadResult(success=False, error="File not found: /tmp/nope.pdf")
    envelope = service.submission_upload("555", "777", ["/tmp/nope.pdf"])
    assert envelope["error"]["code"] == "UPLOAD_FAILED"
    assert envelope["error"]["message"] == "File not found: /tmp/nope.pdf"
    assert envelope["error"]["details"] == {"file_paths": ["/tmp/nope.pdf"]}
