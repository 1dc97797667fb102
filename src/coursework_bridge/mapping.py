from __future__ import annotations

from collections.abc import Sequence

from .matcher import match_assignments, match_courses
from .models import (
    Assignment,
    AssignmentMapping,
    Course,
    CourseMapping,
    MatchResult,
    SubmissionAssignment,
    SubmissionCourse,
)


class MappingStore:
    """In-memory links between LMS courses/assignments and submission-service ones.

    Auto-matching replaces the whole set for its scope. Manual course mapping
    replaces only the mapping for that LMS course, so the last write wins.
    """

    def __init__(self) -> None:
        self._courses: list[CourseMapping] = []
        self._assignments: dict[int, list[AssignmentMapping]] = {}

    def auto_match_courses(
        self,
        lms_courses: Sequence[Course],
        submission_courses: Sequence[SubmissionCourse],
    ) -> MatchResult:
        result = match_courses(lms_courses, submission_courses)
        self._courses = list(result.matched)
        return result

    def manual_map_course(self, course: Course, target: SubmissionCourse) -> CourseMapping:
        self._courses = [m for m in self._courses if m.lms_course_id != course.id]
        mapping = CourseMapping(
            lms_course_id=course.id,
            lms_course_name=course.name,
            submission_course_id=target.id,
            submission_course_name=target.name,
        )
        self._courses.append(mapping)
        return mapping

    def exclude_course(self, lms_course_id: int) -> bool:
        return self._set_excluded(lms_course_id, True)

    def include_course(self, lms_course_id: int) -> bool:
        return self._set_excluded(lms_course_id, False)

    def _set_excluded(self, lms_course_id: int, excluded: bool) -> bool:
        mapping = self.get_mapping_for_lms_course(lms_course_id)
        if mapping is None:
            return False
        mapping.excluded = excluded
        return True

    def get_course_mappings(self) -> list[CourseMapping]:
        return list(self._courses)

    def get_active_course_mappings(self) -> list[CourseMapping]:
        return [m for m in self._courses if not m.excluded]

    def get_mapping_for_lms_course(self, lms_course_id: int) -> CourseMapping | None:
        return next((m for m in self._courses if m.lms_course_id == lms_course_id), None)

    def auto_match_assignments(
        self,
        lms_course_id: int,
        lms_assignments: Sequence[Assignment],
        submission_assignments: Sequence[SubmissionAssignment],
    ) -> MatchResult:
        result = match_assignments(lms_assignments, submission_assignments)
        self._assignments[lms_course_id] = list(result.matched)
        return result

    def get_assignment_mappings(self, lms_course_id: int) -> list[AssignmentMapping]:
        return list(self._assignments.get(lms_course_id, []))

    def has_assignment_mappings(self, lms_course_id: int) -> bool:
        return lms_course_id in self._assignments

    def get_submission_assignment_id(
        self,
        lms_course_id: int,
        lms_assignment_id: int,
    ) -> str | None:
        for mapping in self._assignments.get(lms_course_id, []):
            if mapping.lms_assignment_id == lms_assignment_id:
                return mapping.submission_assignment_id
        return None
