from __future__ import annotations

import re
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from .models import (
    Assignment,
    AssignmentMapping,
    Course,
    CourseMapping,
    MatchResult,
    SubmissionAssignment,
    SubmissionCourse,
)
from .similarity import similarity

COURSE_MATCH_THRESHOLD = 0.5
ASSIGNMENT_MATCH_THRESHOLD = 0.4

COURSE_QUERY_MIN_SCORE = 20
ASSIGNMENT_QUERY_MIN_SCORE = 25
MAX_CONFIDENCE = 100

ASSIGNMENT_PREFIXES = ("hw", "homework", "lab", "project", "assignment")

PARSE_ERROR_MESSAGE = (
    "Could not understand the request. Try one of these formats: "
    "'hw 17 from cs 170', 'complete lab 3 for eecs 16a', 'cs170 homework 5'."
)

_COURSE_CODE_QUERY = re.compile(r"^([a-z]+)\s*(\d+[a-z]?)$", re.IGNORECASE)
_COURSE_CODE_IN_NAME = re.compile(r"([a-z]+)\s*(\d+[a-z]?)", re.IGNORECASE)
_PREFIXED_NUMBER = re.compile(
    r"^(hw|homework|lab|project|assignment|ps|pset|problem\s*set)\s*#?(\d+)$",
    re.IGNORECASE,
)
_BARE_NUMBER = re.compile(r"^(\d+)$")
_REQUEST_WITH_PREPOSITION = re.compile(r"^(.+?)\s+(?:from|for|in)\s+(.+)$", re.IGNORECASE)
_REQUEST_CODE_FIRST = re.compile(r"^([a-z]+\s*\d+[a-z]?)\s+(.+)$", re.IGNORECASE)
_LEADING_COMPLETE = re.compile(r"^complete\s+", re.IGNORECASE)

S = TypeVar("S")
T = TypeVar("T")
R = TypeVar("R")


def greedy_match(
    sources: Sequence[S],
    targets: Sequence[T],
    *,
    score: Callable[[S, T], float],
    target_key: Callable[[T], Hashable],
    threshold: float,
    build: Callable[[S, T], R],
) -> MatchResult:
    """Pair each source with its best unused target, in source order.

    A target claimed by an earlier source is never offered to a later one,
    even if the later pairing would score higher. Ties keep the first target
    seen. Sources whose best score stays below ``threshold`` are returned as
    unmatched.
    """
    result = MatchResult()
    used: set[Hashable] = set()

    for source in sources:
        best: T | None = None
        best_score = 0.0
        for target in targets:
            if target_key(target) in used:
                continue
            value = score(source, target)
            if value > best_score and value >= threshold:
                best_score = value
                best = target

        if best is None:
            result.unmatched.append(source)
            continue
        used.add(target_key(best))
        result.matched.append(build(source, best))

    return result


def course_pair_score(course: Course, candidate: SubmissionCourse) -> float:
    # Two missing codes compare equal, so such a pair always clears the threshold.
    return max(
        similarity(course.name, candidate.name),
        similarity(course.course_code, candidate.short_name),
    )


def match_courses(
    courses: Sequence[Course],
    candidates: Sequence[SubmissionCourse],
) -> MatchResult:
    return greedy_match(
        courses,
        candidates,
        score=course_pair_score,
        target_key=lambda c: c.id,
        threshold=COURSE_MATCH_THRESHOLD,
        build=lambda course, candidate: CourseMapping(
            lms_course_id=course.id,
            lms_course_name=course.name,
            submission_course_id=candidate.id,
            submission_course_name=candidate.name,
        ),
    )


def match_assignments(
    assignments: Sequence[Assignment],
    candidates: Sequence[SubmissionAssignment],
) -> MatchResult:
    return greedy_match(
        assignments,
        candidates,
        score=lambda a, c: similarity(a.name, c.name),
        target_key=lambda c: c.id,
        threshold=ASSIGNMENT_MATCH_THRESHOLD,
        build=lambda assignment, candidate: AssignmentMapping(
            lms_assignment_id=assignment.id,
            lms_assignment_name=assignment.name,
            submission_assignment_id=candidate.id,
            submission_assignment_name=candidate.name,
        ),
    )


@dataclass(frozen=True)
class CourseQuery:
    course_code: str | None = None
    course_name: str | None = None
    search_terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class AssignmentQuery:
    assignment_number: int | None = None
    assignment_name: str | None = None
    search_terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class RequestQuery:
    assignment_query: str
    course_query: str


ItemT = TypeVar("ItemT")


@dataclass(frozen=True)
class Resolution(Generic[ItemT]):
    item: ItemT
    confidence: int


def _free_text_terms(normalized: str) -> tuple[str, ...]:
    return tuple(t for t in normalized.split() if len(t) > 1)


def parse_course_query(query: str) -> CourseQuery:
    normalized = query.lower().strip()
    match = _COURSE_CODE_QUERY.match(normalized)
    if match:
        dept, number = match.group(1), match.group(2)
        return CourseQuery(
            course_code=f"{dept.upper()} {number.upper()}",
            search_terms=(dept, number, f"{dept}{number}"),
        )
    return CourseQuery(course_name=query, search_terms=_free_text_terms(normalized))


def parse_assignment_query(query: str) -> AssignmentQuery:
    # The number itself is scored by the whole-word rule, so only the
    # prefix is kept as a search term for structured queries.
    normalized = query.lower().strip()
    match = _PREFIXED_NUMBER.match(normalized)
    if match:
        prefix = re.sub(r"\s+", " ", match.group(1))
        return AssignmentQuery(assignment_number=int(match.group(2)), search_terms=(prefix,))
    match = _BARE_NUMBER.match(normalized)
    if match:
        return AssignmentQuery(assignment_number=int(match.group(1)))
    return AssignmentQuery(assignment_name=query, search_terms=_free_text_terms(normalized))


def score_course(course: Course, parsed: CourseQuery) -> int:
    name = course.name.lower()
    code = course.course_code.lower()
    score = 0

    if parsed.course_code:
        wanted = parsed.course_code.lower()
        if wanted in code:
            score = 100
        elif wanted in name:
            score = 90

    for term in parsed.search_terms:
        if term in code:
            score += 30
        if term in name:
            score += 20

    embedded = _COURSE_CODE_IN_NAME.search(name)
    if embedded and any(
        term in embedded.group(1) or term in embedded.group(2) for term in parsed.search_terms
    ):
        score += 40

    return score


def score_assignment(assignment: Assignment, parsed: AssignmentQuery) -> int:
    name = assignment.name.lower()
    score = 0

    number = parsed.assignment_number
    if number is not None:
        if re.search(rf"\b{number}\b", assignment.name):
            score += 60
        padded = f"{number:02d}"
        if padded != str(number) and padded in assignment.name:
            score += 50

    for term in parsed.search_terms:
        if term in name:
            score += 25

    for prefix in ASSIGNMENT_PREFIXES:
        if name.startswith(prefix) and prefix in parsed.search_terms:
            score += 20

    return score


def _best(
    items: Sequence[ItemT],
    score: Callable[[ItemT], int],
    minimum: int,
) -> Resolution[ItemT] | None:
    best: ItemT | None = None
    best_score = 0
    for item in items:
        value = score(item)
        if value > best_score:
            best_score = value
            best = item
    if best is None or best_score < minimum:
        return None
    return Resolution(item=best, confidence=min(best_score, MAX_CONFIDENCE))


def find_course(courses: Sequence[Course], query: str) -> Resolution[Course] | None:
    parsed = parse_course_query(query)
    return _best(courses, lambda c: score_course(c, parsed), COURSE_QUERY_MIN_SCORE)


def find_assignment(
    assignments: Sequence[Assignment],
    query: str,
) -> Resolution[Assignment] | None:
    parsed = parse_assignment_query(query)
    return _best(assignments, lambda a: score_assignment(a, parsed), ASSIGNMENT_QUERY_MIN_SCORE)


def parse_request(request: str) -> RequestQuery | None:
    """Split a request into assignment and course phrases.

    Only two shapes are understood: ``<assignment> from|for|in <course>``
    and ``<course code> <assignment>``. Anything else returns None.
    """
    text = request.strip()

    match = _REQUEST_WITH_PREPOSITION.match(text)
    if match:
        assignment = _LEADING_COMPLETE.sub("", match.group(1).strip())
        return RequestQuery(
            assignment_query=assignment.strip(),
            course_query=match.group(2).strip(),
        )

    match = _REQUEST_CODE_FIRST.match(text)
    if match:
        return RequestQuery(
            assignment_query=match.group(2).strip(),
            course_query=match.group(1).strip(),
        )

    return None
