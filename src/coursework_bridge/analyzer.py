"""Assignment classification and automatability policy.

``analyze`` is a pure function of an LMS assignment record: it strips the
description markup, pulls requirements out of the text, picks an
:class:`AssignmentType` from ordered rule tables and then decides whether the
assignment can be completed without a human in the room.

The rule tables are plain data. Each table is evaluated top to bottom and the
first matching rule wins, so the order of entries is the policy.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from bs4 import BeautifulSoup

from .models import Assignment, AssignmentType

SUBMISSION_PLATFORM = "Gradescope"

# Order matters: the first keyword found in the description names the tool.
EXTERNAL_TOOLS = (
    ("gradescope", "Gradescope"),
    ("piazza", "Piazza"),
    ("prairielearn", "PrairieLearn"),
    ("zybooks", "zyBooks"),
)

WORD_COUNT_PATTERNS = (
    re.compile(r"(\d+)[\s-]*word", re.IGNORECASE),
    re.compile(r"word\s*count[:\s]*(\d+)", re.IGNORECASE),
    re.compile(r"minimum[:\s]*(\d+)\s*words", re.IGNORECASE),
    re.compile(r"at\s*least\s*(\d+)\s*words", re.IGNORECASE),
)
PAGE_COUNT_PATTERN = re.compile(r"(\d+)[\s-]*page", re.IGNORECASE)

CITATION_PATTERNS = (
    re.compile(r"cite", re.IGNORECASE),
    re.compile(r"citation", re.IGNORECASE),
    re.compile(r"bibliography", re.IGNORECASE),
    re.compile(r"references", re.IGNORECASE),
    re.compile(r"works cited", re.IGNORECASE),
    re.compile(r"MLA"),
    re.compile(r"APA"),
    re.compile(r"Chicago"),
)
CITATION_STYLES = ("MLA", "APA", "Chicago")

LIST_ITEM_PATTERN = re.compile(r"^\s*(?:\d+\.|\*|-)\s*(.+)$")
RUBRIC_ITEM_MIN_LENGTH = 10
RUBRIC_ITEM_MAX_LENGTH = 200

KEY_PHRASE_PATTERNS = (
    re.compile(
        r"should\s+(?:have|include|contain|address|discuss|analyze)\s+([^.]+)", re.IGNORECASE
    ),
    re.compile(
        r"must\s+(?:have|include|contain|address|discuss|analyze)\s+([^.]+)", re.IGNORECASE
    ),
    re.compile(r"(?:ensure|make sure)\s+(?:that\s+)?([^.]+)", re.IGNORECASE),
    re.compile(r"(?:focus on|write about|discuss|analyze)\s+([^.]+)", re.IGNORECASE),
)
KEY_PHRASE_MIN_LENGTH = 5
KEY_PHRASE_MAX_LENGTH = 150

_BLOCK_TAGS = ("p", "div", "br", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre")


@dataclass(frozen=True)
class CountRange:
    min: int | None = None
    max: int | None = None


@dataclass(frozen=True)
class ResourceLink:
    text: str
    url: str


@dataclass
class Requirements:
    word_count: CountRange | None = None
    page_count: CountRange | None = None
    topics: list[str] = field(default_factory=list)
    citations: bool = False
    citation_style: str | None = None
    rubric_items: list[str] = field(default_factory=list)
    resources: list[ResourceLink] = field(default_factory=list)
    key_phrases: list[str] = field(default_factory=list)


@dataclass
class SubmissionInfo:
    types: list[str]
    due_date: str | None
    points_possible: float
    is_external_tool: bool = False
    external_tool_name: str | None = None


@dataclass
class AnalyzedAssignment:
    id: int
    name: str
    course_id: int
    type: AssignmentType
    automatable: bool
    automatable_reason: str
    requirements: Requirements
    submission: SubmissionInfo
    raw_description: str
    clean_description: str

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["type"] = self.type.value
        return out


@dataclass(frozen=True)
class _Signals:
    name: str
    description: str
    types: tuple[str, ...]


@dataclass(frozen=True)
class TypeRule:
    label: str
    applies: Callable[[_Signals], bool]
    result: AssignmentType


def _name(pattern: str) -> Callable[[_Signals], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda s: bool(compiled.search(s.name))


def _desc(pattern: str) -> Callable[[_Signals], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda s: bool(compiled.search(s.description))


def _tag(tag: str) -> Callable[[_Signals], bool]:
    return lambda s: tag in s.types


_GROUP = re.compile(r"group|team", re.IGNORECASE)

SUBMISSION_TAG_RULES: tuple[TypeRule, ...] = (
    TypeRule("quiz tag", _tag("online_quiz"), AssignmentType.QUIZ),
    TypeRule("discussion tag", _tag("discussion_topic"), AssignmentType.DISCUSSION),
    TypeRule(
        "external tool on submission platform",
        lambda s: "external_tool" in s.types and "gradescope" in s.description,
        AssignmentType.HOMEWORK,
    ),
)

NAME_RULES: tuple[TypeRule, ...] = (
    TypeRule("quiz or exam", _name(r"quiz|exam|test|midterm|final"), AssignmentType.QUIZ),
    TypeRule("lab", _name(r"lab\s*\d|laboratory"), AssignmentType.LAB),
    TypeRule("homework", _name(r"homework|hw\s*\d|problem\s*set|pset"), AssignmentType.HOMEWORK),
    TypeRule(
        "group project",
        lambda s: bool(re.search("project", s.name, re.IGNORECASE))
        and bool(_GROUP.search(s.name) or _GROUP.search(s.description)),
        AssignmentType.GROUP_PROJECT,
    ),
    TypeRule("solo project", _name(r"project"), AssignmentType.HOMEWORK),
    TypeRule("presentation", _name(r"presentation"), AssignmentType.PRESENTATION),
    TypeRule("discussion", _name(r"discussion"), AssignmentType.DISCUSSION),
    TypeRule("attendance", _name(r"attendance|participation"), AssignmentType.ATTENDANCE),
    TypeRule("reflection", _name(r"reflection"), AssignmentType.REFLECTION),
    TypeRule("essay", _name(r"essay|paper|writing"), AssignmentType.ESSAY),
)

DESCRIPTION_RULES: tuple[TypeRule, ...] = (
    TypeRule(
        "reflection paper",
        _desc(r"reflection\s*paper|write\s*a\s*reflection"),
        AssignmentType.REFLECTION,
    ),
    TypeRule("essay", _desc(r"essay|write\s*a\s*paper|\d+[\s-]*word"), AssignmentType.ESSAY),
    TypeRule(
        "implementation",
        _desc(r"implement|code|program|function|class|method|algorithm"),
        AssignmentType.CODE,
    ),
    TypeRule(
        "group project",
        _desc(r"group\s*project|team\s*project|work\s*together"),
        AssignmentType.GROUP_PROJECT,
    ),
    TypeRule("presentation", _desc(r"present|presentation|slides"), AssignmentType.PRESENTATION),
)

TYPE_RULES: tuple[TypeRule, ...] = SUBMISSION_TAG_RULES + NAME_RULES + DESCRIPTION_RULES


@dataclass(frozen=True)
class AutomatabilityRule:
    applies: Callable[[AssignmentType, SubmissionInfo], bool]
    automatable: bool
    reason: Callable[[SubmissionInfo], str]


def _types(*kinds: AssignmentType) -> Callable[[AssignmentType, SubmissionInfo], bool]:
    return lambda kind, _: kind in kinds


def _submits(*tags: str) -> Callable[[AssignmentType, SubmissionInfo], bool]:
    return lambda _, sub: any(tag in sub.types for tag in tags)


def _fixed(reason: str) -> Callable[[SubmissionInfo], str]:
    return lambda _: reason


def _on_platform(kind: AssignmentType, sub: SubmissionInfo) -> bool:
    return sub.is_external_tool and sub.external_tool_name == SUBMISSION_PLATFORM


def _off_platform(kind: AssignmentType, sub: SubmissionInfo) -> bool:
    return sub.is_external_tool


AUTOMATABILITY_RULES: tuple[AutomatabilityRule, ...] = (
    AutomatabilityRule(
        _types(AssignmentType.QUIZ, AssignmentType.EXAM),
        False,
        _fixed("Quizzes and exams require real-time responses"),
    ),
    AutomatabilityRule(
        _types(AssignmentType.ATTENDANCE), False, _fixed("Attendance requires physical presence")
    ),
    AutomatabilityRule(
        _types(AssignmentType.PRESENTATION), False, _fixed("Presentations require human delivery")
    ),
    AutomatabilityRule(
        _types(AssignmentType.GROUP_PROJECT),
        False,
        _fixed("Group projects require coordination with team members"),
    ),
    AutomatabilityRule(
        _types(AssignmentType.DISCUSSION),
        False,
        _fixed("Discussions require interactive participation"),
    ),
    AutomatabilityRule(_submits("none"), False, _fixed("No submission required")),
    AutomatabilityRule(_submits("on_paper"), False, _fixed("Requires physical paper submission")),
    AutomatabilityRule(
        _on_platform, True, _fixed(f"Can submit to {SUBMISSION_PLATFORM} via API")
    ),
    AutomatabilityRule(
        _off_platform,
        False,
        lambda sub: f"External tool ({sub.external_tool_name or 'unknown'}) not supported",
    ),
    AutomatabilityRule(
        _types(AssignmentType.ESSAY, AssignmentType.REFLECTION),
        True,
        _fixed("Written assignments can be generated"),
    ),
    AutomatabilityRule(
        _types(AssignmentType.CODE, AssignmentType.HOMEWORK, AssignmentType.LAB),
        True,
        _fixed("Code/homework assignments can be completed"),
    ),
    AutomatabilityRule(
        _submits("online_upload", "online_text_entry"), True, _fixed("Supports online submission")
    ),
)
DEFAULT_AUTOMATABILITY = (False, "Unknown submission requirements")


def _soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "link"]):
        tag.decompose()
    return soup


def clean_html(html: str | None) -> str:
    if not html:
        return ""
    text = _soup(html).get_text()
    return re.sub(r"\s+", " ", text).strip()


def text_lines(html: str | None) -> list[str]:
    """Render markup as text with one line per block element.

    List items are rendered with a leading ``- `` so they read as list lines.
    """
    if not html:
        return []
    soup = _soup(html)
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
    for tag in soup.find_all("li"):
        tag.insert_before("\n- ")
    lines = []
    for raw in soup.get_text().splitlines():
        line = re.sub(r"[ \t\r\f\v]+", " ", raw).strip()
        if line:
            lines.append(line)
    return lines


def extract_word_count(text: str) -> CountRange | None:
    for pattern in WORD_COUNT_PATTERNS:
        match = pattern.search(text)
        if match:
            return CountRange(min=int(match.group(1)))
    return None


def extract_citations(text: str) -> tuple[bool, str | None]:
    if not any(pattern.search(text) for pattern in CITATION_PATTERNS):
        return False, None
    style = next((s for s in CITATION_STYLES if s in text), None)
    return True, style


def extract_resources(html: str | None) -> list[ResourceLink]:
    if not html:
        return []
    resources = []
    for anchor in BeautifulSoup(html, "html.parser").find_all("a"):
        href = anchor.get("href")
        text = anchor.get_text().strip()
        if href and text and not href.startswith("javascript:"):
            resources.append(ResourceLink(text=text, url=href))
    return resources


def extract_rubric_items(lines: list[str]) -> list[str]:
    items = []
    for line in lines:
        match = LIST_ITEM_PATTERN.match(line)
        if not match:
            continue
        body = match.group(1).strip()
        if RUBRIC_ITEM_MIN_LENGTH < len(body) < RUBRIC_ITEM_MAX_LENGTH:
            items.append(body)
    return items


def extract_key_phrases(text: str) -> list[str]:
    phrases = []
    for pattern in KEY_PHRASE_PATTERNS:
        for match in pattern.finditer(text):
            phrase = match.group(1).strip()
            if KEY_PHRASE_MIN_LENGTH < len(phrase) < KEY_PHRASE_MAX_LENGTH:
                phrases.append(phrase)
    return phrases


def extract_requirements(html: str | None, clean_text: str) -> Requirements:
    requirements = Requirements(word_count=extract_word_count(clean_text))

    page_match = PAGE_COUNT_PATTERN.search(clean_text)
    if page_match:
        requirements.page_count = CountRange(min=int(page_match.group(1)))

    requirements.citations, requirements.citation_style = extract_citations(clean_text)
    requirements.resources = extract_resources(html)
    requirements.rubric_items = extract_rubric_items(text_lines(html))
    requirements.key_phrases = extract_key_phrases(clean_text)
    return requirements


def classify(assignment: Assignment, clean_text: str) -> AssignmentType:
    signals = _Signals(
        name=assignment.name.lower(),
        description=clean_text.lower(),
        types=tuple(assignment.submission_types),
    )
    for rule in TYPE_RULES:
        if rule.applies(signals):
            return rule.result
    return AssignmentType.UNKNOWN


def detect_external_tool(description: str | None) -> str | None:
    text = (description or "").lower()
    for keyword, label in EXTERNAL_TOOLS:
        if keyword in text:
            return label
    return None


def extract_submission_info(assignment: Assignment) -> SubmissionInfo:
    types = list(assignment.submission_types)
    is_external_tool = "external_tool" in types
    return SubmissionInfo(
        types=types,
        due_date=assignment.due_at,
        points_possible=assignment.points_possible,
        is_external_tool=is_external_tool,
        external_tool_name=(
            detect_external_tool(assignment.description) if is_external_tool else None
        ),
    )


def determine_automatability(kind: AssignmentType, submission: SubmissionInfo) -> tuple[bool, str]:
    for rule in AUTOMATABILITY_RULES:
        if rule.applies(kind, submission):
            return rule.automatable, rule.reason(submission)
    return DEFAULT_AUTOMATABILITY


def analyze(assignment: Assignment, course_id: int) -> AnalyzedAssignment:
    raw = assignment.description or ""
    clean = clean_html(raw)
    requirements = extract_requirements(raw, clean)
    kind = classify(assignment, clean)
    submission = extract_submission_info(assignment)
    automatable, reason = determine_automatability(kind, submission)

    return AnalyzedAssignment(
        id=assignment.id,
        name=assignment.name,
        course_id=course_id,
        type=kind,
        automatable=automatable,
        automatable_reason=reason,
        requirements=requirements,
        submission=submission,
        raw_description=raw,
        clean_description=clean,
    )


def summarize(analysis: AnalyzedAssignment) -> list[str]:
    requirements = analysis.requirements
    lines = [
        analysis.name,
        f"Type: {analysis.type.value}",
        f"Points: {analysis.submission.points_possible:g}",
    ]
    if analysis.submission.due_date:
        lines.append(f"Due: {analysis.submission.due_date}")
    verdict = "Yes" if analysis.automatable else "No"
    lines.append(f"Automatable: {verdict} - {analysis.automatable_reason}")

    if requirements.word_count and requirements.word_count.min:
        lines.append(f"Word count: {requirements.word_count.min}+ words")
    if requirements.citations:
        style = f" ({requirements.citation_style})" if requirements.citation_style else ""
        lines.append(f"Citations: Required{style}")
    if requirements.key_phrases:
        lines.append("Key requirements:")
        lines.extend(f"  - {phrase}" for phrase in requirements.key_phrases[:3])
    if requirements.resources:
        lines.append(f"Resources: {len(requirements.resources)} linked")
    return lines
