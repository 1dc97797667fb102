from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from .analyzer import AnalyzedAssignment, CountRange
from .models import AssignmentType, DraftStatus, SolutionFormat

# Every assignment type must appear here; None means "decide from the
# submission types".
FORMAT_BY_TYPE: dict[AssignmentType, SolutionFormat | None] = {
    AssignmentType.ESSAY: SolutionFormat.ESSAY,
    AssignmentType.REFLECTION: SolutionFormat.ESSAY,
    AssignmentType.CODE: SolutionFormat.CODE,
    AssignmentType.LAB: SolutionFormat.CODE,
    AssignmentType.HOMEWORK: SolutionFormat.CODE,
    AssignmentType.QUIZ: None,
    AssignmentType.EXAM: None,
    AssignmentType.PRESENTATION: None,
    AssignmentType.GROUP_PROJECT: None,
    AssignmentType.DISCUSSION: None,
    AssignmentType.ATTENDANCE: None,
    AssignmentType.UNKNOWN: None,
}

FORMAT_REQUIREMENTS: dict[SolutionFormat, list[str]] = {
    SolutionFormat.ESSAY: [
        "ESSAY REQUIREMENTS:",
        "- Write a well-structured academic essay",
        "- Include an introduction with a clear thesis statement",
        "- Develop arguments with supporting evidence",
        "- Include a conclusion that summarizes key points",
    ],
    SolutionFormat.CODE: [
        "CODE REQUIREMENTS:",
        "- Write clean, well-documented code",
        "- Include comments explaining key logic",
        "- Follow best practices for the language",
        "- Handle edge cases appropriately",
    ],
    SolutionFormat.SHORT_ANSWER: [
        "SHORT ANSWER REQUIREMENTS:",
        "- Provide a clear, concise response",
        "- Address all parts of the question",
        "- Support answers with reasoning or evidence",
    ],
    SolutionFormat.FILE_UPLOAD: [
        "FILE SUBMISSION REQUIREMENTS:",
        "- Generate content suitable for file submission",
        "- Follow any specified formatting requirements",
    ],
}

EXPECTED_OUTPUT: dict[SolutionFormat, list[str]] = {
    SolutionFormat.ESSAY: [
        "Provide a complete essay with:",
        "1. Title",
        "2. Introduction with thesis",
        "3. Body paragraphs with topic sentences",
        "4. Conclusion",
    ],
    SolutionFormat.CODE: [
        "Provide complete, runnable code with:",
        "1. Required imports/dependencies",
        "2. Well-commented implementation",
        "3. Example usage or test cases",
    ],
    SolutionFormat.SHORT_ANSWER: [
        "Provide a clear, direct answer addressing all parts of the question.",
    ],
    SolutionFormat.FILE_UPLOAD: ["Provide content formatted for file submission."],
}


def utc_now() -> datetime:
    return datetime.now(UTC)


def word_count(text: str) -> int:
    return len(text.split())


@dataclass(frozen=True)
class ResourceContext:
    title: str
    url: str
    description: str | None = None


@dataclass
class SolutionContext:
    assignment_id: int
    course_id: int
    assignment_name: str
    type: AssignmentType
    instructions: str
    format: SolutionFormat
    constraints: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    key_points: list[str] = field(default_factory=list)
    resources: list[ResourceContext] = field(default_factory=list)
    word_count: CountRange | None = None
    citation_style: str | None = None
    additional_requirements: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["type"] = self.type.value
        out["format"] = self.format.value
        return out


def determine_format(analysis: AnalyzedAssignment) -> SolutionFormat:
    types = analysis.submission.types
    fmt = FORMAT_BY_TYPE[analysis.type]
    if fmt is SolutionFormat.CODE and "online_text_entry" in types:
        return SolutionFormat.SHORT_ANSWER
    if fmt is not None:
        return fmt
    if "online_upload" in types:
        return SolutionFormat.FILE_UPLOAD
    return SolutionFormat.SHORT_ANSWER


def build_instructions(analysis: AnalyzedAssignment, fmt: SolutionFormat) -> str:
    requirements = analysis.requirements
    lines = [f'Generate a {fmt.value} solution for the assignment "{analysis.name}".', ""]
    lines.extend(FORMAT_REQUIREMENTS[fmt])
    if fmt is SolutionFormat.ESSAY:
        if requirements.word_count and requirements.word_count.min:
            lines.append(f"- Target word count: {requirements.word_count.min}+ words")
        if requirements.citation_style:
            lines.append(f"- Use {requirements.citation_style} citation format")

    if analysis.clean_description:
        lines.extend(["", "ASSIGNMENT DESCRIPTION:", analysis.clean_description])
    return "\n".join(lines)


def build_constraints(analysis: AnalyzedAssignment) -> list[str]:
    requirements = analysis.requirements
    constraints = []
    if requirements.word_count and requirements.word_count.min:
        constraints.append(f"Minimum {requirements.word_count.min} words")
    if requirements.word_count and requirements.word_count.max:
        constraints.append(f"Maximum {requirements.word_count.max} words")
    if requirements.page_count and requirements.page_count.min:
        constraints.append(f"Minimum {requirements.page_count.min} pages")
    if requirements.citations:
        constraints.append("Citations required")
    if requirements.citation_style:
        constraints.append(f"Citation style: {requirements.citation_style}")
    return constraints


def prepare_context(analysis: AnalyzedAssignment) -> SolutionContext:
    fmt = determine_format(analysis)
    requirements = analysis.requirements
    return SolutionContext(
        assignment_id=analysis.id,
        course_id=analysis.course_id,
        assignment_name=analysis.name,
        type=analysis.type,
        instructions=build_instructions(analysis, fmt),
        format=fmt,
        constraints=build_constraints(analysis),
        topics=list(requirements.topics),
        key_points=[*requirements.rubric_items, *requirements.key_phrases],
        resources=[ResourceContext(title=r.text, url=r.url) for r in requirements.resources],
        word_count=requirements.word_count,
        citation_style=requirements.citation_style,
        additional_requirements=list(requirements.key_phrases),
    )


def generate_prompt(context: SolutionContext) -> str:
    """Render the Markdown request handed to whoever writes the solution."""
    sections = [
        "# Assignment Solution Request",
        "",
        f"**Assignment:** {context.assignment_name}",
        f"**Type:** {context.type.value}",
        f"**Format:** {context.format.value}",
        "",
        "## Instructions",
        context.instructions,
        "",
    ]

    for title, items in (
        ("Constraints", context.constraints),
        ("Key Requirements", context.additional_requirements),
        ("Points to Address", context.key_points),
        ("Resources to Reference", [f"[{r.title}]({r.url})" for r in context.resources]),
    ):
        if items:
            sections.append(f"## {title}")
            sections.extend(f"- {item}" for item in items)
            sections.append("")

    sections.append("## Expected Output")
    sections.extend(EXPECTED_OUTPUT[context.format])
    if context.format is SolutionFormat.ESSAY and context.citation_style:
        sections.append(f"5. Works Cited/References in {context.citation_style} format")

    return "\n".join(sections)


@dataclass
class Draft:
    id: str
    assignment_id: int
    course_id: int
    assignment_name: str
    content: str
    format: SolutionFormat
    created_at: datetime
    updated_at: datetime
    status: DraftStatus = DraftStatus.DRAFT
    feedback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "course_id": self.course_id,
            "assignment_name": self.assignment_name,
            "content": self.content,
            "format": self.format.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "status": self.status.value,
            "feedback": self.feedback,
            "word_count": word_count(self.content),
        }


def draft_id(course_id: int, assignment_id: int) -> str:
    return f"{course_id}-{assignment_id}"


class DraftStore:
    """One draft per (course, assignment); saving again overwrites in place."""

    def __init__(self) -> None:
        self._drafts: dict[str, Draft] = {}

    def save_draft(
        self,
        assignment_id: int,
        course_id: int,
        assignment_name: str,
        content: str,
        fmt: SolutionFormat,
    ) -> Draft:
        key = draft_id(course_id, assignment_id)
        now = utc_now()
        existing = self._drafts.get(key)
        draft = Draft(
            id=key,
            assignment_id=assignment_id,
            course_id=course_id,
            assignment_name=assignment_name,
            content=content,
            format=fmt,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._drafts[key] = draft
        return draft

    def get_draft(self, course_id: int, assignment_id: int) -> Draft | None:
        return self._drafts.get(draft_id(course_id, assignment_id))

    def list_drafts(self) -> list[Draft]:
        return list(self._drafts.values())

    def update_draft_status(
        self,
        course_id: int,
        assignment_id: int,
        status: DraftStatus,
        feedback: str | None = None,
    ) -> Draft | None:
        draft = self.get_draft(course_id, assignment_id)
        if draft is None:
            return None
        draft.status = status
        draft.updated_at = utc_now()
        if feedback:
            draft.feedback = feedback
        return draft

    def update_draft_content(
        self, course_id: int, assignment_id: int, content: str
    ) -> Draft | None:
        draft = self.get_draft(course_id, assignment_id)
        if draft is None:
            return None
        draft.content = content
        draft.updated_at = utc_now()
        draft.status = DraftStatus.DRAFT
        return draft

    def delete_draft(self, course_id: int, assignment_id: int) -> bool:
        return self._drafts.pop(draft_id(course_id, assignment_id), None) is not None


def format_for_review(draft: Draft) -> str:
    lines = [
        f"# Draft Review: {draft.assignment_name}",
        "",
        f"**Status:** {draft.status.value}",
        f"**Format:** {draft.format.value}",
        f"**Last Updated:** {draft.updated_at.isoformat()}",
        "",
    ]
    if draft.feedback:
        lines.extend(["## Feedback", draft.feedback, ""])
    lines.extend(["## Content", "```", draft.content, "```"])
    if draft.format is SolutionFormat.ESSAY:
        lines.extend(["", f"**Word Count:** {word_count(draft.content)}"])
    return "\n".join(lines)
