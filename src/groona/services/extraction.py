"""Deterministic Project/Task field extraction from chat history.

Each extractor walks the recent user messages newest-first and runs an
ordered list of :class:`Rule` objects over every message. A field is filled
by the first rule that produces a value for it and is never overwritten
afterwards, so the most recent message wins. The precedence lives in
:func:`run_rules` and :class:`DraftBuilder`; individual rules only say what
they capture.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from ..domain.drafts import AssigneeByEmail, AssigneeByName, ProjectDraft, TaskDraft
from .date_normalizer import is_iso_date, parse_date


PROJECT_INTENT_KEYWORDS = (
    "create project",
    "new project",
    "make a project",
    "start project",
    "project creation",
    "create a project",
)

TASK_INTENT_KEYWORDS = (
    "create task",
    "new task",
    "make a task",
    "add task",
    "task creation",
    "create a task",
)

_QUESTION_MARKERS = ("?", "what", "would you", "can you", "how", "when", "where", "why", "help", "i want", "please")
_NAME_REJECT = ("would you like", "what", "this project")
_FIELD_MENTIONS = ("workspace", "deadline", "due date")

_LEADING_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)")


def _content(message: Any) -> str:
    if isinstance(message, dict):
        return str(message.get("content") or "")
    return str(getattr(message, "content", "") or "")


def _role(message: Any) -> str:
    if isinstance(message, dict):
        return str(message.get("role") or "")
    return str(getattr(message, "role", "") or "")


def _has_intent(messages: Sequence[Any], keywords: Iterable[str]) -> bool:
    if not messages:
        return False
    combined = " ".join(_content(m).lower() for m in list(messages)[-5:])
    return any(keyword in combined for keyword in keywords)


def is_project_creation_conversation(messages: Sequence[Any]) -> bool:
    return _has_intent(messages, PROJECT_INTENT_KEYWORDS)


def is_task_creation_conversation(messages: Sequence[Any]) -> bool:
    return _has_intent(messages, TASK_INTENT_KEYWORDS)


# ---------------------------------------------------------------------------
# Rule engine
# ---------------------------------------------------------------------------
class DraftBuilder:
    """Accumulates field values; a field can be set only once."""

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    def has(self, field: str) -> bool:
        return field in self._values

    def get(self, field: str, default: Any = None) -> Any:
        return self._values.get(field, default)

    def set(self, field: str, value: Any) -> bool:
        if field in self._values or value is None:
            return False
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return False
        self._values[field] = value
        return True

    def replace(self, field: str, value: Any) -> None:
        self._values[field] = value

    def values(self) -> Dict[str, Any]:
        return dict(self._values)


Setter = Callable[[DraftBuilder, Any], bool]


@dataclass(frozen=True)
class Rule:
    """One extraction step.

    ``fields`` are the draft fields the rule can fill; the rule is skipped
    once all of them are set. With a ``pattern`` the setter receives the
    match object, otherwise the raw message text. A ``halt`` rule that
    applies ends the scan over older messages.
    """

    fields: Tuple[str, ...]
    setter: Setter
    pattern: Optional[Pattern[str]] = None
    halt: bool = False


def run_rules(rules: Sequence[Rule], contents: Iterable[str], builder: DraftBuilder) -> DraftBuilder:
    for content in contents:
        for rule in rules:
            if all(builder.has(f) for f in rule.fields):
                continue
            if rule.pattern is None:
                applied = rule.setter(builder, content)
            else:
                match = rule.pattern.search(content)
                if not match:
                    continue
                applied = rule.setter(builder, match)
            if applied and rule.halt:
                return builder
    return builder


def _split_parts(raw: str) -> List[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


def _set_parsed_date(field: str) -> Setter:
    def setter(builder: DraftBuilder, match: re.Match) -> bool:
        return builder.set(field, parse_date(match.group(1)))

    return setter


def _set_group(field: str, group: int = 1) -> Setter:
    def setter(builder: DraftBuilder, match: re.Match) -> bool:
        return builder.set(field, match.group(group))

    return setter


# ---------------------------------------------------------------------------
# Shared date shapes
# ---------------------------------------------------------------------------
_DAY_MONTH = r"\d{1,2}(?:st|nd|rd|th)?\s+[a-z]+(?:\s+\d{4})?"
_MONTH_DAY = r"[a-z]+\s+\d{1,2}(?:st|nd|rd|th)?(?:\s*,?\s*\d{4})?"
_NUMERIC_DMY = r"\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}"
_NUMERIC_YMD = r"\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"

# Lookahead so candidates may overlap; "project 10 jan" must still reach "10 jan".
_BARE_DATE = re.compile(rf"(?=({_DAY_MONTH}|{_MONTH_DAY}|{_NUMERIC_DMY}))", re.I)


def _keyword_dates(keywords: str, shapes: Sequence[str]) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(rf"\b(?:{keywords})\b\s*[:\-]?\s*({shape})", re.I) for shape in shapes)


# ---------------------------------------------------------------------------
# Project rules
# ---------------------------------------------------------------------------
_PROJECT_PAREN = re.compile(r"create\s+(?:a\s+)?project\s*\(([^)]+)\)", re.I)
_PROJECT_COMMA = re.compile(
    r"create\s+(?:a\s+)?project\s+([^,\n()]+?)\s*,\s*([^,\n()]+?)\s*,\s*([^,\n()]+?)(?:\s*[,\n]|$)",
    re.I,
)
_PROJECT_SIMPLE = re.compile(r"create\s+(?:a\s+)?project\s+([^,\n()]+?)(?:\s*[,\n]|$)", re.I)
_PROJECT_NAME = re.compile(
    r"(?:project name|name of the project|project called|create.*project.*named?)\s*[:\-]?\s*[\"']?([^\"'\n()?]+)",
    re.I,
)
_PROJECT_COMMAND = re.compile(r"^(create|make|start|new)\s+(a\s+)?project", re.I)
_NAME_LEAD = re.compile(r"^(?:called|named)\s+", re.I)
_PROJECT_DEADLINES = _keyword_dates(
    "deadline|due date|end date|finish by|by|on",
    (_DAY_MONTH, _MONTH_DAY, _NUMERIC_DMY, _NUMERIC_YMD),
)
_WORKSPACE = re.compile(r"(?:workspace|in workspace|belong to)\s*[:\-]?\s*[\"']?([^\"'\n()]+)", re.I)


def _project_positional(builder: DraftBuilder, parts: Sequence[str]) -> bool:
    applied = False
    if len(parts) >= 1:
        applied |= builder.set("name", parts[0])
    if len(parts) >= 2:
        applied |= builder.set("deadline", parse_date(parts[1]) or parts[1])
    if len(parts) >= 3:
        applied |= builder.set("workspace_name", parts[2])
    return applied


def _project_paren(builder: DraftBuilder, match: re.Match) -> bool:
    return _project_positional(builder, _split_parts(match.group(1)))


def _project_comma(builder: DraftBuilder, match: re.Match) -> bool:
    return _project_positional(builder, [match.group(i).strip() for i in (1, 2, 3)])


def _project_simple(builder: DraftBuilder, match: re.Match) -> bool:
    candidate = _NAME_LEAD.sub("", match.group(1).strip())
    if parse_date(candidate) or len(candidate) <= 2:
        return False
    return builder.set("name", candidate)


def _project_keyword_name(builder: DraftBuilder, match: re.Match) -> bool:
    candidate = match.group(1).strip()
    lowered = candidate.lower()
    if any(marker in lowered for marker in _NAME_REJECT) or len(candidate) <= 1:
        return False
    return builder.set("name", candidate)


def looks_like_name_reply(content: str) -> bool:
    """Whether a short follow-up message can stand in as a project name."""

    lowered = content.lower().strip()
    if not lowered or len(lowered) >= 100:
        return False
    if any(marker in lowered for marker in _QUESTION_MARKERS) or lowered.startswith("create"):
        return False
    if _PROJECT_COMMAND.match(lowered):
        return False
    if any(marker in lowered for marker in _FIELD_MENTIONS):
        return False
    if parse_date(content) is not None:
        return False
    return not content.strip().isdigit()


def _project_follow_up(builder: DraftBuilder, content: str) -> bool:
    if not looks_like_name_reply(content):
        return False
    return builder.set("name", content.strip())


def _bare_date(field: str) -> Setter:
    def setter(builder: DraftBuilder, content: str) -> bool:
        for match in _BARE_DATE.finditer(content):
            parsed = parse_date(match.group(1))
            if parsed:
                return builder.set(field, parsed)
        return False

    return setter


def project_rules(creation_intent: bool) -> Tuple[Rule, ...]:
    name_fields = ("name",)
    rules: List[Rule] = [
        Rule(("name", "deadline", "workspace_name"), _project_paren, _PROJECT_PAREN),
        Rule(("name", "deadline", "workspace_name"), _project_comma, _PROJECT_COMMA),
        Rule(name_fields, _project_simple, _PROJECT_SIMPLE),
        Rule(name_fields, _project_keyword_name, _PROJECT_NAME),
    ]
    if creation_intent:
        rules.append(Rule(name_fields, _project_follow_up, halt=True))
    rules.extend(Rule(("deadline",), _set_parsed_date("deadline"), p) for p in _PROJECT_DEADLINES)
    rules.append(Rule(("deadline",), _bare_date("deadline")))
    rules.append(Rule(("workspace_name",), _set_group("workspace_name"), _WORKSPACE))
    return tuple(rules)


def extract_project_draft(messages: Sequence[Any]) -> ProjectDraft:
    recent = [m for m in list(messages)[-10:] if _role(m) == "user"]
    recent.reverse()
    rules = project_rules(is_project_creation_conversation(messages))
    builder = run_rules(rules, (_content(m) for m in recent), DraftBuilder())

    deadline = builder.get("deadline")
    if isinstance(deadline, str) and not is_iso_date(deadline):
        parsed = parse_date(deadline)
        if parsed:
            builder.replace("deadline", parsed)

    return ProjectDraft(
        name=builder.get("name"),
        deadline=builder.get("deadline"),
        workspace_name=builder.get("workspace_name"),
    )


# ---------------------------------------------------------------------------
# Task rules
# ---------------------------------------------------------------------------
_TASK_PAREN = re.compile(r"create\s+(?:a\s+)?task\s*\(([^)]+)\)", re.I)
_TASK_COMMA = re.compile(
    r"create\s+(?:a\s+)?task\s+([^,\n()]+?)\s*,\s*([^,\n()]+?)\s*,\s*([^,\n()]+?)(?:\s*[,\n]|$)",
    re.I,
)
_TASK_TITLE = re.compile(
    r"(?:task title\b|\btitled?\b|task name|name of the task|create.*task.*named?)\s*[:\-]?\s*[\"']?([^\"'\n()]+)",
    re.I,
)
_TASK_SIMPLE = re.compile(r"create\s+(?:a\s+)?task\s+([^,\n()]+?)(?:\s*[,\n]|$)", re.I)
_TASK_PROJECT = re.compile(r"(?:project|in project|for project|belong to project)\s*[:\-]?\s*[\"']?([^\"'\n]+)", re.I)
_TASK_SPRINT = re.compile(r"(?:sprint|in sprint|for sprint)\s*[:\-]?\s*[\"']?([^\"'\n]+)", re.I)
_TASK_ASSIGNEE = re.compile(r"\b(?:assigned to|assign to|assignee|assign|give to)\b\s*[:\-]?\s*[\"']?([^\"'\n]+)", re.I)
_TASK_DUE = _keyword_dates("due date|due|deadline|by|on", (_DAY_MONTH, _MONTH_DAY, _NUMERIC_DMY))
_HOURS_KEYWORD = re.compile(r"\b(?:estimated|estimate|hours|hrs|h)\b\s*[:\-]?\s*(\d+(?:\.\d+)?)", re.I)
_HOURS_SUFFIX = re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:hours|hrs|h)\b", re.I)
_PRIORITY = re.compile(r"\b(urgent|high|medium|low)\s+priority\b", re.I)


def parse_assignee(raw: Optional[str]):
    """``@`` routes to the email variant, anything else is a name."""

    if not raw or not raw.strip():
        return None
    value = raw.strip().strip("\"'").strip()
    if not value:
        return None
    if "@" in value:
        return AssigneeByEmail(value)
    return AssigneeByName(value)


def parse_hours(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _LEADING_NUMBER.match(str(raw))
    return float(match.group(1)) if match else None


def _task_paren(builder: DraftBuilder, match: re.Match) -> bool:
    parts = _split_parts(match.group(1))
    applied = False
    if len(parts) >= 1:
        applied |= builder.set("project_name", parts[0])
    if len(parts) >= 2:
        applied |= builder.set("sprint_name", parts[1])
    if len(parts) >= 3:
        applied |= builder.set("title", parts[2])
    if len(parts) >= 4:
        applied |= builder.set("assignee", parse_assignee(parts[3]))
    if len(parts) >= 5:
        applied |= builder.set("due_date", parse_date(parts[4]))
    if len(parts) >= 6:
        applied |= builder.set("estimated_hours", parse_hours(parts[5]))
    return applied


def _task_comma(builder: DraftBuilder, match: re.Match) -> bool:
    applied = builder.set("project_name", match.group(1))
    applied |= builder.set("sprint_name", match.group(2))
    applied |= builder.set("title", match.group(3))
    return applied


def _task_assignee(builder: DraftBuilder, match: re.Match) -> bool:
    return builder.set("assignee", parse_assignee(match.group(1)))


def _task_hours(builder: DraftBuilder, match: re.Match) -> bool:
    return builder.set("estimated_hours", float(match.group(1)))


def _task_priority(builder: DraftBuilder, match: re.Match) -> bool:
    return builder.set("priority", match.group(1).lower())


TASK_RULES: Tuple[Rule, ...] = (
    Rule(
        ("project_name", "sprint_name", "title", "assignee", "due_date", "estimated_hours"),
        _task_paren,
        _TASK_PAREN,
    ),
    Rule(("project_name", "title"), _task_comma, _TASK_COMMA),
    Rule(("title",), _set_group("title"), _TASK_TITLE),
    Rule(("title",), _set_group("title"), _TASK_SIMPLE),
    Rule(("project_name",), _set_group("project_name"), _TASK_PROJECT),
    Rule(("sprint_name",), _set_group("sprint_name"), _TASK_SPRINT),
    Rule(("assignee",), _task_assignee, _TASK_ASSIGNEE),
    *(Rule(("due_date",), _set_parsed_date("due_date"), p) for p in _TASK_DUE),
    Rule(("estimated_hours",), _task_hours, _HOURS_KEYWORD),
    Rule(("estimated_hours",), _task_hours, _HOURS_SUFFIX),
    Rule(("priority",), _task_priority, _PRIORITY),
)


def extract_task_draft(messages: Sequence[Any]) -> TaskDraft:
    # Reverse first, then keep user messages.
    recent = list(messages)[-10:]
    recent.reverse()
    recent = [m for m in recent if _role(m) == "user"]
    builder = run_rules(TASK_RULES, (_content(m) for m in recent), DraftBuilder())
    return TaskDraft(
        title=builder.get("title"),
        project_name=builder.get("project_name"),
        sprint_name=builder.get("sprint_name"),
        assignee=builder.get("assignee"),
        due_date=builder.get("due_date"),
        estimated_hours=builder.get("estimated_hours"),
        priority=builder.get("priority", "medium"),
    )
