"""Parse a branch README into dated weeks of raw project entries.

The README is a sequence of week sections::

    ### 5 Januari 2024
    1. [https://site.example]
    **Creator Name**
    Free text description, possibly with extra links:
    [https://github.com/creator/site]

Parsing is split into three stages so each can be tested on its own:
``scan_week_headings`` finds the dated level-3 headings,
``split_week_segments`` cuts the document into week bodies, and
``extract_projects`` turns one body into ``RawProject`` entries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

import markdown
from bs4 import BeautifulSoup

from showcase.core.errors import ParseError

INDONESIAN_MONTHS: tuple[str, ...] = (
    "januari",
    "februari",
    "maret",
    "april",
    "mei",
    "juni",
    "juli",
    "agustus",
    "september",
    "oktober",
    "november",
    "desember",
)

WEEK_HEADING_RE = re.compile(r"^###[ \t]+(\d{1,2})[ \t]+([^\W\d_]+)[ \t]+(\d{4})\b", re.MULTILINE)
PROJECT_SPLIT_RE = re.compile(r"\n(?=\d+\.\s+\[)")
PROJECT_LINE_RE = re.compile(r"^(\d+)\.\s+\[(.*?)\]")
CREATOR_RE = re.compile(r"\*\*(.+?)\*\*")
BARE_LINK_LINE_RE = re.compile(r"^\[(https?://.*)\]$")
BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)

ALLOWED_TAGS = {
    "a", "abbr", "b", "blockquote", "code", "del", "em", "h1", "h2", "h3", "h4",
    "h5", "h6", "hr", "i", "img", "li", "ol", "p", "pre", "s", "strong", "sub",
    "sup", "table", "tbody", "td", "th", "thead", "tr", "ul",
}
DROPPED_TAGS = ["script", "style", "iframe", "object", "embed", "form", "input", "textarea", "noscript"]
ALLOWED_ATTRS = {"a": {"href", "title"}, "img": {"src", "alt", "title"}}
SAFE_URL_SCHEMES = {"a": ("http://", "https://", "mailto:"), "img": ("http://", "https://")}

MarkdownRenderer = Callable[[str], str]


@dataclass(slots=True)
class RawProject:
    order: int
    link: str
    creator: str | None
    description: str
    block: str


@dataclass(slots=True)
class RawWeek:
    date: date
    projects: list[RawProject] = field(default_factory=list)


@dataclass(slots=True)
class WeekHeading:
    date: date
    start: int
    end: int


def sanitize_html(html: str) -> str:
    """Strip unsafe elements and attributes from rendered HTML."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(DROPPED_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue
        allowed = ALLOWED_ATTRS.get(tag.name, set())
        for attr in list(tag.attrs):
            if attr not in allowed:
                del tag[attr]
                continue
            if attr in {"href", "src"}:
                value = str(tag[attr]).strip().lower()
                if not value.startswith(SAFE_URL_SCHEMES[tag.name]):
                    del tag[attr]
    return str(soup)


def render_markdown(raw: str) -> str:
    """Render a description to sanitized HTML."""
    cleaned = "\n".join(line.strip() for line in raw.split("\n"))
    html = markdown.markdown(cleaned)
    return sanitize_html(BR_RE.sub("", html))


def parse_week_date(day: str, month_name: str, year: str, months: tuple[str, ...] = INDONESIAN_MONTHS) -> date:
    """Parse the parts of a `DD Month YYYY` heading using a month-name table."""
    lookup = {name.lower(): index for index, name in enumerate(months, start=1)}
    month = lookup.get(month_name.lower())
    if month is None:
        raise ParseError(f"Invalid month: {month_name!r}")
    try:
        return date(int(year), month, int(day))
    except ValueError as exc:
        raise ParseError(f"Invalid date: {day} {month_name} {year}") from exc


def scan_week_headings(content: str, months: tuple[str, ...] = INDONESIAN_MONTHS) -> list[WeekHeading]:
    headings: list[WeekHeading] = []
    for match in WEEK_HEADING_RE.finditer(content):
        week_date = parse_week_date(match.group(1), match.group(2), match.group(3), months)
        headings.append(WeekHeading(date=week_date, start=match.start(), end=match.end()))
    return headings


def split_week_segments(content: str, headings: list[WeekHeading]) -> list[tuple[date, str]]:
    """Pair each heading's date with the text up to the next heading."""
    segments: list[tuple[date, str]] = []
    for index, heading in enumerate(headings):
        stop = headings[index + 1].start if index + 1 < len(headings) else len(content)
        segments.append((heading.date, content[heading.end:stop]))
    return segments


def parse_project_block(block: str, render: MarkdownRenderer = render_markdown) -> RawProject | None:
    """Parse one `N. [link]` entry; None when the block does not start with one."""
    lines = block.strip().splitlines()
    if not lines:
        return None
    head = PROJECT_LINE_RE.match(lines[0])
    if not head:
        return None

    creator: str | None = None
    extra_links: list[str] = []
    description_lines: list[str] = []
    for raw_line in lines[1:]:
        line = raw_line.strip()
        if creator is None:
            creator_match = CREATOR_RE.search(line)
            if creator_match:
                creator = creator_match.group(1).strip()
                continue
        bare_link = BARE_LINK_LINE_RE.match(line)
        if bare_link:
            extra_links.append(bare_link.group(1))
        else:
            description_lines.append(line)

    description = "\n".join([*extra_links, *description_lines]).strip()
    return RawProject(
        order=int(head.group(1)),
        link=head.group(2).strip(),
        creator=creator or None,
        description=render(description),
        block=block,
    )


def extract_projects(segment: str, render: MarkdownRenderer = render_markdown) -> list[RawProject]:
    """Extract the numbered entries of one week, sorted by order (stable)."""
    projects: list[RawProject] = []
    for block in PROJECT_SPLIT_RE.split(segment):
        project = parse_project_block(block, render)
        if project is not None:
            projects.append(project)
    return sorted(projects, key=lambda project: project.order)


def parse_markdown_content(
    content: str,
    months: tuple[str, ...] = INDONESIAN_MONTHS,
    render: MarkdownRenderer = render_markdown,
) -> list[RawWeek]:
    """Parse README content into weeks; weeks without projects are dropped."""
    weeks: list[RawWeek] = []
    for week_date, segment in split_week_segments(content, scan_week_headings(content, months)):
        projects = extract_projects(segment, render)
        if projects:
            weeks.append(RawWeek(date=week_date, projects=projects))
    return weeks
