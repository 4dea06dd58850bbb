"""Extract structured fields from proposal documents."""

import hashlib
import logging
import re

import yaml

UNTITLED = "Untitled Proposal"
DEFAULT_STATUS = "Draft"
SUMMARY_MAX_CHARS = 500
SUMMARY_MIN_PARAGRAPH_CHARS = 50

SIMD_STATUSES = (
    "Idea",
    "Draft",
    "Review",
    "Accepted",
    "Implemented",
    "Activated",
    "Living",
    "Stagnant",
    "Withdrawn",
)

FRONT_MATTER = re.compile(r"\A\ufeff?---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
H1_HEADING = re.compile(r"^#[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$", re.MULTILINE)
TITLE_PREFIX = re.compile(r"^SIMD[-\s]?\d+\s*:\s*", re.IGNORECASE)
SUMMARY_SECTION = re.compile(
    r"^##[ \t]+Summary[ \t]*$(.*?)(?=^#{1,6}[ \t]|\Z)", re.IGNORECASE | re.MULTILINE | re.DOTALL
)


def content_fingerprint(text: str) -> str:
    """Return the git blob sha of a document, matching the contents API `sha`."""
    data = text.encode("utf-8")
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


def split_front_matter(text: str) -> tuple[dict, str]:
    """Split a leading YAML block from the markdown body."""
    match = FRONT_MATTER.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        logging.warning("Ignoring malformed front matter: %s", exc)
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end():]


def normalize_status(value) -> str:
    """Map a declared status onto the lifecycle enum, defaulting to Draft."""
    if value is None:
        return DEFAULT_STATUS
    wanted = str(value).strip().lower()
    for status in SIMD_STATUSES:
        if status.lower() == wanted:
            return status
    return DEFAULT_STATUS


def clean_title(title: str) -> str:
    return TITLE_PREFIX.sub("", title.strip()).strip()


def paragraphs(text: str) -> list[str]:
    return [block.strip() for block in re.split(r"\n\s*\n", text) if block.strip()]


def extract_summary(front_matter: dict, body: str) -> str:
    summary = front_matter.get("summary") or front_matter.get("description")
    if summary:
        return str(summary).strip()[:SUMMARY_MAX_CHARS]

    section = SUMMARY_SECTION.search(body)
    if section:
        section_paragraphs = paragraphs(section.group(1))
        if section_paragraphs:
            return section_paragraphs[0][:SUMMARY_MAX_CHARS]

    for block in paragraphs(body):
        if block.startswith("#") or len(block) <= SUMMARY_MIN_PARAGRAPH_CHARS:
            continue
        return block[:SUMMARY_MAX_CHARS]
    return ""


def extract_topics(front_matter: dict) -> list[str] | None:
    topics = front_matter.get("topics") or front_matter.get("tags")
    if isinstance(topics, str):
        topics = [part.strip() for part in topics.split(",")]
    if not isinstance(topics, list):
        return None
    topics = [str(topic).strip() for topic in topics if str(topic).strip()]
    return topics or None


def parse_proposal(text: str) -> dict:
    """Return title, status, summary, topics and body for a proposal document."""
    try:
        front_matter, body = split_front_matter(text or "")

        title = front_matter.get("title")
        if not title:
            heading = H1_HEADING.search(body)
            title = heading.group(1) if heading else ""
        title = clean_title(str(title)) or UNTITLED

        return {
            "title": title,
            "status": normalize_status(front_matter.get("status")),
            "summary": extract_summary(front_matter, body),
            "topics": extract_topics(front_matter),
            "body": body,
        }
    except Exception as exc:
        logging.exception("Proposal parsing failed, using defaults: %s", exc)
        return {
            "title": UNTITLED,
            "status": DEFAULT_STATUS,
            "summary": "",
            "topics": None,
            "body": text or "",
        }
