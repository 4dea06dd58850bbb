"""Markdown activity digest built from the synced tables."""

import re
from collections import Counter
from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup

from simd_tracker import config
from simd_tracker.db import SimdStore

TOP_CONTRIBUTOR_LIMIT = 10


def repo_url() -> str:
    return f"https://github.com/{config.REPO_OWNER}/{config.REPO_NAME}"


def format_day(value: datetime | None) -> str:
    return value.date().isoformat() if value else "unknown"


def clean_message_text(raw_text: str | None) -> str:
    """Reduce a comment body to plain text for a short preview."""
    if not raw_text:
        return ""
    text = BeautifulSoup(raw_text, "html.parser").get_text()
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def preview(raw_text: str | None, limit: int = config.DIGEST_MESSAGE_PREVIEW_CHARS) -> str:
    text = clean_message_text(raw_text)
    if len(text) > limit:
        text = text[:limit].strip() + "..."
    return text


def is_bot(author: str | None, bot_authors: list[str]) -> bool:
    return (author or "") in bot_authors


def top_contributors(messages: list[dict], bot_authors: list[str], limit: int = TOP_CONTRIBUTOR_LIMIT) -> list[tuple]:
    counts = Counter(message["author"] for message in messages if not is_bot(message.get("author"), bot_authors))
    return counts.most_common(limit)


def render_proposals(proposals: list[dict]) -> list[str]:
    lines = [f"## New Proposals Merged ({len(proposals)})", ""]
    if not proposals:
        return lines + ["*No new proposals were merged in this period.*", ""]
    for proposal in proposals:
        lines.append(f"### SIMD-{proposal['id']}: {proposal['title']}")
        lines.append("")
        lines.append(f"- **Status:** {proposal['status']}")
        lines.append(f"- **Updated:** {format_day(proposal['proposal_updated_at'])}")
        if proposal.get("topics"):
            lines.append(f"- **Topics:** {', '.join(proposal['topics'])}")
        if proposal.get("summary"):
            lines.append(f"- **Summary:** {proposal['summary']}")
        lines.append(
            f"- **Link:** [View SIMD-{proposal['id']}]({repo_url()}/blob/main/{proposal['main_proposal_path']})"
        )
        lines.append("")
    return lines


def render_pull_requests(pulls: list[dict]) -> list[str]:
    lines = [f"## Active Proposal PRs ({len(pulls)})", ""]
    if not pulls:
        return lines + ["*No PR activity in this period.*", ""]
    for pull in pulls:
        lines.append(f"### SIMD-{pull['simd_id']}: {pull.get('simd_title') or pull['pr_title']}")
        lines.append("")
        lines.append(f"- **PR #{pull['pr_number']}:** {pull['pr_title']}")
        lines.append(f"- **Last Activity:** {format_day(pull['last_activity_at'])}")
        lines.append(f"- **Messages:** {pull['total_message_count']}")
        if pull.get("discussion_summary"):
            lines.append(f"- **Discussion Summary:** {pull['discussion_summary']}")
        lines.append(f"- **Link:** [View PR #{pull['pr_number']}]({pull.get('html_url') or repo_url() + '/pull/' + str(pull['pr_number'])})")
        lines.append("")
    return lines


def render_messages(messages: list[dict]) -> list[str]:
    lines = ["## Recent Discussion Messages", ""]
    if not messages:
        return lines + ["*No discussion messages in this period.*", ""]

    grouped: dict[str, list[dict]] = {}
    for message in messages:
        grouped.setdefault(message["simd_id"], []).append(message)

    for simd_id, simd_messages in grouped.items():
        title = simd_messages[0].get("simd_title") or f"SIMD-{simd_id}"
        lines.append(f"### SIMD-{simd_id}: {title}")
        lines.append("")
        for message in simd_messages[: config.DIGEST_SECTION_MESSAGE_LIMIT]:
            quoted = preview(message["body"]).replace("\n", "\n> ")
            lines.append(f"**{message['author']}** ({format_day(message['created_at'])}):")
            lines.append(f"> {quoted}")
            lines.append("")
            if message.get("url"):
                lines.append(f"[View on GitHub]({message['url']})")
                lines.append("")
        hidden = len(simd_messages) - config.DIGEST_SECTION_MESSAGE_LIMIT
        if hidden > 0:
            lines.append(f"*... and {hidden} more messages*")
            lines.append("")
    return lines


def render_discussions(discussions: list[dict]) -> list[str]:
    lines = [f"## GitHub Discussions Activity ({len(discussions)})", ""]
    if not discussions:
        return lines + ["*No discussion activity in this period.*", ""]
    for discussion in discussions:
        lines.append(f"### {discussion['title']}")
        lines.append("")
        if discussion.get("simd_id"):
            lines.append(f"- **Related SIMD:** SIMD-{discussion['simd_id']}")
        lines.append(f"- **Discussion #{discussion['discussion_number']}**")
        lines.append(f"- **Author:** {discussion.get('author') or 'unknown'}")
        lines.append(f"- **Updated:** {format_day(discussion['updated_at'])}")
        lines.append(f"- **Comments:** {discussion['comment_count']}")
        if discussion.get("url"):
            lines.append(f"- **Link:** [View Discussion]({discussion['url']})")
        lines.append("")
    return lines


def render_contributors(contributors: list[tuple]) -> list[str]:
    lines = ["## Top Contributors", ""]
    if not contributors:
        return lines + ["*No contributors in this period.*", ""]
    for author, count in contributors:
        lines.append(f"- **{author}:** {count} message{'s' if count != 1 else ''}")
    return lines + [""]


def build_digest(
    store: SimdStore,
    days: int = config.DIGEST_DAYS,
    now: datetime | None = None,
    bot_authors: list[str] | None = None,
) -> str:
    """Render the activity report for the last `days` days."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=days)
    bots = list(config.BOT_AUTHORS if bot_authors is None else bot_authors)

    proposals = store.list_recent_proposals(since)
    pulls = store.list_recent_pr_activity(since)
    messages = store.list_recent_messages(since, bots)
    discussions = store.list_recent_discussions(since)
    total = len(proposals) + len(pulls) + len(messages) + len(discussions)

    lines = [
        f"# SIMD Digest - {days} Day Activity Report",
        "",
        f"**Report Period:** {since.date().isoformat()} - {now.date().isoformat()}",
        "",
        "---",
        "",
    ]
    for section in (
        render_proposals(proposals),
        render_pull_requests(pulls),
        render_messages(messages),
        render_discussions(discussions),
        render_contributors(top_contributors(messages, bots)),
    ):
        lines.extend(section)
        lines.extend(["---", ""])

    lines.extend(
        [
            "## Summary Statistics",
            "",
            f"- **New Proposals Merged:** {len(proposals)}",
            f"- **Active PRs with Updates:** {len(pulls)}",
            f"- **Discussion Messages:** {len(messages)}",
            f"- **GitHub Discussions:** {len(discussions)}",
            f"- **Total Activity Items:** {total}",
            "",
            "---",
            "",
            f"*Generated on {now.strftime('%Y-%m-%d %H:%M UTC')}*",
            f"*Data sourced from: {repo_url()}*",
        ]
    )
    return "\n".join(lines) + "\n"
