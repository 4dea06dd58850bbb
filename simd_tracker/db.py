"""Postgres persistence for SIMDs, pull requests, discussions and summaries.

All writes are single-statement upserts keyed by stable natural ids, so engines
can be re-run or run side by side without read-then-write races. SIMD rows are
reconciled through one rule table (`SIMD_MERGE_RULES`) that drives both the
in-Python merge and the SQL `ON CONFLICT` clause.
"""

import logging
import uuid
from datetime import datetime

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from simd_tracker import config

RUN_LOCK_KEY = 348_112_907

PREFER_INCOMING = "prefer_incoming"
KEEP_MAX = "max"
MOST_ADVANCED_STAGE = "stage"

SOURCE_STAGES = ("discussion", "pr", "main")

SIMD_MERGE_RULES = {
    "slug": PREFER_INCOMING,
    "title": PREFER_INCOMING,
    "status": PREFER_INCOMING,
    "summary": PREFER_INCOMING,
    "topics": PREFER_INCOMING,
    "conclusion": PREFER_INCOMING,
    "proposal_content": PREFER_INCOMING,
    "proposal_sha": PREFER_INCOMING,
    "main_proposal_path": PREFER_INCOMING,
    "pr_proposal_path": PREFER_INCOMING,
    "proposal_updated_at": PREFER_INCOMING,
    "source_stage": MOST_ADVANCED_STAGE,
    "last_pr_activity_at": KEEP_MAX,
    "last_activity_at": KEEP_MAX,
}

STAGE_RANK_SQL = "COALESCE(array_position(ARRAY['discussion', 'pr', 'main']::text[], {table}.source_stage), 0)"

SUMMARY_STATUS_SQL = """
    CASE
        WHEN s.id IS NULL THEN 'no_summary'
        WHEN pr.last_message_at > COALESCE(s.last_message_at, '-infinity'::timestamptz) THEN 'new_messages'
        WHEN pr.total_message_count <> s.message_count THEN 'message_count_changed'
        ELSE 'up_to_date'
    END
"""

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS simds (
        id TEXT PRIMARY KEY,
        slug TEXT,
        title TEXT NOT NULL DEFAULT 'Untitled Proposal',
        status TEXT NOT NULL DEFAULT 'Draft',
        summary TEXT,
        topics JSONB,
        conclusion TEXT,
        proposal_content TEXT,
        proposal_sha TEXT,
        source_stage TEXT CHECK (source_stage IN ('main', 'pr', 'discussion')),
        main_proposal_path TEXT,
        pr_proposal_path TEXT,
        proposal_updated_at TIMESTAMPTZ,
        last_pr_activity_at TIMESTAMPTZ,
        last_activity_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS simd_prs (
        id BIGSERIAL PRIMARY KEY,
        simd_id TEXT NOT NULL REFERENCES simds(id) ON DELETE CASCADE,
        pr_number INTEGER NOT NULL,
        pr_title TEXT NOT NULL,
        state TEXT NOT NULL CHECK (state IN ('open', 'closed', 'merged')),
        author TEXT,
        html_url TEXT,
        head_sha TEXT,
        base_ref TEXT,
        head_ref TEXT,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ,
        merged_at TIMESTAMPTZ,
        closed_at TIMESTAMPTZ,
        last_commit_at TIMESTAMPTZ,
        last_commit_sha TEXT,
        issue_comment_count INTEGER NOT NULL DEFAULT 0,
        review_comment_count INTEGER NOT NULL DEFAULT 0,
        review_count INTEGER NOT NULL DEFAULT 0,
        reviewer_logins JSONB NOT NULL DEFAULT '[]'::jsonb,
        proposal_file_path TEXT,
        total_message_count INTEGER NOT NULL DEFAULT 0,
        last_message_at TIMESTAMPTZ,
        UNIQUE (simd_id, pr_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS simd_messages (
        id BIGSERIAL PRIMARY KEY,
        simd_id TEXT NOT NULL,
        pr_number INTEGER NOT NULL,
        github_id BIGINT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('comment', 'review', 'commit')),
        author TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        body TEXT NOT NULL DEFAULT '',
        url TEXT,
        UNIQUE (simd_id, pr_number, github_id),
        FOREIGN KEY (simd_id, pr_number) REFERENCES simd_prs(simd_id, pr_number) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS simd_discussions (
        id BIGSERIAL PRIMARY KEY,
        simd_id TEXT,
        github_discussion_id TEXT NOT NULL UNIQUE,
        discussion_number INTEGER NOT NULL,
        title TEXT NOT NULL,
        url TEXT,
        author TEXT,
        body TEXT,
        created_at TIMESTAMPTZ,
        updated_at TIMESTAMPTZ,
        comment_count INTEGER NOT NULL DEFAULT 0,
        category_slug TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS simd_discussion_comments (
        id BIGSERIAL PRIMARY KEY,
        discussion_id BIGINT NOT NULL REFERENCES simd_discussions(id) ON DELETE CASCADE,
        github_comment_id TEXT NOT NULL UNIQUE,
        author TEXT,
        created_at TIMESTAMPTZ,
        body TEXT,
        url TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS simd_pr_summaries (
        id BIGSERIAL PRIMARY KEY,
        simd_id TEXT NOT NULL,
        pr_number INTEGER NOT NULL,
        summary TEXT NOT NULL,
        message_count INTEGER NOT NULL,
        last_message_at TIMESTAMPTZ,
        generated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        model TEXT NOT NULL,
        UNIQUE (simd_id, pr_number),
        FOREIGN KEY (simd_id, pr_number) REFERENCES simd_prs(simd_id, pr_number) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_jobs (
        id TEXT PRIMARY KEY,
        job_type TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('running', 'completed', 'failed')),
        started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        completed_at TIMESTAMPTZ,
        records_processed INTEGER NOT NULL DEFAULT 0,
        error_message TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_state (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_simds_last_activity ON simds(last_activity_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_simd_prs_state_updated ON simd_prs(state, updated_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_simd_messages_pr_created ON simd_messages(simd_id, pr_number, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_simd_discussions_simd ON simd_discussions(simd_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_sync_jobs_type_started ON sync_jobs(job_type, started_at DESC)
    """,
    f"""
    CREATE OR REPLACE VIEW prs_needing_summaries AS
    SELECT
        pr.simd_id,
        pr.pr_number,
        pr.pr_title,
        pr.state,
        pr.total_message_count,
        pr.last_message_at,
        s.message_count AS summary_message_count,
        s.last_message_at AS summary_last_message_at,
        s.generated_at AS summary_generated_at,
        {SUMMARY_STATUS_SQL} AS summary_status
    FROM simd_prs pr
    LEFT JOIN simd_pr_summaries s ON pr.simd_id = s.simd_id AND pr.pr_number = s.pr_number
    WHERE pr.state = 'open'
      AND pr.total_message_count > 0
    """,
]

PR_COLUMNS = (
    "simd_id",
    "pr_number",
    "pr_title",
    "state",
    "author",
    "html_url",
    "head_sha",
    "base_ref",
    "head_ref",
    "created_at",
    "updated_at",
    "merged_at",
    "closed_at",
    "last_commit_at",
    "last_commit_sha",
    "review_count",
    "reviewer_logins",
    "proposal_file_path",
)

PR_IMMUTABLE_COLUMNS = {"simd_id", "pr_number", "author", "created_at"}


def stage_rank(stage: str | None) -> int:
    return SOURCE_STAGES.index(stage) + 1 if stage in SOURCE_STAGES else 0


def blank_to_none(record: dict) -> dict:
    """Treat empty strings as unknown so they never overwrite known values."""
    return {key: (None if value == "" else value) for key, value in record.items()}


def merge_simd(existing: dict | None, incoming: dict) -> dict:
    """Reconcile an incoming SIMD observation with what is already known."""
    incoming = blank_to_none(incoming)
    if not existing:
        return dict(incoming)

    merged = dict(existing)
    for field, rule in SIMD_MERGE_RULES.items():
        if field not in incoming:
            continue
        new_value = incoming[field]
        old_value = existing.get(field)
        if rule == PREFER_INCOMING:
            merged[field] = new_value if new_value is not None else old_value
        elif rule == KEEP_MAX:
            known = [value for value in (old_value, new_value) if value is not None]
            merged[field] = max(known) if known else None
        elif rule == MOST_ADVANCED_STAGE:
            merged[field] = new_value if stage_rank(new_value) > stage_rank(old_value) else old_value
    return merged


def simd_merge_assignment(column: str) -> str:
    """Render the ON CONFLICT assignment for one SIMD column."""
    rule = SIMD_MERGE_RULES[column]
    if rule == PREFER_INCOMING:
        return f"{column} = COALESCE(EXCLUDED.{column}, simds.{column})"
    if rule == KEEP_MAX:
        return f"{column} = GREATEST(simds.{column}, EXCLUDED.{column})"
    excluded_rank = STAGE_RANK_SQL.format(table="EXCLUDED")
    existing_rank = STAGE_RANK_SQL.format(table="simds")
    return f"{column} = CASE WHEN {excluded_rank} > {existing_rank} THEN EXCLUDED.{column} ELSE simds.{column} END"


def simd_upsert_sql(columns: list[str]) -> str:
    """Build the merge-upsert statement for the given SIMD columns."""
    unknown = [column for column in columns if column != "id" and column not in SIMD_MERGE_RULES]
    if unknown:
        raise ValueError(f"Unknown SIMD columns: {', '.join(unknown)}")

    assignments = [simd_merge_assignment(column) for column in columns if column != "id"]
    assignments.append("updated_at = NOW()")
    placeholders = ", ".join(f"%({column})s" for column in columns)
    return (
        f"INSERT INTO simds ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT (id) DO UPDATE SET {', '.join(assignments)} "
        "RETURNING (xmax = 0) AS inserted"
    )


def adapt_simd_params(record: dict) -> dict:
    params = blank_to_none(record)
    if params.get("topics") is not None:
        params["topics"] = Jsonb(list(params["topics"]))
    return params


def get_db_connection(database_url: str = config.DATABASE_URL) -> psycopg.Connection:
    """Connect to Postgres."""
    conn = psycopg.connect(database_url)
    conn.autocommit = True
    return conn


class SimdStore:
    """Read/write access to the tracker tables over one connection."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        """Create schema if needed."""
        with self.conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)

    def ping(self) -> None:
        with self.conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()

    def try_lock(self, job_type: str) -> bool:
        """Prevent overlapping runs of the same engine."""
        with self.conn.cursor() as cur:
            cur.execute("SELECT pg_try_advisory_lock(%s, hashtext(%s))", (RUN_LOCK_KEY, job_type))
            locked = bool(cur.fetchone()[0])
        if not locked:
            logging.warning("Another %s run is already active", job_type)
        return locked

    def release_lock(self, job_type: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_unlock(%s, hashtext(%s))", (RUN_LOCK_KEY, job_type))

    def start_job(self, job_type: str) -> str:
        job_id = str(uuid.uuid4())
        with self.conn.cursor() as cur:
            cur.execute(
                "INSERT INTO sync_jobs (id, job_type, status, started_at) VALUES (%s, %s, 'running', NOW())",
                (job_id, job_type),
            )
        return job_id

    def complete_job(self, job_id: str, records_processed: int) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE sync_jobs
                SET status = 'completed', completed_at = NOW(), records_processed = %s
                WHERE id = %s
                """,
                (records_processed, job_id),
            )

    def fail_job(self, job_id: str, error_message: str, records_processed: int = 0) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE sync_jobs
                SET status = 'failed', completed_at = NOW(), records_processed = %s, error_message = %s
                WHERE id = %s
                """,
                (records_processed, error_message, job_id),
            )

    def get_cursor(self, job_type: str) -> datetime | None:
        """Read the high-water mark of the last complete run of an engine."""
        with self.conn.cursor() as cur:
            cur.execute("SELECT value FROM sync_state WHERE key = %s", (f"cursor:{job_type}",))
            row = cur.fetchone()
        if not row:
            return None
        return datetime.fromisoformat(row[0])

    def set_cursor(self, job_type: str, value: datetime) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO sync_state (key, value)
                VALUES (%s, %s)
                ON CONFLICT (key)
                DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                """,
                (f"cursor:{job_type}", value.isoformat()),
            )

    def get_simd(self, simd_id: str) -> dict | None:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT * FROM simds WHERE id = %s", (simd_id,))
            return cur.fetchone()

    def simd_exists(self, simd_id: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute("SELECT 1 FROM simds WHERE id = %s", (simd_id,))
            return cur.fetchone() is not None

    def upsert_simd(self, record: dict) -> bool:
        """Merge-upsert a SIMD observation; returns True when the row was created."""
        columns = ["id"] + [column for column in record if column != "id"]
        with self.conn.cursor() as cur:
            cur.execute(simd_upsert_sql(columns), adapt_simd_params(record))
            return bool(cur.fetchone()[0])

    def insert_simd_if_absent(self, record: dict) -> bool:
        """Create a SIMD only if no row exists yet; returns True when created."""
        params = adapt_simd_params(record)
        columns = ["id"] + [column for column in params if column != "id"]
        placeholders = ", ".join(f"%({column})s" for column in columns)
        with self.conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO simds ({', '.join(columns)}) VALUES ({placeholders}) "
                "ON CONFLICT (id) DO NOTHING RETURNING id",
                params,
            )
            return cur.fetchone() is not None

    def upsert_pull_request(self, row: dict) -> None:
        params = {column: row.get(column) for column in PR_COLUMNS}
        params["reviewer_logins"] = Jsonb(list(params["reviewer_logins"] or []))
        params["review_count"] = int(params["review_count"] or 0)
        assignments = ", ".join(
            f"{column} = EXCLUDED.{column}" for column in PR_COLUMNS if column not in PR_IMMUTABLE_COLUMNS
        )
        placeholders = ", ".join(f"%({column})s" for column in PR_COLUMNS)
        with self.conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO simd_prs ({', '.join(PR_COLUMNS)}) VALUES ({placeholders}) "
                f"ON CONFLICT (simd_id, pr_number) DO UPDATE SET {assignments}",
                params,
            )

    def upsert_message(self, message: dict) -> bool:
        """Insert a PR message or refresh its body; returns True when created."""
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO simd_messages (simd_id, pr_number, github_id, type, author, created_at, body, url)
                VALUES (%(simd_id)s, %(pr_number)s, %(github_id)s, %(type)s, %(author)s, %(created_at)s,
                        %(body)s, %(url)s)
                ON CONFLICT (simd_id, pr_number, github_id)
                DO UPDATE SET body = EXCLUDED.body
                RETURNING (xmax = 0) AS inserted
                """,
                message,
            )
            return bool(cur.fetchone()[0])

    def refresh_pr_message_stats(self, simd_id: str, pr_number: int) -> dict:
        """Recompute message aggregates for one PR from stored messages."""
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                UPDATE simd_prs pr
                SET total_message_count = stats.total,
                    last_message_at = stats.last_at,
                    issue_comment_count = stats.comments,
                    review_comment_count = stats.reviews
                FROM (
                    SELECT
                        COUNT(*) AS total,
                        MAX(created_at) AS last_at,
                        COUNT(*) FILTER (WHERE type = 'comment') AS comments,
                        COUNT(*) FILTER (WHERE type = 'review') AS reviews
                    FROM simd_messages
                    WHERE simd_id = %(simd_id)s AND pr_number = %(pr_number)s
                ) AS stats
                WHERE pr.simd_id = %(simd_id)s AND pr.pr_number = %(pr_number)s
                RETURNING pr.total_message_count, pr.last_message_at
                """,
                {"simd_id": simd_id, "pr_number": pr_number},
            )
            return cur.fetchone() or {"total_message_count": 0, "last_message_at": None}

    def upsert_discussion(self, row: dict) -> int:
        """Upsert a discussion keyed by its GitHub node id; returns the row id."""
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO simd_discussions (
                    simd_id, github_discussion_id, discussion_number, title, url, author, body,
                    created_at, updated_at, comment_count, category_slug
                ) VALUES (
                    %(simd_id)s, %(github_discussion_id)s, %(discussion_number)s, %(title)s, %(url)s,
                    %(author)s, %(body)s, %(created_at)s, %(updated_at)s, %(comment_count)s, %(category_slug)s
                )
                ON CONFLICT (github_discussion_id) DO UPDATE SET
                    simd_id = EXCLUDED.simd_id,
                    title = EXCLUDED.title,
                    body = EXCLUDED.body,
                    updated_at = EXCLUDED.updated_at,
                    comment_count = EXCLUDED.comment_count,
                    category_slug = EXCLUDED.category_slug
                RETURNING id
                """,
                row,
            )
            return cur.fetchone()[0]

    def upsert_discussion_comment(self, row: dict) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO simd_discussion_comments (discussion_id, github_comment_id, author, created_at, body, url)
                VALUES (%(discussion_id)s, %(github_comment_id)s, %(author)s, %(created_at)s, %(body)s, %(url)s)
                ON CONFLICT (github_comment_id) DO UPDATE SET body = EXCLUDED.body
                """,
                row,
            )

    def list_prs_needing_summaries(
        self,
        limit: int = config.SUMMARY_BATCH_LIMIT,
        refresh_hours: int = config.SUMMARY_REFRESH_HOURS,
    ) -> list[dict]:
        """Open PRs whose discussion summary is missing, stale, or due for a refresh."""
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT *
                FROM prs_needing_summaries
                WHERE summary_status IN ('no_summary', 'new_messages', 'message_count_changed')
                   OR (
                       summary_status = 'up_to_date'
                       AND summary_generated_at < NOW() - make_interval(hours => %(hours)s)
                       AND last_message_at > NOW() - make_interval(hours => %(hours)s)
                   )
                ORDER BY last_message_at DESC NULLS LAST
                LIMIT %(limit)s
                """,
                {"hours": refresh_hours, "limit": limit},
            )
            return [dict(row) for row in cur.fetchall()]

    def get_pr_summary(self, simd_id: str, pr_number: int) -> dict | None:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT summary, message_count, last_message_at, generated_at, model
                FROM simd_pr_summaries
                WHERE simd_id = %s AND pr_number = %s
                """,
                (simd_id, pr_number),
            )
            return cur.fetchone()

    def list_pr_messages(self, simd_id: str, pr_number: int, after: datetime | None = None) -> list[dict]:
        """Messages of a PR in chronological order, optionally only those after a timestamp."""
        query = """
            SELECT author, body, created_at
            FROM simd_messages
            WHERE simd_id = %(simd_id)s AND pr_number = %(pr_number)s
        """
        if after is not None:
            query += " AND created_at > %(after)s"
        query += " ORDER BY created_at ASC"
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, {"simd_id": simd_id, "pr_number": pr_number, "after": after})
            return [dict(row) for row in cur.fetchall()]

    def save_pr_summary(self, row: dict) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO simd_pr_summaries (
                    simd_id, pr_number, summary, message_count, last_message_at, generated_at, model
                ) VALUES (
                    %(simd_id)s, %(pr_number)s, %(summary)s, %(message_count)s, %(last_message_at)s, NOW(), %(model)s
                )
                ON CONFLICT (simd_id, pr_number) DO UPDATE SET
                    summary = EXCLUDED.summary,
                    message_count = EXCLUDED.message_count,
                    last_message_at = EXCLUDED.last_message_at,
                    generated_at = EXCLUDED.generated_at,
                    model = EXCLUDED.model
                """,
                row,
            )

    def update_summary_snapshot(
        self,
        simd_id: str,
        pr_number: int,
        message_count: int,
        last_message_at: datetime | None,
    ) -> None:
        """Move a summary's snapshot forward without regenerating its text."""
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE simd_pr_summaries
                SET message_count = %s, last_message_at = GREATEST(last_message_at, %s)
                WHERE simd_id = %s AND pr_number = %s
                """,
                (message_count, last_message_at, simd_id, pr_number),
            )

    def list_recent_proposals(self, since: datetime) -> list[dict]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT id, title, status, summary, topics, proposal_updated_at, main_proposal_path
                FROM simds
                WHERE source_stage = 'main' AND proposal_updated_at >= %s
                ORDER BY proposal_updated_at DESC
                """,
                (since,),
            )
            return [dict(row) for row in cur.fetchall()]

    def list_recent_pr_activity(self, since: datetime) -> list[dict]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT
                    p.simd_id,
                    p.pr_number,
                    p.pr_title,
                    p.html_url,
                    COALESCE(p.last_commit_at, p.updated_at) AS last_activity_at,
                    p.total_message_count,
                    s.title AS simd_title,
                    ps.summary AS discussion_summary
                FROM simd_prs p
                LEFT JOIN simds s ON p.simd_id = s.id
                LEFT JOIN simd_pr_summaries ps ON ps.simd_id = p.simd_id AND ps.pr_number = p.pr_number
                WHERE p.state = 'open'
                  AND COALESCE(p.last_commit_at, p.updated_at) >= %s
                ORDER BY COALESCE(p.last_commit_at, p.updated_at) DESC
                """,
                (since,),
            )
            return [dict(row) for row in cur.fetchall()]

    def list_recent_messages(self, since: datetime, exclude_authors: list[str]) -> list[dict]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT m.simd_id, m.pr_number, m.author, m.body, m.created_at, m.url, s.title AS simd_title
                FROM simd_messages m
                LEFT JOIN simds s ON m.simd_id = s.id
                WHERE m.created_at >= %s
                  AND NOT (m.author = ANY(%s))
                ORDER BY m.simd_id, m.created_at DESC
                """,
                (since, list(exclude_authors)),
            )
            return [dict(row) for row in cur.fetchall()]

    def list_recent_discussions(self, since: datetime) -> list[dict]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT simd_id, discussion_number, title, author, updated_at, comment_count, url
                FROM simd_discussions
                WHERE updated_at >= %s
                ORDER BY updated_at DESC
                """,
                (since,),
            )
            return [dict(row) for row in cur.fetchall()]
