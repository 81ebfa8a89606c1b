"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Crawl jobs
    op.create_table(
        "crawl_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("max_depth", sa.Integer(), server_default="3"),
        sa.Column("max_time_minutes", sa.Integer(), server_default="60"),
        sa.Column("politeness_delay_ms", sa.Integer(), server_default="1000"),
        sa.Column("max_urls_per_host", sa.Integer(), server_default="100"),
        sa.Column("auto_mode", sa.Boolean(), server_default=sa.false()),
        sa.Column("schedule_cron", sa.String(100)),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("topology_id", sa.String(255)),
        sa.Column("urls_crawled", sa.Integer(), server_default="0"),
        sa.Column("urls_discovered", sa.Integer(), server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_crawl_jobs_status", "crawl_jobs", ["status"])
    op.create_index("ix_crawl_jobs_created_at", "crawl_jobs", ["created_at"])

    # Seed URLs
    op.create_table(
        "seed_urls",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("crawl_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.Text(), nullable=False),
    )
    op.create_index("ix_seed_urls_job_id", "seed_urls", ["job_id"])

    # Crawl stat snapshots
    op.create_table(
        "crawl_stats",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("crawl_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("urls_fetched", sa.Integer(), server_default="0"),
        sa.Column("urls_failed", sa.Integer(), server_default="0"),
        sa.Column("bytes_downloaded", sa.BigInteger(), server_default="0"),
        sa.Column("avg_fetch_time_ms", sa.Float(), server_default="0.0"),
    )
    op.create_index("ix_crawl_stats_job_id", "crawl_stats", ["job_id"])
    op.create_index("ix_crawl_stats_timestamp", "crawl_stats", ["timestamp"])


def downgrade() -> None:
    op.drop_table("crawl_stats")
    op.drop_table("seed_urls")
    op.drop_table("crawl_jobs")
