"""archive flag, single running entry per task, whatsapp group routing

Revision ID: 0002_archive_and_groups
Revises: 0001_initial
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = "0002_archive_and_groups"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def _has_column(table: str, column: str) -> bool:
    insp = inspect(op.get_bind())
    return column in [c["name"] for c in insp.get_columns(table)]


def _has_index(table: str, name: str) -> bool:
    insp = inspect(op.get_bind())
    return name in [i["name"] for i in insp.get_indexes(table)]


def upgrade():
    if not _has_column("time_entries", "is_archived"):
        op.add_column(
            "time_entries",
            sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        )
        # closed entries (end_time set, not running) are finished history
        op.execute(
            "UPDATE time_entries SET is_archived = "
            + ("1" if op.get_bind().dialect.name == "sqlite" else "true")
            + " WHERE end_time IS NOT NULL AND duration IS NOT NULL"
        )

    if not _has_index("time_entries", "uq_time_entries_running_task"):
        op.create_index(
            "uq_time_entries_running_task",
            "time_entries",
            ["task_id"],
            unique=True,
            sqlite_where=sa.text("is_running = 1"),
            postgresql_where=sa.text("is_running"),
        )

    if not _has_column("whatsapp_integrations", "response_mode"):
        op.add_column(
            "whatsapp_integrations",
            sa.Column("response_mode", sa.String(20), nullable=False, server_default="individual"),
        )
    if not _has_column("whatsapp_integrations", "allowed_group_jid"):
        op.add_column("whatsapp_integrations", sa.Column("allowed_group_jid", sa.String(), nullable=True))


def downgrade():
    if _has_column("whatsapp_integrations", "allowed_group_jid"):
        op.drop_column("whatsapp_integrations", "allowed_group_jid")
    if _has_column("whatsapp_integrations", "response_mode"):
        op.drop_column("whatsapp_integrations", "response_mode")
    if _has_index("time_entries", "uq_time_entries_running_task"):
        op.drop_index("uq_time_entries_running_task", table_name="time_entries")
    if _has_column("time_entries", "is_archived"):
        op.drop_column("time_entries", "is_archived")
