"""initial schema: users/rbac/audit, organizations, lists, collaboration, comments, notifications, chat

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())]
    if updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())
        )
    return cols


def upgrade() -> None:
    # ---------- users / rbac / audit ----------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_verified_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("current_organization_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("client_ip", sa.String(length=64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_user_email", sa.String(length=320), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=True),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("reason", sa.String(length=512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    # ---------- organizations ----------
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("size", sa.String(length=32), nullable=False, server_default="small"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_organizations_status", "organizations", ["status"])
    op.create_index("idx_organizations_created_by", "organizations", ["created_by_id"])

    with op.batch_alter_table("users") as batch:
        batch.create_foreign_key(
            "fk_users_current_organization_id",
            "organizations",
            ["current_organization_id"],
            ["id"],
            ondelete="SET NULL",
        )

    op.create_table(
        "organization_memberships",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="member"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("joined_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        *_timestamps(updated=False),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_org_membership_org_user"),
    )
    op.create_index("idx_org_memberships_user", "organization_memberships", ["user_id"])
    op.create_index("idx_org_memberships_role", "organization_memberships", ["role"])

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "slug", name="uq_teams_org_slug"),
    )
    op.create_index("idx_teams_organization", "teams", ["organization_id"])

    op.create_table(
        "team_memberships",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "organization_membership_id",
            sa.Integer(),
            sa.ForeignKey("organization_memberships.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_membership_team_user"),
    )
    op.create_index("idx_team_memberships_user", "team_memberships", ["user_id"])

    op.create_table(
        "organization_invitations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="member"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("invitation_token", sa.String(length=128), nullable=True, unique=True),
        sa.Column("invited_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("invitation_sent_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("invitation_expires_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("invitation_accepted_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "email", name="uq_org_invitations_org_email"),
    )
    op.create_index("idx_org_invitations_email", "organization_invitations", ["email"])
    op.create_index("idx_org_invitations_status", "organization_invitations", ["status"])

    # ---------- lists ----------
    op.create_table(
        "lists",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
        sa.Column("parent_list_id", sa.Integer(), sa.ForeignKey("lists.id", ondelete="CASCADE"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("list_type", sa.String(length=32), nullable=False, server_default="personal"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("public_permission", sa.String(length=32), nullable=False, server_default="public_read"),
        sa.Column("public_slug", sa.String(length=255), nullable=True, unique=True),
        sa.Column("color_theme", sa.String(length=32), nullable=False, server_default="blue"),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_lists_user_status", "lists", ["user_id", "status"])
    op.create_index("idx_lists_is_public", "lists", ["is_public"])
    op.create_index("idx_lists_organization", "lists", ["organization_id"])
    op.create_index("idx_lists_parent", "lists", ["parent_list_id"])

    op.create_table(
        "board_columns",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("list_id", sa.Integer(), sa.ForeignKey("lists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(updated=False),
    )
    op.create_index("idx_board_columns_list_position", "board_columns", ["list_id", "position"])

    op.create_table(
        "list_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("list_id", sa.Integer(), sa.ForeignKey("lists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("board_column_id", sa.Integer(), sa.ForeignKey("board_columns.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("item_type", sa.String(length=32), nullable=False, server_default="task"),
        sa.Column("priority", sa.String(length=32), nullable=False, server_default="medium"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("reminder_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("url", sa.String(length=2048), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_list_items_list_position", "list_items", ["list_id", "position"])
    op.create_index("idx_list_items_list_completed", "list_items", ["list_id", "completed"])
    op.create_index("idx_list_items_assigned_user", "list_items", ["assigned_user_id"])
    op.create_index("idx_list_items_due_date", "list_items", ["due_date"])

    op.create_table(
        "time_entries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("list_item_id", sa.Integer(), sa.ForeignKey("list_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("duration", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("idx_time_entries_item", "time_entries", ["list_item_id"])

    # ---------- collaboration ----------
    op.create_table(
        "collaborators",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("collaboratable_type", sa.String(length=32), nullable=False),
        sa.Column("collaboratable_id", sa.Integer(), nullable=False),
        sa.Column("list_id", sa.Integer(), sa.ForeignKey("lists.id", ondelete="CASCADE"), nullable=True),
        sa.Column("list_item_id", sa.Integer(), sa.ForeignKey("list_items.id", ondelete="CASCADE"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission", sa.String(length=16), nullable=False, server_default="read"),
        sa.Column("granted_roles", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("collaboratable_type", "collaboratable_id", "user_id", name="uq_collaborators_target_user"),
    )
    op.create_index("idx_collaborators_user", "collaborators", ["user_id"])
    op.create_index("idx_collaborators_target", "collaborators", ["collaboratable_type", "collaboratable_id"])

    op.create_table(
        "invitations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("invitable_type", sa.String(length=32), nullable=False),
        sa.Column("invitable_id", sa.Integer(), nullable=False),
        sa.Column("list_id", sa.Integer(), sa.ForeignKey("lists.id", ondelete="CASCADE"), nullable=True),
        sa.Column("list_item_id", sa.Integer(), sa.ForeignKey("list_items.id", ondelete="CASCADE"), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("invited_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True),
        sa.Column("permission", sa.String(length=16), nullable=False, server_default="read"),
        sa.Column("granted_roles", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("invitation_token", sa.String(length=128), nullable=True, unique=True),
        sa.Column("invitation_sent_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("invitation_expires_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("invitation_accepted_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("invitable_type", "invitable_id", "email", name="uq_invitations_target_email"),
    )
    op.create_index("idx_invitations_email", "invitations", ["email"])
    op.create_index("idx_invitations_status", "invitations", ["status"])
    op.create_index("idx_invitations_target", "invitations", ["invitable_type", "invitable_id"])

    # ---------- comments ----------
    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("commentable_type", sa.String(length=32), nullable=False),
        sa.Column("commentable_id", sa.Integer(), nullable=False),
        sa.Column("list_id", sa.Integer(), sa.ForeignKey("lists.id", ondelete="CASCADE"), nullable=True),
        sa.Column("list_item_id", sa.Integer(), sa.ForeignKey("list_items.id", ondelete="CASCADE"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_comments_target", "comments", ["commentable_type", "commentable_id"])
    op.create_index("idx_comments_user", "comments", ["user_id"])

    # ---------- notifications ----------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("notification_type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("target_type", sa.String(length=32), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("params_json", sa.JSON(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("seen_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("idx_notifications_recipient_read", "notifications", ["recipient_id", "read_at"])
    op.create_index("idx_notifications_type", "notifications", ["notification_type"])

    op.create_table(
        "notification_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("email_notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_notifications", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("push_notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("collaboration_notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("list_activity_notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("item_activity_notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status_change_notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notification_frequency", sa.String(length=32), nullable=False, server_default="immediate"),
        sa.Column("quiet_hours_start", sa.Time(), nullable=True),
        sa.Column("quiet_hours_end", sa.Time(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        *_timestamps(),
    )
    op.create_index("idx_notification_settings_frequency", "notification_settings", ["notification_frequency"])

    # ---------- chat ----------
    op.create_table(
        "chats",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("model_id", sa.String(length=128), nullable=True),
        sa.Column("focused_resource_type", sa.String(length=32), nullable=True),
        sa.Column("focused_resource_id", sa.Integer(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_chats_user_status", "chats", ["user_id", "status"])
    op.create_index("idx_chats_last_message_at", "chats", ["last_message_at"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("chat_id", sa.Integer(), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("token_count", sa.Integer(), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("processing_time", sa.Numeric(8, 3), nullable=True),
        sa.Column("llm_model", sa.String(length=128), nullable=True),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("template_type", sa.String(length=64), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("idx_messages_chat_created", "messages", ["chat_id", "created_at"])
    op.create_index("idx_messages_chat_role", "messages", ["chat_id", "role"])
    op.create_index("idx_messages_user", "messages", ["user_id"])

    op.create_table(
        "message_feedbacks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chat_id", sa.Integer(), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rating", sa.String(length=16), nullable=False),
        sa.Column("feedback_type", sa.String(length=32), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_feedbacks_message_user"),
    )
    op.create_index("idx_message_feedbacks_chat", "message_feedbacks", ["chat_id"])
    op.create_index("idx_message_feedbacks_rating", "message_feedbacks", ["rating"])


def downgrade() -> None:
    for table in (
        "message_feedbacks",
        "messages",
        "chats",
        "notification_settings",
        "notifications",
        "comments",
        "invitations",
        "collaborators",
        "time_entries",
        "list_items",
        "board_columns",
        "lists",
        "organization_invitations",
        "team_memberships",
        "teams",
        "organization_memberships",
    ):
        op.drop_table(table)
    with op.batch_alter_table("users") as batch:
        batch.drop_constraint("fk_users_current_organization_id", type_="foreignkey")
    for table in ("organizations", "audit_events", "role_permissions", "user_roles", "permissions", "roles", "users"):
        op.drop_table(table)
