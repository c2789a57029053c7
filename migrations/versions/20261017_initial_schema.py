"""create users, bird_identifications, bird_sightings and events

Revision ID: 20261017_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False, unique=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column(
            "subscription_plan",
            sa.String(),
            nullable=False,
            server_default="free",
        ),
        sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column(
            "daily_identifications_count",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("last_identification_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )
    op.create_index(
        "ix_users_stripe_customer_id",
        "users",
        ["stripe_customer_id"],
    )

    op.create_table(
        "bird_identifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("image_url", sa.String(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=False),
        sa.Column(
            "identified_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_bird_identifications_user_identified",
        "bird_identifications",
        ["user_id", "identified_at"],
    )

    op.create_table(
        "bird_sightings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bird_name", sa.String(), nullable=False),
        sa.Column("scientific_name", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("latitude", sa.String(), nullable=True),
        sa.Column("longitude", sa.String(), nullable=True),
        sa.Column(
            "sighting_date",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column(
            "identification_id",
            sa.Integer(),
            sa.ForeignKey("bird_identifications.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "is_offline",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
    )
    op.create_index(
        "idx_bird_sightings_user_date",
        "bird_sightings",
        ["user_id", "sighting_date"],
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )


def downgrade() -> None:
    op.drop_table("events")
    op.drop_index("idx_bird_sightings_user_date", table_name="bird_sightings")
    op.drop_table("bird_sightings")
    op.drop_index(
        "idx_bird_identifications_user_identified",
        table_name="bird_identifications",
    )
    op.drop_table("bird_identifications")
    op.drop_index("ix_users_stripe_customer_id", table_name="users")
    op.drop_table("users")
