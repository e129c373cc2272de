"""create faculty allocations and faculty loads

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


allocation_status = sa.Enum("active", "completed", name="allocation_status")


def upgrade() -> None:
    op.create_table(
        "faculty_allocations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("faculty_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", allocation_status, nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("faculty_id", "student_id", name="uq_faculty_allocations_pair"),
    )
    op.create_index("ix_faculty_allocations_faculty_id", "faculty_allocations", ["faculty_id"], unique=False)
    op.create_index(
        "uq_faculty_allocations_active_student",
        "faculty_allocations",
        ["student_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "faculty_loads",
        sa.Column("faculty_id", sa.String(length=36), sa.ForeignKey("users.id"), primary_key=True, nullable=False),
        sa.Column("active_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "active_count >= 0 AND active_count <= capacity",
            name="ck_faculty_loads_within_capacity",
        ),
    )


def downgrade() -> None:
    op.drop_table("faculty_loads")
    op.drop_index("uq_faculty_allocations_active_student", table_name="faculty_allocations")
    op.drop_index("ix_faculty_allocations_faculty_id", table_name="faculty_allocations")
    op.drop_table("faculty_allocations")
    allocation_status.drop(op.get_bind(), checkfirst=True)
