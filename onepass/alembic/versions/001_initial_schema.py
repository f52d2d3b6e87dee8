"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000 UTC

Creates the three core tables:
  - users             (CMS staff accounts, bcrypt password hashes)
  - b2b_companies     (partner accounts: cumulative revenue, tier, wallet)
  - service_requests  (YeuCau: consultations and billable service work)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users table ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("avatar", sa.String(length=500), nullable=True, comment="Public URL of the uploaded avatar image"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)

    # --- b2b_companies table ---
    op.create_table(
        "b2b_companies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("tax_code", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("contact_name", sa.String(length=200), nullable=True),
        sa.Column("cumulative_revenue", sa.BigInteger(), nullable=False, comment="Sum of post-discount amounts of approved service requests (VND)"),
        sa.Column("tier", sa.String(length=20), nullable=False),
        sa.Column("wallet_balance", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_b2b_companies_wallet_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tax_code"),
    )

    # --- service_requests table ---
    op.create_table(
        "service_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("handler_id", sa.Integer(), nullable=True),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("area_code", sa.String(length=10), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("contact_method", sa.String(length=50), nullable=True, comment="Trực tiếp / Email / Gọi điện"),
        sa.Column("preferred_date", sa.String(length=20), nullable=True),
        sa.Column("preferred_time", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("category", sa.String(length=200), nullable=True),
        sa.Column("sub_category", sa.String(length=200), nullable=True),
        sa.Column("invoice_requested", sa.String(length=20), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=True, comment="Amount before discount (VND)"),
        sa.Column("wallet_deduction", sa.BigInteger(), nullable=False),
        sa.Column("discount_override", sa.String(length=10), nullable=True, comment="Explicit discount percent; wins over the company tier when non-empty"),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("discount_amount", sa.BigInteger(), nullable=True),
        sa.Column("post_discount_amount", sa.BigInteger(), nullable=True),
        sa.Column("code", sa.String(length=40), nullable=True, comment="{PREFIX}-{YYMMDD}-{Y|N}-{SEQ3}; immutable once assigned"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["b2b_companies.id"]),
        sa.ForeignKeyConstraint(["handler_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_service_requests_company_id"), "service_requests", ["company_id"], unique=False)
    op.create_index(op.f("ix_service_requests_handler_id"), "service_requests", ["handler_id"], unique=False)
    op.create_index(op.f("ix_service_requests_code"), "service_requests", ["code"], unique=True)


def downgrade() -> None:
    op.drop_index(op.f("ix_service_requests_code"), table_name="service_requests")
    op.drop_index(op.f("ix_service_requests_handler_id"), table_name="service_requests")
    op.drop_index(op.f("ix_service_requests_company_id"), table_name="service_requests")
    op.drop_table("service_requests")
    op.drop_table("b2b_companies")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_table("users")
