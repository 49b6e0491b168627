"""Initial schema: the five record collections plus audit_log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _record_columns() -> list[sa.Column]:
    # Text ids: cross-collection references are weak and not always valid UUIDs
    return [
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _option_columns(n: int) -> list[sa.Column]:
    return [
        sa.Column(f"title_option{n}", sa.String(300)),
        sa.Column(f"unit_price_option{n}", sa.Numeric(12, 2)),
        sa.Column(f"unit_weight_option{n}", sa.Numeric(12, 3)),
        sa.Column(f"total_price_option{n}", sa.String(50)),
        sa.Column(f"delivery_time_option{n}", sa.String(100)),
        sa.Column(f"description_option{n}", sa.Text()),
        sa.Column(f"image_option{n}", sa.Text()),
        sa.Column(f"image_option{n}_2", sa.Text()),
    ]


def _receiver_columns() -> list[sa.Column]:
    return [
        sa.Column("receiver_name", sa.String(200)),
        sa.Column("receiver_phone", sa.String(50)),
        sa.Column("receiver_address", sa.Text()),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("email", sa.String(255)),
        sa.Column("full_name", sa.String(200)),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("phone", sa.String(50)),
        sa.Column("country", sa.String(100)),
        sa.Column("city", sa.String(100)),
        sa.Column("address", sa.Text()),
        sa.Column("role", sa.String(50)),
        sa.Column("approve", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_record_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "quotations",
        sa.Column("quotation_id", sa.String(50), nullable=False, comment="Business reference, QT-<ms>"),
        sa.Column("user_id", sa.String(64)),
        sa.Column("product_name", sa.String(300), nullable=False),
        sa.Column("product_url", sa.Text()),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("image_url", sa.Text()),
        sa.Column("product_images", postgresql.ARRAY(sa.Text())),
        sa.Column("service_type", sa.String(100)),
        sa.Column("shipping_country", sa.String(100)),
        sa.Column("shipping_city", sa.String(100)),
        sa.Column("shipping_method", sa.String(20)),
        *_option_columns(1),
        *_option_columns(2),
        *_option_columns(3),
        sa.Column("selected_option", sa.Integer(), comment="1-based option index"),
        sa.Column("Quotation_fees", sa.Numeric(12, 2)),
        sa.Column("status", sa.String(20), server_default="Pending", nullable=False),
        *_receiver_columns(),
        *_record_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_quotations_quotation_id", "quotations", ["quotation_id"])
    op.create_index("ix_quotations_user_id", "quotations", ["user_id"])

    op.create_table(
        "payments",
        sa.Column("user_id", sa.String(64)),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), server_default="Pending", nullable=False),
        sa.Column("reference_number", sa.String(50)),
        sa.Column("quotation_ids", postgresql.JSONB(astext_type=sa.Text()), comment="Array or comma-delimited string"),
        sa.Column("proof_url", sa.Text()),
        sa.Column("payment_proof", sa.Text()),
        *_record_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_reference_number", "payments", ["reference_number"])

    op.create_table(
        "shipping",
        sa.Column("quotation_id", sa.String(64), comment="quotations.id"),
        sa.Column("user_id", sa.String(64)),
        sa.Column("status", sa.String(20), server_default="Waiting", nullable=False),
        sa.Column("location", sa.String(300)),
        sa.Column("images_urls", postgresql.ARRAY(sa.Text())),
        sa.Column("videos_urls", postgresql.ARRAY(sa.Text())),
        sa.Column("delivered_at", sa.DateTime(timezone=True)),
        sa.Column("estimated_delivery", sa.DateTime(timezone=True)),
        sa.Column("label", sa.String(300)),
        *_receiver_columns(),
        *_record_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_shipping_quotation_id", "shipping", ["quotation_id"])
    op.create_index("ix_shipping_user_id", "shipping", ["user_id"])

    op.create_table(
        "shipping_receivers",
        sa.Column("user_id", sa.String(64)),
        sa.Column("shipping_id", sa.String(64)),
        sa.Column("receiver_name", sa.String(200), nullable=False),
        sa.Column("receiver_phone", sa.String(50), nullable=False),
        sa.Column("receiver_address", sa.Text(), nullable=False),
        sa.Column("is_default", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_record_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_shipping_receivers_user_id", "shipping_receivers", ["user_id"])

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("collection", sa.String(50)),
        sa.Column("record_id", sa.String(64)),
        sa.Column("actor_id", sa.String(100)),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_record_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_record", "audit_log", ["collection", "record_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("shipping_receivers")
    op.drop_table("shipping")
    op.drop_table("payments")
    op.drop_table("quotations")
    op.drop_table("profiles")
