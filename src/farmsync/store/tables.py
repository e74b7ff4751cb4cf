"""SQLAlchemy table definitions for the farm bookkeeping store.

Every table is keyed by a string `id` supplied by the client, matching the
row shapes the application writes. Calendar dates are kept as ISO strings
(YYYY-MM-DD); audit and bookkeeping timestamps are timezone-aware datetimes.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

farm_metadata = MetaData()


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True)),
        Column("updated_at", DateTime(timezone=True)),
    ]


# Customer orders for dressed/live chickens
chickens = Table(
    "chickens",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("customer", String(255), nullable=False),
    Column("phone", String(64)),
    Column("location", String(255)),
    Column("count", Integer, nullable=False, default=0),
    Column("size", Float),
    Column("price", Float),
    Column("amount_paid", Float, default=0.0),
    Column("balance", Float, default=0.0),
    Column("status", String(32), index=True),
    Column("calculation_mode", String(32)),
    Column("batch_id", String(64), index=True),
    Column("date", String(10)),
    *_timestamps(),
)

live_chickens = Table(
    "live_chickens",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("batch_id", String(64), nullable=False, unique=True),
    Column("breed", String(128)),
    Column("initial_count", Integer, default=0),
    Column("current_count", Integer, default=0),
    Column("hatch_date", String(10)),
    Column("lifecycle_stage", String(32)),
    Column("stage_arrival_date", String(10)),
    Column("status", String(32), index=True),
    Column("mortality", Integer, default=0),
    Column("notes", Text),
    *_timestamps(),
)

feed_inventory = Table(
    "feed_inventory",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("feed_type", String(128), nullable=False),
    Column("brand", String(128)),
    Column("number_of_bags", Integer, default=0),
    Column("quantity_kg", Float, default=0.0),
    Column("remaining_kg", Float, default=0.0),
    Column("cost_per_bag", Float),
    Column("total_cost", Float),
    Column("supplier", String(255)),
    Column("purchase_date", String(10)),
    Column("expiry_date", String(10)),
    Column("status", String(32), index=True),
    *_timestamps(),
)

feed_consumption = Table(
    "feed_consumption",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("feed_id", String(64), index=True),
    Column("chicken_batch_id", String(64), index=True),
    Column("quantity_consumed", Float, nullable=False),
    Column("consumption_date", String(10)),
    Column("notes", Text),
    *_timestamps(),
)

dressed_chickens = Table(
    "dressed_chickens",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("batch_id", String(64), index=True),
    Column("processing_date", String(10)),
    Column("initial_count", Integer, default=0),
    Column("current_count", Integer, default=0),
    Column("average_weight", Float),
    Column("size_category", String(32)),
    Column("status", String(32), index=True),
    Column("storage_location", String(128)),
    Column("expiry_date", String(10)),
    Column("parts_count", JSON),
    Column("notes", Text),
    *_timestamps(),
)

transactions = Table(
    "transactions",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    # fund, expense, withdrawal, clear
    Column("type", String(32), nullable=False, index=True),
    Column("amount", Float, nullable=False),
    Column("description", Text),
    Column("date", String(10)),
    *_timestamps(),
)

balance = Table(
    "balance",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("amount", Float, nullable=False, default=0.0),
    *_timestamps(),
)

batch_relationships = Table(
    "batch_relationships",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("source_batch_id", String(64), index=True),
    Column("source_batch_type", String(32)),
    Column("target_batch_id", String(64), index=True),
    Column("target_batch_type", String(32)),
    Column("relationship_type", String(32)),
    Column("quantity", Integer),
    Column("notes", Text),
    *_timestamps(),
)

site_settings = Table(
    "site_settings",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("setting_key", String(128), unique=True, nullable=False),
    Column("setting_value", JSON),
    Column("is_public", Boolean, default=True),
    *_timestamps(),
)

audit_logs = Table(
    "audit_logs",
    farm_metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False),
    Column("action", String(32), nullable=False),
    Column("table_name", String(64), nullable=False),
    Column("record_id", String(64)),
    Column("old_values", Text),
    Column("new_values", Text),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_audit_logs_table_record", "table_name", "record_id"),
)
