"""
Schema do banco remoto (PostgreSQL).

Fica num MetaData separado do SQLModel porque a tabela tem o mesmo nome
("products") da tabela local, mas sem `is_modified_locally` e com o
conjunto de confirmações (acknowledgments) por nó.
"""
from sqlalchemy import (
    Column, DateTime, Integer, MetaData, Numeric, PrimaryKeyConstraint,
    String, Table, ForeignKey,
)

remote_metadata = MetaData()

remote_products = Table(
    "products",
    remote_metadata,
    Column("id", String(36), primary_key=True),
    Column("part_number", String(255), nullable=False, index=True),
    Column("item_name", String(255)),
    Column("license_agreement_type", String),
    Column("program_name", String),
    Column("offering_name", String),
    Column("level", String),
    Column("purchase_unit", String),
    Column("purchase_period", String),
    Column("product_family", String),
    Column("product_type", String),
    Column("net_price", Numeric(10, 2), nullable=False),
    Column("currency_code", String(3), nullable=False),
    Column("change_date", DateTime),
    Column("price_list_id", String(255), nullable=False, index=True),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False, index=True),
    Column("last_synced_at", DateTime),
    Column("deleted_at", DateTime, index=True),
)

# Conjunto "acknowledgedBy": só cresce (INSERT ... ON CONFLICT DO NOTHING)
product_acknowledgments = Table(
    "product_acknowledgments",
    remote_metadata,
    Column("product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("node_id", String(64), nullable=False),
    PrimaryKeyConstraint("product_id", "node_id"),
)
