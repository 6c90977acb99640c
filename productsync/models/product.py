from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from sqlmodel import Field
from .base import SyncModel

class ProductBase(SyncModel):
    """Campos de negócio de um item de lista de preços."""
    part_number: str = Field(index=True, max_length=255)
    item_name: Optional[str] = Field(default=None, max_length=255)

    license_agreement_type: Optional[str] = Field(default=None)
    program_name: Optional[str] = Field(default=None)
    offering_name: Optional[str] = Field(default=None)
    level: Optional[str] = Field(default=None)

    purchase_unit: Optional[str] = Field(default=None)
    purchase_period: Optional[str] = Field(default=None)
    product_family: Optional[str] = Field(default=None)
    product_type: Optional[str] = Field(default=None)

    net_price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    currency_code: str = Field(default="USD", max_length=3)
    change_date: Optional[datetime] = Field(default=None)

    price_list_id: str = Field(index=True, max_length=255)

class Product(ProductBase, table=True):
    """Cópia local (SQLite) do produto."""
    __tablename__ = "products"

    # True = esta cópia tem edições ainda não enviadas ao servidor
    is_modified_locally: bool = Field(default=True, index=True)

# Colunas trafegadas entre os bancos (tudo menos o controle local)
BUSINESS_FIELDS: List[str] = [
    "part_number", "item_name", "license_agreement_type", "program_name",
    "offering_name", "level", "purchase_unit", "purchase_period",
    "product_family", "product_type", "net_price", "currency_code",
    "change_date", "price_list_id",
]

SHARED_FIELDS: List[str] = [
    "id", "version", "created_at", "updated_at", "last_synced_at", "deleted_at",
    *BUSINESS_FIELDS,
]
