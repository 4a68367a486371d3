"""Bank transaction models.

Wire models follow the bank's JSON:API webhook shape::

    {
      "transaction": {
        "type": "transactions",
        "id": "...",
        "attributes": {
          "description": "Market Lane Coffee",
          "amount": {"currencyCode": "AUD", "value": "-5.50", "valueInBaseUnits": -550},
          "foreignAmount": null,
          "createdAt": "2024-05-14T08:30:00+10:00"
        },
        "relationships": {"category": {"data": {"type": "categories", "id": "restaurants-and-cafes"}}}
      },
      "account": {"type": "accounts", "id": "..."}
    }

`Transaction` is the flattened, immutable view the presence engine works on.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ensure_aware(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class MoneyObject(_Wire):
    currency_code: str = Field("AUD", alias="currencyCode")
    value: Optional[str] = None
    value_in_base_units: int = Field(..., alias="valueInBaseUnits")


class TransactionAttributes(_Wire):
    status: Optional[str] = None
    raw_text: Optional[str] = Field(None, alias="rawText")
    description: str = ""
    message: Optional[str] = None
    amount: MoneyObject
    foreign_amount: Optional[MoneyObject] = Field(None, alias="foreignAmount")
    settled_at: Optional[datetime] = Field(None, alias="settledAt")
    created_at: datetime = Field(..., alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def _ensure_tz(cls, v: datetime) -> datetime:
        return _ensure_aware(v)


class ResourceIdentifier(_Wire):
    type: str = ""
    id: str


class RelationshipData(_Wire):
    data: Optional[ResourceIdentifier] = None


class TransactionRelationships(_Wire):
    account: Optional[RelationshipData] = None
    category: Optional[RelationshipData] = None
    parent_category: Optional[RelationshipData] = Field(None, alias="parentCategory")


class TransactionResource(_Wire):
    type: str = "transactions"
    id: str = ""
    attributes: TransactionAttributes
    relationships: TransactionRelationships = Field(default_factory=TransactionRelationships)

    def to_transaction(self) -> "Transaction":
        category = self.relationships.category
        category_id = category.data.id if category is not None and category.data is not None else None
        return Transaction(
            id=self.id,
            amount=self.attributes.amount.value_in_base_units,
            currency_code=self.attributes.amount.currency_code,
            created_at=self.attributes.created_at,
            description=self.attributes.description,
            is_foreign=self.attributes.foreign_amount is not None,
            category_id=category_id,
        )


class AccountResource(_Wire):
    type: str = "accounts"
    id: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)


class TransactionEvent(_Wire):
    """Body of the webhook / bus message: one transaction plus its account."""

    transaction: TransactionResource
    account: Optional[AccountResource] = None


class Transaction(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = ""
    amount: int = Field(..., description="Signed minor units; negative is money spent.")
    currency_code: str = "AUD"
    created_at: datetime
    description: str = ""
    is_foreign: bool = False
    category_id: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def _ensure_tz(cls, v: datetime) -> datetime:
        return _ensure_aware(v)
