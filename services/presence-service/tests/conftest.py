import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest

SERVICE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if SERVICE_DIR not in sys.path:
    sys.path.insert(0, SERVICE_DIR)

REPO_ROOT = os.path.abspath(os.path.join(SERVICE_DIR, "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

# Provide defaults for settings imports in this service
os.environ.setdefault("SERVICE_NAME", "presence-service")
os.environ.setdefault("SERVICE_VERSION", "0.1.0")
os.environ.setdefault("NODE_NAME", "test")
os.environ.setdefault("TRANSACTION_BUS_ENABLED", "false")
os.environ.setdefault("PRESENCE_TIMEZONE", "Australia/Melbourne")
os.environ.setdefault("OFFICETRACKER_BASE_URL", "https://officetracker.test")
os.environ.setdefault("NOTIFY_WEBHOOK_URL", "")
os.environ.setdefault("STATE_CACHE_REDIS_URL", "")

from inoffice.schemas.transaction import Transaction  # noqa: E402

# Tuesday 2024-05-14 08:30 in Melbourne (AEST, +10:00)
TUESDAY_0830 = datetime.fromisoformat("2024-05-14T08:30:00+10:00")
TUESDAY_1700_UTC = datetime(2024, 5, 14, 7, 0, tzinfo=timezone.utc)


class FakeRedis:
    """In-memory stand-in for the two redis.asyncio calls the store makes."""

    def __init__(self, *, fail: bool = False):
        self.data: Dict[str, bytes] = {}
        self.fail = fail
        self.writes = 0

    async def get(self, key: str) -> Optional[bytes]:
        if self.fail:
            raise ConnectionError("redis down")
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> bool:
        if self.fail:
            raise ConnectionError("redis down")
        self.data[key] = value
        self.writes += 1
        return True

    async def aclose(self) -> None:
        return None


def make_tx(**overrides) -> Transaction:
    fields = {
        "id": "tx-1",
        "amount": -550,
        "created_at": TUESDAY_0830,
        "description": "Market Lane Coffee",
        "is_foreign": False,
        "category_id": "restaurants-and-cafes",
    }
    fields.update(overrides)
    return Transaction(**fields)


def event_body(tx: Transaction) -> Dict[str, Any]:
    relationships: Dict[str, Any] = {"category": {"data": None}}
    if tx.category_id is not None:
        relationships["category"] = {"data": {"type": "categories", "id": tx.category_id}}
    return {
        "transaction": {
            "type": "transactions",
            "id": tx.id,
            "attributes": {
                "description": tx.description,
                "amount": {
                    "currencyCode": tx.currency_code,
                    "value": f"{tx.amount / 100:.2f}",
                    "valueInBaseUnits": tx.amount,
                },
                "foreignAmount": None,
                "createdAt": tx.created_at.isoformat(),
            },
            "relationships": relationships,
        },
        "account": {"type": "accounts", "id": "acc-1"},
    }


@pytest.fixture
def tx_factory():
    return make_tx


@pytest.fixture
def fake_redis():
    return FakeRedis()
