"""
Neon PostgreSQL repository.

Talks to Neon's SQL-over-HTTP endpoint with $1-style parameters. The
schema enforces the storage invariants directly: one listing per payment
(unique payment_id), one active listing per property (partial unique
index), and unique order ids.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .errors import ActiveListingConflictError, DatabaseError, DuplicateOrderError
from .models import (
    BillingDetails,
    ListingStatus,
    PaymentRecord,
    PaymentStatus,
    PremiumAnalytics,
    PremiumFeature,
    PremiumListing,
    PremiumPlan,
)
from .repository import PremiumRepository

logger = logging.getLogger(__name__)

DEFAULT_NEON_ENDPOINT = "https://console.neon.tech/sql"
UNIQUE_VIOLATION = "23505"
ONE_ACTIVE_INDEX = "premium_listings_one_active"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS premium_plans (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        price NUMERIC(12, 2) NOT NULL CHECK (price > 0),
        currency TEXT NOT NULL,
        duration_days INTEGER NOT NULL CHECK (duration_days > 0),
        features JSONB NOT NULL DEFAULT '[]',
        description TEXT NOT NULL DEFAULT '',
        active BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS premium_payments (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL UNIQUE,
        amount NUMERIC(12, 2) NOT NULL,
        currency TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        payment_method TEXT,
        payment_channel TEXT,
        invoice_id TEXT,
        transaction_id TEXT,
        billing_details JSONB NOT NULL DEFAULT '{}',
        metadata JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS premium_payments_invoice_idx ON premium_payments (invoice_id)",
    """
    CREATE TABLE IF NOT EXISTS premium_listings (
        id TEXT PRIMARY KEY,
        property_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        plan JSONB NOT NULL,
        status TEXT NOT NULL,
        start_date TIMESTAMPTZ NOT NULL,
        end_date TIMESTAMPTZ NOT NULL,
        payment_id TEXT NOT NULL UNIQUE REFERENCES premium_payments (id),
        features JSONB NOT NULL DEFAULT '[]',
        analytics JSONB NOT NULL DEFAULT '{}',
        analytics_version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS {ONE_ACTIVE_INDEX}
        ON premium_listings (property_id) WHERE status = 'active'
    """,
    "CREATE INDEX IF NOT EXISTS premium_listings_user_idx ON premium_listings (user_id)",
    """
    CREATE TABLE IF NOT EXISTS premium_properties (
        property_id TEXT PRIMARY KEY,
        is_premium BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)


class NeonDatabase:
    """Neon PostgreSQL client using SQL over HTTP."""

    def __init__(
        self,
        connection_string: str,
        endpoint: str = DEFAULT_NEON_ENDPOINT,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.connection_string = connection_string
        self.endpoint = endpoint
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(self, query: str, params: Optional[List[Any]] = None) -> Dict[str, Any]:
        """
        Execute one statement.

        Returns:
            Query result with fields, rows, rowCount
        """
        headers = {
            "Content-Type": "application/json",
            "Neon-Connection-String": self.connection_string,
        }
        body: Dict[str, Any] = {"query": query}
        if params:
            body["params"] = params

        try:
            response = await self._client.post(self.endpoint, json=body, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Database unreachable: {e}")
            raise DatabaseError(f"Database unreachable: {e}")

        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = {"message": response.text}
            raise DatabaseError(
                f"Database error: {detail.get('message', response.status_code)}",
                code=detail.get("code"),
                constraint=detail.get("constraint"),
            )
        return response.json()

    async def fetch(self, query: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        result = await self.execute(query, params)
        return result.get("rows", [])

    async def fetch_one(self, query: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self.fetch(query, params)
        return rows[0] if rows else None

    async def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            await self.execute(statement)
        logger.info("Premium schema ready")


def _json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def plan_from_row(row: Dict[str, Any]) -> PremiumPlan:
    return PremiumPlan(
        id=row["id"],
        name=row["name"],
        price=Decimal(str(row["price"])),
        currency=row["currency"],
        duration_days=int(row.get("duration_days", row.get("duration"))),
        features=tuple(_json(row.get("features")) or ()),
        description=row.get("description") or "",
        active=row.get("active", True),
    )


def payment_from_row(row: Dict[str, Any]) -> PaymentRecord:
    return PaymentRecord(
        id=row["id"],
        order_id=row["order_id"],
        amount=Decimal(str(row["amount"])),
        currency=row["currency"],
        billing_details=BillingDetails.from_dict(_json(row.get("billing_details")) or {}),
        status=PaymentStatus(row["status"]),
        payment_method=row.get("payment_method"),
        payment_channel=row.get("payment_channel"),
        invoice_id=row.get("invoice_id"),
        transaction_id=row.get("transaction_id"),
        metadata=_json(row.get("metadata")) or {},
        created_at=_ts(row["created_at"]),
        updated_at=_ts(row["updated_at"]),
    )


def listing_from_row(row: Dict[str, Any]) -> PremiumListing:
    return PremiumListing(
        id=row["id"],
        property_id=row["property_id"],
        user_id=row["user_id"],
        plan=plan_from_row(_json(row["plan"])),
        status=ListingStatus(row["status"]),
        start_date=_ts(row["start_date"]),
        end_date=_ts(row["end_date"]),
        payment_id=row["payment_id"],
        features=tuple(PremiumFeature(**f) for f in _json(row.get("features")) or ()),
        analytics=PremiumAnalytics.from_dict(_json(row.get("analytics"))),
        analytics_version=int(row.get("analytics_version") or 0),
        created_at=_ts(row["created_at"]),
        updated_at=_ts(row["updated_at"]),
    )


class NeonPremiumRepository(PremiumRepository):
    def __init__(self, db: NeonDatabase):
        self.db = db

    async def fetch_plans(self, active_only: bool = True) -> List[PremiumPlan]:
        where = "WHERE active = TRUE " if active_only else ""
        rows = await self.db.fetch(f"SELECT * FROM premium_plans {where}ORDER BY price ASC")
        return [plan_from_row(r) for r in rows]

    async def insert_payment(self, record: PaymentRecord) -> PaymentRecord:
        row = await self.db.fetch_one(
            """
            INSERT INTO premium_payments
                (id, order_id, amount, currency, status, payment_method, payment_channel,
                 invoice_id, transaction_id, billing_details, metadata, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (order_id) DO NOTHING
            RETURNING *
            """,
            [
                record.id,
                record.order_id,
                str(record.amount),
                record.currency,
                record.status.value,
                record.payment_method,
                record.payment_channel,
                record.invoice_id,
                record.transaction_id,
                json.dumps(record.billing_details.to_dict()),
                json.dumps(record.metadata),
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
            ],
        )
        if row is None:
            raise DuplicateOrderError(f"Order id already used: {record.order_id}")
        return payment_from_row(row)

    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        row = await self.db.fetch_one("SELECT * FROM premium_payments WHERE id = $1", [payment_id])
        return payment_from_row(row) if row else None

    async def find_payment_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        row = await self.db.fetch_one("SELECT * FROM premium_payments WHERE order_id = $1", [order_id])
        return payment_from_row(row) if row else None

    async def find_payment_by_invoice_id(self, invoice_id: str) -> Optional[PaymentRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM premium_payments WHERE invoice_id = $1 ORDER BY created_at DESC LIMIT 1",
            [invoice_id],
        )
        return payment_from_row(row) if row else None

    async def update_payment_if_pending(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        row = await self.db.fetch_one(
            """
            UPDATE premium_payments
            SET status = $2,
                transaction_id = COALESCE($3, transaction_id),
                invoice_id = COALESCE($4, invoice_id),
                payment_method = COALESCE($5, payment_method),
                payment_channel = COALESCE($6, payment_channel),
                updated_at = NOW()
            WHERE id = $1 AND status = 'pending'
            RETURNING *
            """,
            [payment_id, PaymentStatus(status).value, transaction_id, invoice_id, payment_method, payment_channel],
        )
        return payment_from_row(row) if row else None

    async def list_payments(
        self, payment_ids: Optional[Iterable[str]] = None, status: Optional[PaymentStatus] = None
    ) -> List[PaymentRecord]:
        conditions: List[str] = []
        params: List[Any] = []
        if payment_ids is not None:
            ids = list(payment_ids)
            if not ids:
                return []
            placeholders = ", ".join(f"${len(params) + i + 1}" for i in range(len(ids)))
            conditions.append(f"id IN ({placeholders})")
            params.extend(ids)
        if status is not None:
            params.append(PaymentStatus(status).value)
            conditions.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        rows = await self.db.fetch(f"SELECT * FROM premium_payments {where}ORDER BY created_at ASC", params)
        return [payment_from_row(r) for r in rows]

    async def insert_listing(self, listing: PremiumListing) -> PremiumListing:
        try:
            row = await self.db.fetch_one(
                """
                INSERT INTO premium_listings
                    (id, property_id, user_id, plan, status, start_date, end_date, payment_id,
                     features, analytics, analytics_version, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                ON CONFLICT (payment_id) DO NOTHING
                RETURNING *
                """,
                [
                    listing.id,
                    listing.property_id,
                    listing.user_id,
                    json.dumps(_plan_json(listing.plan)),
                    listing.status.value,
                    listing.start_date.isoformat(),
                    listing.end_date.isoformat(),
                    listing.payment_id,
                    json.dumps([_feature_json(f) for f in listing.features]),
                    json.dumps(listing.analytics.to_dict()),
                    listing.analytics_version,
                    listing.created_at.isoformat(),
                    listing.updated_at.isoformat(),
                ],
            )
        except DatabaseError as e:
            if e.code == UNIQUE_VIOLATION and e.constraint == ONE_ACTIVE_INDEX:
                raise ActiveListingConflictError(
                    f"Property {listing.property_id} already has an active premium listing"
                )
            raise
        if row is None:
            existing = await self.find_listing_by_payment(listing.payment_id)
            if existing is None:
                raise DatabaseError(f"Listing insert for payment {listing.payment_id} returned nothing")
            return existing
        return listing_from_row(row)

    async def get_listing(self, listing_id: str) -> Optional[PremiumListing]:
        row = await self.db.fetch_one("SELECT * FROM premium_listings WHERE id = $1", [listing_id])
        return listing_from_row(row) if row else None

    async def find_listing_by_payment(self, payment_id: str) -> Optional[PremiumListing]:
        row = await self.db.fetch_one("SELECT * FROM premium_listings WHERE payment_id = $1", [payment_id])
        return listing_from_row(row) if row else None

    async def list_listings(
        self,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[ListingStatus] = None,
    ) -> List[PremiumListing]:
        conditions: List[str] = []
        params: List[Any] = []
        for column, value in (("property_id", property_id), ("user_id", user_id)):
            if value is not None:
                params.append(value)
                conditions.append(f"{column} = ${len(params)}")
        if status is not None:
            params.append(ListingStatus(status).value)
            conditions.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        rows = await self.db.fetch(f"SELECT * FROM premium_listings {where}ORDER BY start_date ASC", params)
        return [listing_from_row(r) for r in rows]

    async def expire_listings(self, now: datetime) -> List[PremiumListing]:
        rows = await self.db.fetch(
            """
            UPDATE premium_listings
            SET status = 'expired', updated_at = $1
            WHERE status = 'active' AND end_date < $1
            RETURNING *
            """,
            [now.isoformat()],
        )
        return [listing_from_row(r) for r in rows]

    async def activate_queued_listing(self, property_id: str, now: datetime) -> Optional[PremiumListing]:
        try:
            row = await self.db.fetch_one(
                """
                UPDATE premium_listings
                SET status = 'active',
                    start_date = $2,
                    end_date = $2::timestamptz + (end_date - start_date),
                    updated_at = $2
                WHERE id = (
                    SELECT id FROM premium_listings
                    WHERE property_id = $1
                      AND status = 'pending'
                      AND start_date <= $2
                      AND NOT EXISTS (
                          SELECT 1 FROM premium_listings
                          WHERE property_id = $1 AND status = 'active'
                      )
                    ORDER BY start_date ASC
                    LIMIT 1
                )
                RETURNING *
                """,
                [property_id, now.isoformat()],
            )
        except DatabaseError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info(f"Property {property_id} was activated by a concurrent sweep")
                return None
            raise
        return listing_from_row(row) if row else None

    async def count_active(self, property_id: str) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM premium_listings WHERE property_id = $1 AND status = 'active'",
            [property_id],
        )
        return int(row["count"]) if row else 0

    async def compare_and_set_analytics(
        self, listing_id: str, expected_version: int, analytics: PremiumAnalytics
    ) -> bool:
        row = await self.db.fetch_one(
            """
            UPDATE premium_listings
            SET analytics = $3, analytics_version = analytics_version + 1, updated_at = NOW()
            WHERE id = $1 AND analytics_version = $2
            RETURNING id
            """,
            [listing_id, expected_version, json.dumps(analytics.to_dict())],
        )
        return row is not None

    async def set_promoted(self, property_id: str, promoted: bool) -> None:
        await self.db.execute(
            """
            INSERT INTO premium_properties (property_id, is_premium, updated_at)
            VALUES ($1, $2, NOW())
            ON CONFLICT (property_id) DO UPDATE
            SET is_premium = EXCLUDED.is_premium, updated_at = NOW()
            """,
            [property_id, promoted],
        )

    async def is_promoted(self, property_id: str) -> bool:
        row = await self.db.fetch_one(
            "SELECT is_premium FROM premium_properties WHERE property_id = $1", [property_id]
        )
        return bool(row and row["is_premium"])

    async def demote_if_inactive(self, property_id: str) -> bool:
        row = await self.db.fetch_one(
            """
            UPDATE premium_properties
            SET is_premium = FALSE, updated_at = NOW()
            WHERE property_id = $1
              AND NOT EXISTS (
                  SELECT 1 FROM premium_listings
                  WHERE property_id = $1 AND status = 'active'
              )
            RETURNING property_id
            """,
            [property_id],
        )
        return row is not None


def _plan_json(plan: PremiumPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "price": str(plan.price),
        "currency": plan.currency,
        "duration_days": plan.duration_days,
        "features": list(plan.features),
        "description": plan.description,
        "active": plan.active,
    }


def _feature_json(feature: PremiumFeature) -> Dict[str, Any]:
    return {
        "id": feature.id,
        "name": feature.name,
        "description": feature.description,
        "icon": feature.icon,
        "enabled": feature.enabled,
    }
