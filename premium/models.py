"""
Data models for premium listings, payments and analytics.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class ListingStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AnalyticsEvent(str, Enum):
    VIEW = "view"
    INQUIRY = "inquiry"
    FAVORITE = "favorite"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    VIRTUAL_ACCOUNT = "virtual_account"
    E_WALLET = "e_wallet"
    RETAIL_OUTLET = "retail_outlet"
    QR_CODE = "qr_code"


# Sub-channels offered per method; methods missing here take no channel
PAYMENT_CHANNELS: Dict[PaymentMethod, Tuple[str, ...]] = {
    PaymentMethod.VIRTUAL_ACCOUNT: ("BCA", "BNI", "BRI", "MANDIRI", "PERMATA"),
    PaymentMethod.E_WALLET: ("OVO", "DANA", "LINKAJA", "SHOPEEPAY", "GOPAY"),
    PaymentMethod.RETAIL_OUTLET: ("ALFAMART", "INDOMARET"),
    PaymentMethod.QR_CODE: ("QRIS",),
}

PAYMENT_METHOD_NAMES: Dict[PaymentMethod, str] = {
    PaymentMethod.CREDIT_CARD: "Credit/Debit Card",
    PaymentMethod.VIRTUAL_ACCOUNT: "Virtual Account",
    PaymentMethod.E_WALLET: "E-Wallet",
    PaymentMethod.RETAIL_OUTLET: "Retail Outlet",
    PaymentMethod.QR_CODE: "QR Code",
}


@dataclass(frozen=True)
class PremiumPlan:
    """Immutable catalog entry a premium listing is purchased under."""

    id: str
    name: str
    price: Decimal
    currency: str
    duration_days: int
    features: Tuple[str, ...] = ()
    description: str = ""
    active: bool = True

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            object.__setattr__(self, "price", Decimal(str(self.price)))
        if self.price <= 0:
            raise ValueError(f"Plan {self.id} price must be positive")
        if int(self.duration_days) != self.duration_days or self.duration_days <= 0:
            raise ValueError(f"Plan {self.id} duration must be a positive number of days")
        object.__setattr__(self, "features", tuple(self.features))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "currency": self.currency,
            "duration": self.duration_days,
            "features": list(self.features),
            "description": self.description,
        }


@dataclass
class BillingDetails:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = "ID"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, str]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BillingDetails":
        return cls(**{k: str(data.get(k) or "") for k in cls().to_dict()})


@dataclass
class CardDetails:
    """Raw card form input; display formatting never writes back here."""

    number: str = ""
    expiry: str = ""
    cvv: str = ""
    holder_name: str = ""


@dataclass
class PaymentRecord:
    """
    Monetary transaction for one checkout attempt.

    Created pending; success, failed and cancelled are terminal.
    """

    id: str
    order_id: str
    amount: Decimal
    currency: str
    billing_details: BillingDetails
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    invoice_id: Optional[str] = None
    transaction_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "payment_method": self.payment_method,
            "payment_channel": self.payment_channel,
            "invoice_id": self.invoice_id,
            "transaction_id": self.transaction_id,
            "metadata": dict(self.metadata),
            "billing_details": self.billing_details.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class PremiumFeature:
    id: str
    name: str
    description: str
    icon: str
    enabled: bool = True


@dataclass
class DailyViews:
    date: str
    views: int


@dataclass
class SourceCount:
    source: str
    count: int


@dataclass
class PremiumAnalytics:
    views: int = 0
    inquiries: int = 0
    favorites: int = 0
    conversion_rate: float = 0.0
    daily_views: List[DailyViews] = field(default_factory=list)
    top_sources: List[SourceCount] = field(default_factory=list)

    def copy(self) -> "PremiumAnalytics":
        return replace(
            self,
            daily_views=[replace(d) for d in self.daily_views],
            top_sources=[replace(s) for s in self.top_sources],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "views": self.views,
            "inquiries": self.inquiries,
            "favorites": self.favorites,
            "conversion_rate": self.conversion_rate,
            "daily_views": [{"date": d.date, "views": d.views} for d in self.daily_views],
            "top_sources": [{"source": s.source, "count": s.count} for s in self.top_sources],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PremiumAnalytics":
        data = data or {}
        return cls(
            views=int(data.get("views", 0)),
            inquiries=int(data.get("inquiries", 0)),
            favorites=int(data.get("favorites", 0)),
            conversion_rate=float(data.get("conversion_rate", 0.0)),
            daily_views=[DailyViews(d["date"], int(d["views"])) for d in data.get("daily_views", [])],
            top_sources=[SourceCount(s["source"], int(s["count"])) for s in data.get("top_sources", [])],
        )


@dataclass
class PremiumListing:
    """
    Lifecycle record of one premium purchase for a property.

    Attributes:
        id: Listing identifier
        property_id: Property being promoted (not owned here)
        user_id: Owner of the property
        plan: Plan the listing was purchased under
        status: Lifecycle status
        start_date: Start of the validity window
        end_date: start_date + plan.duration_days
        payment_id: Funding PaymentRecord id
        features: Feature flags derived from the plan
        analytics: Embedded analytics snapshot
        analytics_version: Compare-and-swap token for analytics writes
    """

    id: str
    property_id: str
    user_id: str
    plan: PremiumPlan
    status: ListingStatus
    start_date: datetime
    end_date: datetime
    payment_id: str
    features: Tuple[PremiumFeature, ...] = ()
    analytics: PremiumAnalytics = field(default_factory=PremiumAnalytics)
    analytics_version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "user_id": self.user_id,
            "plan": self.plan.to_dict(),
            "status": self.status.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "payment_id": self.payment_id,
            "features": [
                {"id": f.id, "name": f.name, "description": f.description, "icon": f.icon, "enabled": f.enabled}
                for f in self.features
            ],
            "analytics": self.analytics.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Session:
    """Caller identity handed to the upgrade workflow."""

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
