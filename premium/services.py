"""
Composition root for the premium listing core.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .analytics import AnalyticsAggregator, build_overview
from .catalog import PlanCatalog
from .checkout import CheckoutHandoff
from .config import Settings, get_settings
from .gateway import XenditGateway
from .landing import PaymentLanding
from .listings import PremiumListingStore
from .models import ListingStatus, PaymentRecord, Session, utcnow
from .neon import NeonDatabase, NeonPremiumRepository
from .notifications import LoggingNotificationSink, NotificationSink
from .payments import PaymentRecordManager
from .reconciliation import PaymentReconciler
from .repository import InMemoryPremiumRepository, PremiumRepository
from .sweeper import ExpirationSweeper
from .webhooks import WebhookHandler
from .workflow import UpgradeWorkflow

logger = logging.getLogger(__name__)


@dataclass
class PremiumServices:
    settings: Settings
    repository: PremiumRepository
    catalog: PlanCatalog
    payments: PaymentRecordManager
    listings: PremiumListingStore
    analytics: AnalyticsAggregator
    sweeper: ExpirationSweeper
    gateway: XenditGateway
    reconciler: PaymentReconciler
    webhooks: WebhookHandler
    landing: PaymentLanding
    database: Optional[NeonDatabase] = None

    def checkout(self, launcher: Optional[Callable[[str], Any]] = None) -> CheckoutHandoff:
        return CheckoutHandoff(
            self.gateway,
            poll_interval=self.settings.CHECKOUT_POLL_INTERVAL,
            max_poll_interval=self.settings.CHECKOUT_MAX_POLL_INTERVAL,
            timeout=self.settings.CHECKOUT_TIMEOUT,
            max_attempts=self.settings.CHECKOUT_MAX_ATTEMPTS,
            launcher=launcher,
        )

    def upgrade_workflow(
        self,
        session: Session,
        property_id: str,
        notifier: Optional[NotificationSink] = None,
        renewal: bool = False,
        checkout: Optional[CheckoutHandoff] = None,
    ) -> UpgradeWorkflow:
        return UpgradeWorkflow(
            session=session,
            notifier=notifier or LoggingNotificationSink(),
            catalog=self.catalog,
            payments=self.payments,
            reconciler=self.reconciler,
            gateway=self.gateway,
            checkout=checkout or self.checkout(),
            property_id=property_id,
            renewal=renewal,
            success_redirect_url=self.settings.success_redirect_url,
            failure_redirect_url=self.settings.failure_redirect_url,
        )

    async def user_payments(self, user_id: str) -> List[PaymentRecord]:
        """Payments that funded the user's premium listings."""
        listings = await self.listings.list_user_listings(user_id)
        return await self.payments.list_payments(payment_ids=[l.payment_id for l in listings])

    async def overview(self, status: Optional[ListingStatus] = None) -> Dict[str, Any]:
        listings = await self.listings.list_listings()
        payments = await self.payments.list_payments(payment_ids=[l.payment_id for l in listings])
        return build_overview(listings, payments, status)

    async def aclose(self) -> None:
        await self.gateway.aclose()
        if self.database is not None:
            await self.database.aclose()


def build_services(
    settings: Optional[Settings] = None,
    repository: Optional[PremiumRepository] = None,
    gateway: Optional[XenditGateway] = None,
    clock: Callable[[], datetime] = utcnow,
) -> PremiumServices:
    settings = settings or get_settings()
    database = None
    if repository is None:
        if settings.DATABASE_URL and settings.NEON_HTTP_ENDPOINT:
            database = NeonDatabase(settings.DATABASE_URL, settings.NEON_HTTP_ENDPOINT)
            repository = NeonPremiumRepository(database)
            logger.info("Using Neon premium repository")
        else:
            repository = InMemoryPremiumRepository()
            logger.warning("DATABASE_URL not configured; using in-memory premium repository")

    gateway = gateway or XenditGateway(
        api_key=settings.XENDIT_API_KEY,
        base_url=settings.XENDIT_BASE_URL,
        invoice_duration=settings.INVOICE_DURATION_SECONDS,
        callback_token=settings.XENDIT_CALLBACK_TOKEN,
        timeout=settings.GATEWAY_TIMEOUT,
    )
    catalog = PlanCatalog(repository)
    payments = PaymentRecordManager(repository)
    listings = PremiumListingStore(repository, clock=clock)
    reconciler = PaymentReconciler(payments, listings, catalog)
    return PremiumServices(
        settings=settings,
        repository=repository,
        catalog=catalog,
        payments=payments,
        listings=listings,
        analytics=AnalyticsAggregator(repository, max_retries=settings.ANALYTICS_MAX_RETRIES, clock=clock),
        sweeper=ExpirationSweeper(repository, clock=clock),
        gateway=gateway,
        reconciler=reconciler,
        webhooks=WebhookHandler(gateway, payments, reconciler),
        landing=PaymentLanding(gateway, payments, reconciler, clock=clock),
        database=database,
    )
