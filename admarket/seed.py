"""Demo data for local development."""

import logging

from sqlalchemy import select

from admarket.db import models
from admarket.db.models import AdStatus, Role, TransactionType
from admarket.db.session import get_session
from admarket.services.users import UserService
from admarket.wallet.service import WalletService

logger = logging.getLogger(__name__)

DEMO_PUBKEY = "pk_test_demo_advertiser"
DEMO_BALANCE = 10_000

DEMO_ADS = [
    {
        "title": "Bitcoin: Digital Gold for the Digital Age",
        "description": "Learn how Bitcoin is transforming global finance and why it is becoming a preferred store of value.",
        "target_url": "https://example.com/bitcoin-guide",
        "budget": 100_000,
        "daily_budget": 10_000,
        "bid_per_impression": 200,
        "bid_per_click": 1_000,
        "target_interests": "bitcoin,finance",
    },
    {
        "title": "Secure Your Digital Future with Cold Storage",
        "description": "Hardware wallets that keep your keys offline and your sats safe.",
        "target_url": "https://example.com/cold-storage",
        "budget": 80_000,
        "daily_budget": 8_000,
        "bid_per_impression": 150,
        "bid_per_click": 800,
        "target_interests": "bitcoin,security",
    },
    {
        "title": "Lightning Network: The Future of Bitcoin Payments",
        "description": "Instant, nearly fee-free payments. Sending sats is as easy as sending a text.",
        "target_url": "https://example.com/lightning-wallet",
        "budget": 120_000,
        "daily_budget": 12_000,
        "bid_per_impression": 250,
        "bid_per_click": 1_200,
        "target_interests": "bitcoin,lightning",
    },
]


async def seed_demo_data() -> models.User:
    """Create the demo advertiser and its active ads; safe to run repeatedly.

    Ad budgets are paid through the wallet ledger like any other ad. The
    starting balance is deposited once, on the first run, so later runs never
    overwrite what the demo account has spent since.
    """
    async with get_session() as session:
        user = await UserService(session).find_or_create(DEMO_PUBKEY, is_test=True)
        user.current_role = Role.advertiser.value
        existing = set(await session.scalars(select(models.Ad.title).where(models.Ad.advertiser_id == user.id)))
        missing = [data for data in DEMO_ADS if data["title"] not in existing]
        first_run = await session.scalar(select(models.Transaction.id).where(models.Transaction.user_id == user.id).limit(1)) is None

        wallet = WalletService(session)
        funding = sum(data["budget"] for data in missing) + (DEMO_BALANCE if first_run else 0)
        if funding:
            await wallet.record_credit(user, funding, TransactionType.DEPOSIT, "Demo wallet funding")
        for data in missing:
            ad = models.Ad(advertiser_id=user.id, status=AdStatus.ACTIVE.value, format="text", spent=0, **data)
            session.add(ad)
            await wallet.debit(user, data["budget"], TransactionType.AD_PAYMENT, f"Budget for ad: {ad.title}")
        await session.commit()
        logger.info("Seeded demo advertiser %s with %d new ads (funded %d sats)", DEMO_PUBKEY, len(missing), funding)
        return user
