import logging
import re
from typing import Any, Optional

from sqlalchemy import select, update

from admarket.db import models
from admarket.db.models import TransactionStatus, TransactionType
from admarket.db.session import AsyncSession
from admarket.errors import AuthorizationError, NotFoundError, PaymentError, ValidationError
from admarket.wallet.lightning import LightningBackend

logger = logging.getLogger(__name__)

BOLT11_RE = re.compile(r"^ln(bc|tb|tbs|bcrt)[0-9a-z]+$", re.IGNORECASE)
MAX_DEPOSIT_SATS = 10_000_000


def parse_amount(value: Any, field: str = "amount") -> int:
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} is required", details={"field": field})
    try:
        amount = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a whole number of sats", details={"field": field}) from exc
    if amount != value and str(amount) != str(value).strip():
        raise ValidationError(f"{field} must be a whole number of sats", details={"field": field})
    if amount <= 0:
        raise ValidationError(f"{field} must be positive", details={"field": field})
    return amount


class WalletService:
    def __init__(self, session: AsyncSession, backend: Optional[LightningBackend] = None):
        self.session = session
        self.backend = backend

    async def get_balance(self, user_id: str) -> int:
        result = await self.session.execute(select(models.User.balance).where(models.User.id == user_id))
        row = result.first()
        if row is None:
            raise NotFoundError("User not found")
        return row[0] or 0

    async def list_transactions(self, user_id: str, limit: int = 50) -> list[models.Transaction]:
        result = await self.session.execute(
            select(models.Transaction)
            .where(models.Transaction.user_id == user_id)
            .order_by(models.Transaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def debit(
        self,
        user: models.User,
        amount: int,
        tx_type: TransactionType,
        description: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        **extra: Any,
    ) -> models.Transaction:
        """Atomically take ``amount`` from the balance and stage the ledger row.

        The caller commits; raises ValidationError when the balance is short.
        """
        result = await self.session.execute(
            update(models.User)
            .where(models.User.id == user.id, models.User.balance >= amount)
            .values(balance=models.User.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError("Insufficient balance", details={"required": amount})
        await self.session.refresh(user)
        tx = models.Transaction(
            user_id=user.id,
            amount=amount,
            type=tx_type.value,
            status=status.value,
            description=description,
            balance_before=user.balance + amount,
            balance_after=user.balance,
            **extra,
        )
        self.session.add(tx)
        return tx

    async def credit(self, user: models.User, amount: int) -> tuple[int, int]:
        await self.session.execute(
            update(models.User)
            .where(models.User.id == user.id)
            .values(balance=models.User.balance + amount)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(user)
        return user.balance - amount, user.balance

    async def record_credit(
        self, user: models.User, amount: int, tx_type: TransactionType, description: str, **extra: Any
    ) -> models.Transaction:
        before, after = await self.credit(user, amount)
        tx = models.Transaction(
            user_id=user.id,
            amount=amount,
            type=tx_type.value,
            status=TransactionStatus.COMPLETED.value,
            description=description,
            balance_before=before,
            balance_after=after,
            **extra,
        )
        self.session.add(tx)
        return tx

    async def create_deposit(self, user: models.User, amount: Any) -> models.Transaction:
        amount = parse_amount(amount)
        if amount > MAX_DEPOSIT_SATS:
            raise ValidationError("Deposit amount too large", details={"max": MAX_DEPOSIT_SATS})
        invoice = await self.backend.create_invoice(amount, f"Deposit {amount} sats")
        tx = models.Transaction(
            user_id=user.id,
            amount=amount,
            type=TransactionType.DEPOSIT.value,
            status=TransactionStatus.PENDING.value,
            description=f"Lightning deposit of {amount} sats",
            lightning_invoice=invoice["invoice"],
            payment_hash=invoice["payment_hash"],
        )
        self.session.add(tx)
        await self.session.commit()
        await self.session.refresh(tx)
        logger.info("Deposit invoice %s created for %s", invoice["payment_hash"][:12], user.nostr_pubkey[:8])
        return tx

    async def withdraw(self, user: models.User, bolt11: Any, amount: Any) -> models.Transaction:
        if not isinstance(bolt11, str) or not BOLT11_RE.match(bolt11.strip()):
            raise ValidationError("Invalid Lightning invoice", details={"field": "invoice"})
        bolt11 = bolt11.strip()
        amount = parse_amount(amount)
        tx = await self.debit(
            user,
            amount,
            TransactionType.WITHDRAWAL,
            f"Lightning withdrawal of {amount} sats",
            status=TransactionStatus.PENDING,
            lightning_invoice=bolt11,
        )
        await self.session.commit()
        try:
            payment = await self.backend.pay_invoice(bolt11, amount)
        except PaymentError as exc:
            await self._refund_withdrawal(user, tx, exc.message)
            raise ValidationError("Payment failed", details={"transactionId": tx.id}) from exc
        except Exception as exc:
            await self._refund_withdrawal(user, tx, repr(exc))
            raise
        tx.status = TransactionStatus.COMPLETED.value
        tx.payment_hash = payment.get("payment_hash")
        fee = payment.get("fee_sats") or 0
        if fee:
            tx.description = f"{tx.description} (network fee {fee} sats)"
        await self.session.commit()
        await self.session.refresh(tx)
        logger.info("Withdrawal %s completed for %s", tx.id, user.nostr_pubkey[:8])
        return tx

    async def _refund_withdrawal(self, user: models.User, tx: models.Transaction, reason: str) -> None:
        logger.warning("Withdrawal %s failed, refunding %d sats: %s", tx.id, tx.amount, reason)
        _, after = await self.credit(user, tx.amount)
        tx.status = TransactionStatus.FAILED.value
        tx.balance_after = after
        await self.session.commit()

    async def get_owned_transaction(self, user: models.User, transaction_id: str | None) -> models.Transaction:
        if not transaction_id:
            raise ValidationError("transactionId is required", details={"field": "transactionId"})
        tx = await self.session.get(models.Transaction, transaction_id)
        if tx is None:
            raise NotFoundError("Transaction not found")
        if tx.user_id != user.id:
            raise AuthorizationError("Not authorized to view this transaction")
        return tx

    async def check_transaction(self, user: models.User, transaction_id: str | None) -> models.Transaction:
        """Settle a pending deposit once the backend reports it paid; credits exactly once."""
        tx = await self.get_owned_transaction(user, transaction_id)
        if tx.type != TransactionType.DEPOSIT.value or tx.status != TransactionStatus.PENDING.value:
            return tx
        if not tx.payment_hash or not await self.backend.check_invoice_paid(tx.payment_hash):
            return tx
        claimed = await self.session.execute(
            update(models.Transaction)
            .where(models.Transaction.id == tx.id, models.Transaction.status == TransactionStatus.PENDING.value)
            .values(status=TransactionStatus.COMPLETED.value)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.session.refresh(tx)
            return tx
        before, after = await self.credit(user, tx.amount)
        await self.session.refresh(tx)
        tx.balance_before = before
        tx.balance_after = after
        await self.session.commit()
        await self.session.refresh(tx)
        logger.info("Deposit %s settled for %s (+%d sats)", tx.id, user.nostr_pubkey[:8], tx.amount)
        return tx


def serialize_transaction(tx: models.Transaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "amount": tx.amount,
        "type": tx.type,
        "status": tx.status,
        "description": tx.description,
        "lightningInvoice": tx.lightning_invoice,
        "paymentHash": tx.payment_hash,
        "balanceBefore": tx.balance_before,
        "balanceAfter": tx.balance_after,
        "createdAt": models.as_utc(tx.created_at).isoformat() if tx.created_at else None,
    }
