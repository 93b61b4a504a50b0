import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import SQLAlchemyError

from admarket.auth.schemas import CamelModel
from admarket.auth.service import is_test_mode, require_user
from admarket.db import models
from admarket.db.models import TransactionStatus
from admarket.db.session import AsyncSession, db_session
from admarket.errors import DatabaseError, ValidationError
from admarket.wallet.lightning import get_lightning_backend
from admarket.wallet.service import WalletService, serialize_transaction

router = APIRouter(prefix="/api", tags=["wallet"])
logger = logging.getLogger(__name__)


class LightningPayload(CamelModel):
    action: Optional[str] = None
    amount: Any = None
    invoice: Optional[str] = None


def wallet_for(request: Request, session: AsyncSession) -> WalletService:
    return WalletService(session, get_lightning_backend(test_mode=is_test_mode(request)))


@router.get("/wallet")
async def get_wallet(user: models.User = Depends(require_user), session: AsyncSession = Depends(db_session)):
    try:
        balance = await WalletService(session).get_balance(user.id)
    except SQLAlchemyError as exc:
        logger.exception("Balance lookup failed for %s", user.nostr_pubkey[:8])
        raise DatabaseError("Error retrieving balance") from exc
    return {"balance": balance}


@router.get("/wallet/transactions")
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    transactions = await WalletService(session).list_transactions(user.id, limit=limit)
    return {"transactions": [serialize_transaction(tx) for tx in transactions]}


@router.post("/payments/lightning")
async def lightning_action(
    request: Request,
    payload: LightningPayload,
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    wallet = wallet_for(request, session)
    if payload.action == "deposit":
        tx = await wallet.create_deposit(user, payload.amount)
        return {"invoice": tx.lightning_invoice, "paymentHash": tx.payment_hash, "transactionId": tx.id}
    if payload.action == "withdraw":
        tx = await wallet.withdraw(user, payload.invoice, payload.amount)
        return {"success": True, "paymentHash": tx.payment_hash, "transactionId": tx.id, "balance": user.balance}
    raise ValidationError("Invalid action", details={"allowed": ["deposit", "withdraw"]})


@router.get("/payments/lightning")
async def lightning_status(
    request: Request,
    transaction_id: Optional[str] = Query(None, alias="transactionId"),
    user: models.User = Depends(require_user),
    session: AsyncSession = Depends(db_session),
):
    tx = await wallet_for(request, session).check_transaction(user, transaction_id)
    messages = {
        TransactionStatus.PENDING.value: "Payment pending",
        TransactionStatus.COMPLETED.value: "Payment completed",
        TransactionStatus.FAILED.value: "Payment failed",
    }
    return {"status": tx.status, "message": messages.get(tx.status, tx.status), "transaction": serialize_transaction(tx)}
