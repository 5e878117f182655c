from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tripc.api.deps import get_current_user
from tripc.core.timeutils import ensure_utc
from tripc.db.session import get_db
from tripc.models.user import User
from tripc.models.voucher import Voucher
from tripc.schemas.vouchers import VoucherRedeemRequest
from tripc.services import ledger_service
from tripc.services.voucher_service import redeem_voucher, wallet_vouchers

router = APIRouter(tags=["vouchers"])


def _iso(dt):
    return ensure_utc(dt).isoformat() if dt else None


@router.get("/vouchers")
def list_purchasable(db: Session = Depends(get_db)):
    rows = db.query(Voucher).filter(Voucher.is_active == True, Voucher.is_purchasable == True).order_by(Voucher.tcent_price.asc()).all()
    return [
        {
            "templateId": v.id,
            "code": v.code,
            "name": v.name,
            "tcentPrice": v.tcent_price,
            "discountType": v.discount_type,
            "discountValue": v.discount_value,
            "currency": v.currency,
            "category": v.category,
            "remaining": (v.total_usage_limit - v.current_usage_count) if v.total_usage_limit is not None else None,
            "expiresAt": _iso(v.expires_at),
        }
        for v in rows
    ]


@router.post("/vouchers/redeem")
def redeem(body: VoucherRedeemRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    uv = redeem_voucher(db, user.id, body.templateId)
    return {
        "userVoucherId": uv.id,
        "voucherId": uv.voucher_id,
        "status": uv.status,
        "acquiredAt": _iso(uv.acquired_at),
        "balance": ledger_service.get_balance(db, user.id),
    }


@router.get("/wallet")
def wallet(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {
        "balance": ledger_service.get_balance(db, user.id),
        "vouchers": [
            {
                "userVoucherId": uv.id,
                "code": v.code,
                "name": v.name,
                "status": uv.status,
                "acquiredAt": _iso(uv.acquired_at),
                "usedAt": _iso(uv.used_at),
            }
            for uv, v in wallet_vouchers(db, user.id)
        ],
        "entries": [
            {
                "delta": e.delta,
                "balanceAfter": e.balance_after,
                "reason": e.reason,
                "description": e.description,
                "relatedBookingId": e.related_booking_id,
                "createdAt": _iso(e.created_at),
            }
            for e in ledger_service.recent_entries(db, user.id)
        ],
    }
