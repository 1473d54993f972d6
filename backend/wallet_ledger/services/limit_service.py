"""
Withdrawal Limit Service — quota configuration.

A partner-specific active limit overrides the global active limit
(the one with no partner id).
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from wallet_ledger.errors import NotFound, ValidationFailed
from wallet_ledger.models.withdrawal import WithdrawalLimit
from wallet_ledger.schemas.schemas import WithdrawalLimitUpdate
from wallet_ledger.utils.money import to_money
from wallet_ledger.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

_MONEY_FIELDS = ("min_withdrawal_amount", "max_withdrawal_amount", "daily_limit", "monthly_limit")


def _check_bounds(limit: WithdrawalLimit) -> None:
    if limit.min_withdrawal_amount > limit.max_withdrawal_amount:
        raise ValidationFailed("Minimum withdrawal cannot exceed the maximum", error_type="invalid_limits")
    if limit.daily_limit > limit.monthly_limit:
        raise ValidationFailed("Daily limit cannot exceed the monthly limit", error_type="invalid_limits")


class LimitService:

    @staticmethod
    def create_limit(
        db: Session,
        min_withdrawal_amount,
        max_withdrawal_amount,
        daily_limit,
        monthly_limit,
        processing_days: int = 3,
        is_active: bool = True,
        partner_id: Optional[int] = None,
    ) -> WithdrawalLimit:
        limit = WithdrawalLimit(
            partner_id=partner_id,
            min_withdrawal_amount=to_money(min_withdrawal_amount),
            max_withdrawal_amount=to_money(max_withdrawal_amount),
            daily_limit=to_money(daily_limit),
            monthly_limit=to_money(monthly_limit),
            processing_days=processing_days,
            is_active=is_active,
            updated_at=utcnow(),
        )
        _check_bounds(limit)
        db.add(limit)
        db.commit()
        scope = f"partner {partner_id}" if partner_id is not None else "global"
        logger.info(f"Withdrawal limit {limit.id} created ({scope}, active={is_active})")
        return limit

    @staticmethod
    def get_limit(db: Session, limit_id: int) -> Optional[WithdrawalLimit]:
        return db.get(WithdrawalLimit, limit_id)

    @staticmethod
    def update_limit(db: Session, limit_id: int, patches: WithdrawalLimitUpdate) -> WithdrawalLimit:
        limit = LimitService.get_limit(db, limit_id)
        if not limit:
            raise NotFound("Withdrawal limit not found")

        for key, value in patches.values().items():
            setattr(limit, key, to_money(value) if key in _MONEY_FIELDS else value)
        _check_bounds(limit)
        limit.updated_at = utcnow()
        db.commit()
        return limit

    @staticmethod
    def get_active_limit(db: Session, partner_id: int) -> Optional[WithdrawalLimit]:
        partner_limit = (
            db.query(WithdrawalLimit)
            .filter(WithdrawalLimit.partner_id == partner_id, WithdrawalLimit.is_active.is_(True))
            .order_by(WithdrawalLimit.id.desc())
            .first()
        )
        if partner_limit:
            return partner_limit

        return (
            db.query(WithdrawalLimit)
            .filter(WithdrawalLimit.partner_id.is_(None), WithdrawalLimit.is_active.is_(True))
            .order_by(WithdrawalLimit.id.desc())
            .first()
        )

    @staticmethod
    def list_limits(db: Session, partner_id: Optional[int] = None) -> list[WithdrawalLimit]:
        query = db.query(WithdrawalLimit)
        if partner_id is not None:
            query = query.filter(WithdrawalLimit.partner_id == partner_id)
        return query.order_by(WithdrawalLimit.id.asc()).all()
