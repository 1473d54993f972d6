"""
Catalog Service — read-only lookups of campaigns, programs and partners.
"""
from typing import Optional

from sqlalchemy.orm import Session

from wallet_ledger.models.catalog import Campaign, Partner, Program
from wallet_ledger.utils.validators import normalize_code


class CatalogService:

    @staticmethod
    def get_campaign_by_promo_code(db: Session, code: str) -> Optional[Campaign]:
        """Promo codes are stored and matched uppercased."""
        return db.query(Campaign).filter(Campaign.promo_code == normalize_code(code)).first()

    @staticmethod
    def get_program_by_id(db: Session, program_id: int) -> Optional[Program]:
        return db.get(Program, program_id)

    @staticmethod
    def get_partner(db: Session, partner_id: int) -> Optional[Partner]:
        return db.get(Partner, partner_id)
