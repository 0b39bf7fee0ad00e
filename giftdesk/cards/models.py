import enum
import uuid
from decimal import Decimal

from giftdesk import db
from giftdesk.utils import codes, dates


def _uuid() -> str:
    return str(uuid.uuid4())


class CardType(enum.Enum):
    giftcard = "giftcard"
    ewallet  = "ewallet"


class CardStatus(enum.Enum):
    active   = "active"
    redeemed = "redeemed"
    expired  = "expired"
    inactive = "inactive"


class TransactionType(enum.Enum):
    creation   = "creation"
    usage      = "usage"
    refund     = "refund"
    adjustment = "adjustment"


class GiftCard(db.Model):
    """
    A prepaid gift card (spend-only) or a reloadable e-wallet.

    `status` is derived from balance, expiry and is_active every time it is
    read; is_active / is_redeemed are kept in step by sync_flags() after
    each mutation, but status is the source of truth for the rules.
    A wallet's is_active always mirrors whether it holds a balance.
    """
    __tablename__ = 'gift_cards'

    id             = db.Column(db.String(36), primary_key=True, default=_uuid)
    code           = db.Column(db.String(255), nullable=False)                     # Fernet token
    code_hash      = db.Column(db.String(64), unique=True, nullable=False, index=True)
    type           = db.Column(db.Enum(CardType), nullable=False, default=CardType.giftcard)
    owner_name     = db.Column(db.String(500), nullable=False)
    owner_email    = db.Column(db.String(254), nullable=True)
    owner_phone    = db.Column(db.String(20), nullable=True)
    initial_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_active      = db.Column(db.Boolean, nullable=False, default=True)
    is_redeemed    = db.Column(db.Boolean, nullable=False, default=False)
    notes          = db.Column(db.String(1000), nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=dates.utcnow)
    updated_at     = db.Column(db.DateTime, nullable=False, default=dates.utcnow, onupdate=dates.utcnow)
    expires_at     = db.Column(db.DateTime, nullable=True, index=True)

    __table_args__ = (
        db.CheckConstraint('current_amount >= 0', name='check_balance_non_negative'),
    )

    # ── Relationships ─────────────────────────────────────────────
    transactions = db.relationship(
        'Transaction', backref='gift_card', lazy='select',
        cascade='all, delete-orphan',
        order_by='Transaction.timestamp',
    )

    # ── Code helpers ──────────────────────────────────────────────
    @property
    def plain_code(self) -> str:
        return codes.deobfuscate(self.code)

    def set_code(self, plain: str) -> None:
        """Store the code encrypted, with its lookup digest."""
        self.code = codes.obfuscate(plain)
        self.code_hash = codes.code_digest(plain)

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def balance(self) -> Decimal:
        return Decimal(str(self.current_amount or 0))

    @property
    def is_giftcard(self) -> bool:
        return self.type == CardType.giftcard

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and dates.utcnow() > self.expires_at

    @property
    def status(self) -> CardStatus:
        if self.is_giftcard:
            # Spent gift cards stay redeemed for good
            if self.balance <= 0:
                return CardStatus.redeemed
            if self.is_expired:
                return CardStatus.expired
            if not self.is_active:
                return CardStatus.inactive
            return CardStatus.active

        # Wallets follow their balance, explicit deactivation or not
        if self.balance <= 0:
            return CardStatus.inactive
        return CardStatus.active

    def sync_flags(self) -> None:
        """Bring is_active / is_redeemed in line with the derived status."""
        status = self.status
        if self.is_giftcard:
            self.is_redeemed = status == CardStatus.redeemed
            if status in (CardStatus.redeemed, CardStatus.expired):
                self.is_active = False
        else:
            # A wallet is switched on exactly while it holds money
            self.is_redeemed = False
            self.is_active = self.balance > 0

    @property
    def delete_confirmation_code(self) -> str:
        return codes.delete_confirmation_code(self.id)

    # ── Serialisation ─────────────────────────────────────────────
    def to_dict(self, with_transactions: bool = False) -> dict:
        data = {
            'id':            self.id,
            'code':          self.plain_code,
            'type':          self.type.value,
            'ownerName':     self.owner_name,
            'ownerEmail':    self.owner_email or '',
            'ownerPhone':    self.owner_phone or '',
            'initialAmount': float(self.initial_amount or 0),
            'currentAmount': float(self.balance),
            'status':        self.status.value,
            'isActive':      bool(self.is_active),
            'isRedeemed':    bool(self.is_redeemed),
            'notes':         self.notes or '',
            'createdAt':     dates.to_iso(self.created_at),
            'updatedAt':     dates.to_iso(self.updated_at),
            'expiresAt':     dates.to_iso(self.expires_at),
        }
        if with_transactions:
            data['transactions'] = [t.to_dict() for t in self.transactions]
        return data

    def __repr__(self):
        return f"<GiftCard {self.id} {self.type.value} Bal: {self.current_amount}>"


class Transaction(db.Model):
    """
    One entry in a card's append-only balance log.
    `amount` is always stored positive; `type` carries the direction.
    """
    __tablename__ = 'transactions'

    id           = db.Column(db.String(36), primary_key=True, default=_uuid)
    gift_card_id = db.Column(db.String(36), db.ForeignKey('gift_cards.id', ondelete='CASCADE'),
                             nullable=False, index=True)
    type         = db.Column(db.Enum(TransactionType), nullable=False)
    amount       = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    description  = db.Column(db.String(500), nullable=False, default='')
    performed_by = db.Column(db.String(64), nullable=False, default='system')
    timestamp    = db.Column(db.DateTime, nullable=False, default=dates.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            'id':          self.id,
            'giftCardId':  self.gift_card_id,
            'type':        self.type.value,
            'amount':      float(self.amount or 0),
            'description': self.description,
            'performedBy': self.performed_by,
            'timestamp':   dates.to_iso(self.timestamp),
        }

    def __repr__(self):
        return f"<Transaction {self.type.value} {self.amount} card={self.gift_card_id}>"
