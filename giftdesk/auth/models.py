import enum
from werkzeug.security import generate_password_hash, check_password_hash
from giftdesk import db
from giftdesk.utils import dates


class RoleEnum(enum.Enum):
    admin = "admin"
    user  = "user"


class User(db.Model):
    """The operator account(s) allowed into the back office."""
    __tablename__ = 'users'

    id            = db.Column(db.Integer, primary_key=True)
    username      = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role          = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.admin)
    is_active     = db.Column(db.Boolean, nullable=False, default=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=dates.utcnow)
    updated_at    = db.Column(db.DateTime, nullable=False, default=dates.utcnow, onupdate=dates.utcnow)

    # ── Password helpers ──────────────────────────────────────────
    def set_password(self, plain_password: str) -> None:
        """Hash and store the password. Never stores plain text."""
        self.password_hash = generate_password_hash(plain_password)

    def check_password(self, plain_password: str) -> bool:
        """Return True if the supplied password matches the stored hash."""
        return check_password_hash(self.password_hash, plain_password)

    def to_dict(self) -> dict:
        return {
            'id':        self.id,
            'username':  self.username,
            'role':      self.role.value,
            'createdAt': dates.to_iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User {self.username!r} role={self.role.value!r}>"
