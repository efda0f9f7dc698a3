"""
Clinivoice Backend: User SQLAlchemy Model
==========================================

What:  ORM model for the `users` table (clinicians and administrators).
How:   Declarative mapping on the shared Base. `user_id` is the login handle
       clinicians type in; `id` is the surrogate key everything else references.
Who:   Loaded by the auth dependency and by the entitlement gate.

Role and status:
    role   'clinician' | 'admin'   admin bypasses the entitlement gate entirely
    status 'active'    | 'locked'  locked users are refused with reason 'locked'
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from clinivoice.database import Base

ROLE_ADMIN = "admin"
ROLE_CLINICIAN = "clinician"

STATUS_ACTIVE = "active"
STATUS_LOCKED = "locked"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
        comment="Login handle",
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Default clinical domain for the user's UI; notes carry their own domain.
    domain: Mapped[str] = mapped_column(
        String(50), nullable=False, default="medical", server_default=text("'medical'")
    )
    role: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ROLE_CLINICIAN, server_default=text("'clinician'")
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=STATUS_ACTIVE,
        server_default=text("'active'"),
        comment="Account status: active, locked",
    )

    # Written by the login layer, which lives outside this service.
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_locked(self) -> bool:
        return self.status == STATUS_LOCKED

    def __repr__(self) -> str:
        return f"<User(id={self.id}, user_id='{self.user_id}', role='{self.role}')>"
