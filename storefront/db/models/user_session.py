from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base


class UserSession(Base):
    """Server-side session row; deleting it revokes the token immediately."""

    # Base provides: id, created_at, updated_at
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False
    )
    token: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="sessions")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<UserSession(id={self.id!r}, user_id={self.user_id!r})>"
