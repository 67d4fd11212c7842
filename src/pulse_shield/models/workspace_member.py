# src/pulse_shield/models/workspace_member.py
"""Read model of workspace membership used for 2FA adoption scoring."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from pulse_shield.db.session import Base


class WorkspaceMember(Base):
    """A user's membership in a workspace and their second-factor status."""

    __tablename__ = "workspace_member"

    workspace_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
