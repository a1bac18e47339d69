"""User ORM model for household members."""

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel


class User(Base, BaseModel):
    """
    Household member who can owe or receive money.

    Users may belong to a Group (e.g. a couple sharing one allocation).
    Authentication data lives outside the engine; only the fields the
    engine needs for existence checks and allocation subjects are kept here.
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Display name - unique identifier",
    )
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id"),
        nullable=True,
        index=True,
        comment="Household group this user belongs to",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Inactive users cannot take part in new loans or consumptions",
    )

    group: Mapped["Group | None"] = relationship(  # noqa: F821
        "Group",
        back_populates="members",
        foreign_keys=[group_id],
    )

    __table_args__ = (Index("idx_user_active", "is_active"),)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name}, group_id={self.group_id}, is_active={self.is_active})>"


__all__ = ["User"]
