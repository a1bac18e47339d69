"""Group ORM model for household groups (e.g. couples)."""

from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_engine.models import Base, BaseModel
from expense_engine.models.types import Quantity

DEFAULT_GROUP_WEIGHT = Decimal("1.000")


class Group(Base, BaseModel):
    """Household group that can be allocated a bill share as one subject.

    The weight is used by the weight allocation method when the caller does
    not pass an explicit weight for the group.
    """

    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    weight: Mapped[Decimal] = mapped_column(
        Quantity,
        nullable=False,
        default=DEFAULT_GROUP_WEIGHT,
        comment="Default allocation weight (1.0 unless configured)",
    )

    members: Mapped[list["User"]] = relationship(  # noqa: F821
        "User",
        back_populates="group",
        foreign_keys="User.group_id",
    )

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name}, weight={self.weight})>"


__all__ = ["Group", "DEFAULT_GROUP_WEIGHT"]
