"""User and group directory used for existence checks and default weights."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_engine.errors import NotFoundError, ValidationError
from expense_engine.models.allocation import SubjectType
from expense_engine.models.group import DEFAULT_GROUP_WEIGHT, Group
from expense_engine.models.user import User
from expense_engine.money import MoneyInput, to_units

logger = logging.getLogger(__name__)


class UserDirectory:
    """Service for user and group lookups."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID, None if absent."""
        return self.db.get(User, user_id)

    def get_group(self, group_id: int) -> Optional[Group]:
        """Get group by ID, None if absent."""
        return self.db.get(Group, group_id)

    def require_user(self, user_id: int) -> User:
        """Get user by ID.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return user

    def require_subject(self, subject_type: SubjectType, subject_id: int) -> None:
        """Check that an allocation subject (user or group) exists.

        Raises:
            NotFoundError: If the subject does not exist
        """
        if subject_type == SubjectType.USER:
            self.require_user(subject_id)
        elif self.get_group(subject_id) is None:
            raise NotFoundError(f"Group {subject_id} not found", group_id=subject_id)

    def group_weight(self, group_id: int) -> Decimal:
        """Configured allocation weight of a group.

        Raises:
            NotFoundError: If the group does not exist
        """
        group = self.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found", group_id=group_id)
        return group.weight if group.weight is not None else DEFAULT_GROUP_WEIGHT

    def list_users(self, active_only: bool = True) -> list[User]:
        """List users ordered by name."""
        stmt = select(User).order_by(User.name.asc())
        if active_only:
            stmt = stmt.where(User.is_active == True)  # noqa: E712
        return list(self.db.scalars(stmt).all())

    def create_group(self, name: str, weight: MoneyInput = DEFAULT_GROUP_WEIGHT) -> Group:
        """Create a household group.

        Raises:
            ValidationError: If the weight is not positive
        """
        group_weight = to_units(weight, field="weight")
        if group_weight <= 0:
            raise ValidationError("Group weight must be positive", weight=weight)
        group = Group(name=name, weight=group_weight)
        self.db.add(group)
        self.db.commit()
        logger.info("Created group: id=%d, name=%s, weight=%s", group.id, name, group_weight)
        return group

    def create_user(self, name: str, group_id: int | None = None) -> User:
        """Create a household member, optionally inside a group."""
        if group_id is not None and self.get_group(group_id) is None:
            raise NotFoundError(f"Group {group_id} not found", group_id=group_id)
        user = User(name=name, group_id=group_id, is_active=True)
        self.db.add(user)
        self.db.commit()
        logger.info("Created user: id=%d, name=%s, group_id=%s", user.id, name, group_id)
        return user


__all__ = ["UserDirectory"]
