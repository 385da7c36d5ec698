"""
User model for authentication and permission checks.
"""

from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, String
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import BaseModel

if TYPE_CHECKING:
    from commission_engine.models.audit import AuditLog


class UserRole(str, Enum):
    """User roles for access control."""
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class User(BaseModel):
    """
    Actor performing commission operations.

    - admin: every permission, may restore any commission
    - manager/employee: only the permission keys listed in `permissions`
    """

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        SQLAlchemyEnum(
            UserRole,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=UserRole.EMPLOYEE,
        nullable=False,
    )
    permissions: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
        comment="Granted permission keys, e.g. [\"employeeCommissions:approve\"]",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Relationships
    audit_logs: Mapped[List["AuditLog"]] = relationship(
        "AuditLog",
        back_populates="user",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def has_permission(self, key: str) -> bool:
        if self.is_admin:
            return True
        return key in (self.permissions or [])

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role={self.role})>"
