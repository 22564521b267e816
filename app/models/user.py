from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class User(Base):
    __tablename__ = "users"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    # Profile information
    full_name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=True)

    # Account status
    is_active = Column(Boolean, default=True, nullable=False)
    role = Column(String(20), default="student", nullable=False)  # student, teacher, admin

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def is_teacher(self) -> bool:
        return self.role in ("teacher", "admin")

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.full_name}', role='{self.role}')>"
