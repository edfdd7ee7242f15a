from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Root declarative base for billing models."""
    pass
