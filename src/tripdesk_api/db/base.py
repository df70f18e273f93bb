from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Declarative base; models default to their lowercase class name as table name."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


# Register every model on Base.metadata for Alembic and create_all
import tripdesk_api.models  # noqa: E402,F401
