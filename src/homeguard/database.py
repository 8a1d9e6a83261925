"""Database setup and session management."""

from collections.abc import Generator

from sqlmodel import Session, SQLModel, create_engine

from homeguard.config import settings

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=False,
    connect_args={"check_same_thread": False},
)


def init_db() -> None:
    """Create all tables."""
    # Import models to register them with SQLModel before create_all()
    import homeguard.events.log  # noqa: F401
    import homeguard.registry.models  # noqa: F401
    import homeguard.rules.models  # noqa: F401

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI Depends()."""
    with Session(engine) as session:
        yield session


def new_session() -> Session:
    """Open a session on the current engine, for background loops."""
    return Session(engine)
