from sqlmodel import SQLModel, create_engine

from scorecard_sync.core.config import settings

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=settings.debug,
    connect_args={"check_same_thread": False},
)


def init_db() -> None:
    import scorecard_sync.models  # noqa: F401 - ensure schedule tables are registered
    SQLModel.metadata.create_all(engine)
