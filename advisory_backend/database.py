from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from .settings import DATABASE_URL, DIRECT_DATABASE_URL


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args(DATABASE_URL))

# Independent client used by the row-by-row fallback path.
direct_engine = create_engine(
    DIRECT_DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    connect_args=_connect_args(DIRECT_DATABASE_URL),
)


def init_db(bind: Engine = engine) -> None:
    """Create database tables if they do not exist."""
    SQLModel.metadata.create_all(bind)
