from pathlib import Path

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


class Database:
    """
    Explicit store handle.

    Built once at startup and passed to whoever needs sessions
    (routers via app.state, the reminder dispatcher via its session factory).
    """

    def __init__(self, url: str):
        self.url = url
        self.engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    def open(self) -> "Database":
        url = make_url(self.url)
        connect_args = {}

        if url.get_backend_name() == "sqlite":
            # check_same_thread=False: SQLite is used from FastAPI worker threads
            connect_args["check_same_thread"] = False
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(self.url, connect_args=connect_args)

        Base.metadata.create_all(self.engine)

        # expire_on_commit=False: claimed rows are read after the claim commits
        self._sessionmaker = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self._sessionmaker = None

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()


# FastAPI dependency
def get_db(request: Request):
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
