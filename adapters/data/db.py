import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from adapters.outbound.sqlalchemy_models import Base

# Relative sqlite paths resolve from the project root
_PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_DEFAULT_DB = os.path.join(_PROJECT_DIR, "data", "docmapper.db")


def get_engine(url: str | None = None):
    db_url = url or os.environ.get("DATABASE_URL", f"sqlite:///{_DEFAULT_DB}")
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        path = db_url.replace("sqlite:///", "", 1)
        if not os.path.isabs(path):
            path = os.path.join(_PROJECT_DIR, path)
            db_url = f"sqlite:///{path}"
        os.makedirs(os.path.dirname(path), exist_ok=True)
    return create_engine(db_url, echo=False)


def init_db(engine=None):
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)
    return engine


def get_session(engine=None):
    if engine is None:
        engine = get_engine()
    Session = sessionmaker(bind=engine)
    return Session()
