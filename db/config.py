import os
from urllib.parse import quote_plus
from dotenv import load_dotenv
from pymongo import ASCENDING, MongoClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "vmbilling")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

MYSQL_HOST = os.getenv("MYSQL_HOST", "127.0.0.1")
MYSQL_USER = os.getenv("MYSQL_USER", "root")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "")
MYSQL_DB = os.getenv("MYSQL_DB", "vmbilling")

# MYSQL_URI overrides the individual settings, e.g. sqlite:// for local runs
MYSQL_URI = os.getenv(
    "MYSQL_URI",
    f"mysql+pymysql://{MYSQL_USER}:{quote_plus(MYSQL_PASSWORD)}@{MYSQL_HOST}/{MYSQL_DB}"
)

_mongo_client = None


def get_mongo_client():
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS)
    return _mongo_client


def get_mongo_db():
    client = get_mongo_client()
    return client[MONGO_DB_NAME]


def ensure_mongo_indexes(db=None):
    db = db if db is not None else get_mongo_db()
    groups = db["instances_groups"]
    groups.create_index([("uuid", ASCENDING)], unique=True)
    groups.create_index([("instances.uuid", ASCENDING)])


def _engine_options(uri: str) -> dict:
    if uri.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(MYSQL_URI, **_engine_options(MYSQL_URI))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_mysql_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
