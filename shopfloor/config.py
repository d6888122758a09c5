import os


def normalize_db_url(url: str) -> str:
    """Heroku/Render style ``postgres://`` URLs are not accepted by SQLAlchemy."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration for the Flask app and database.

    - ``SQLALCHEMY_DATABASE_URI``: defaults to a local SQLite file but can be
      overridden via the ``DATABASE_URL`` environment variable.
    - ``STORE_MAX_ATTEMPTS`` / ``STORE_RETRY_BACKOFF``: how often a unit of
      work is retried after a transient store error or a concurrent write,
      and how long to wait (seconds, multiplied by the attempt number).
    - ``STORE_DEADLINE_SECONDS``: upper bound on the time one request may
      spend talking to the store before it gives up.
    - ``PLANNING_ALLOW_PARTIAL_BOOKING``: when true an approval books only the
      assigned quantities even if some requirement has a deficit; when false
      any deficit blocks the approval.
    - ``LABEL_DIR``: where badge and barcode label images are written.
    - ``JSON_SORT_KEYS``: keep insertion order in JSON responses.
    """

    SQLALCHEMY_DATABASE_URI = normalize_db_url(
        os.getenv("DATABASE_URL", "sqlite:///shopfloor.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    JSON_SORT_KEYS = False

    STORE_MAX_ATTEMPTS = int(os.getenv("STORE_MAX_ATTEMPTS", "3"))
    STORE_RETRY_BACKOFF = float(os.getenv("STORE_RETRY_BACKOFF", "0.05"))
    STORE_DEADLINE_SECONDS = float(os.getenv("STORE_DEADLINE_SECONDS", "5.0"))
    # SQLite waits this long for a write lock before giving up
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": {"timeout": STORE_DEADLINE_SECONDS}}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}
    )

    PLANNING_ALLOW_PARTIAL_BOOKING = _env_bool("PLANNING_ALLOW_PARTIAL_BOOKING", True)

    LABEL_DIR = os.getenv(
        "LABEL_DIR", os.path.join(os.path.dirname(__file__), "..", "labels")
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STORE_RETRY_BACKOFF = 0.0
