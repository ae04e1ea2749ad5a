# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """Parse an integer setting, falling back to ``default`` on garbage and clamping to bounds."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


def _coerce_float(value, default):
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return default


def _parse_source_list(value, default=()):
    """
    Parse a comma-separated list of sync source names while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized source identifiers.
    """
    if not value:
        return tuple(default)

    seen = set()
    sources = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        sources.append(item)
    return tuple(sources) or tuple(default)


DEFAULT_SYNC_SOURCE_ORDER = (
    "accounting_customer",
    "storefront_customer",
    "marketplace_order",
    "fulfillment_shipment",
)


class Config:
    # SECRET_KEY must be set via environment variable in production.
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Ranked customer search
    SEARCH_CANDIDATE_LIMIT = _coerce_int(os.environ.get("SEARCH_CANDIDATE_LIMIT"), 200, minimum=10, maximum=5000)
    SEARCH_DEFAULT_LIMIT = _coerce_int(os.environ.get("SEARCH_DEFAULT_LIMIT"), 20, minimum=1)
    SEARCH_MAX_LIMIT = _coerce_int(os.environ.get("SEARCH_MAX_LIMIT"), 100, minimum=1)
    if SEARCH_DEFAULT_LIMIT > SEARCH_MAX_LIMIT:
        SEARCH_DEFAULT_LIMIT = SEARCH_MAX_LIMIT
    SEARCH_MIN_SCORE = _coerce_float(os.environ.get("SEARCH_MIN_SCORE"), 1.0)
    # pg_trgm similarity() cut-off, only used on PostgreSQL
    SEARCH_TRGM_THRESHOLD = _coerce_float(os.environ.get("SEARCH_TRGM_THRESHOLD"), 0.2)

    # Incremental sync
    SYNC_BATCH_SIZE = _coerce_int(os.environ.get("SYNC_BATCH_SIZE"), 50, minimum=1, maximum=1000)
    SYNC_SOURCE_ORDER = _parse_source_list(os.environ.get("SYNC_SOURCE_ORDER"), DEFAULT_SYNC_SOURCE_ORDER)

    # Identity resolution
    IDENTITY_VALIDATE_EMAILS = _coerce_bool(os.environ.get("IDENTITY_VALIDATE_EMAILS"), default=True)


class DevelopmentConfig(Config):
    DEBUG = True
    # Keep the development database in the instance folder next to the project
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, including on Windows
    db_path = os.path.join(instance_path, "customer_hub_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    SYNC_BATCH_SIZE = 50


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
