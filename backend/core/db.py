import logging

from psycopg2 import pool

from core.config import settings

logger = logging.getLogger(__name__)

# Connection pools, created lazily on first use
_content_pool = None
_user_pool = None


def _conn_common_kwargs():
    """Common connection kwargs with sane defaults for cloud envs."""
    # Keep startup snappy; let app boot even if DB is slow/unreachable
    return {"connect_timeout": 5, "sslmode": "prefer"}


def _get_content_pool():
    """Get or create the content database connection pool (requests, settings, mirror)"""
    global _content_pool
    if _content_pool is None:
        if not all([settings.CONTENT_DB_HOST, settings.CONTENT_DB_PASSWORD]):
            raise ValueError("Missing required database environment variables: CONTENT_DB_HOST and CONTENT_DB_PASSWORD")

        _content_pool = pool.SimpleConnectionPool(
            minconn=2,
            maxconn=20,
            host=settings.CONTENT_DB_HOST,
            port=settings.CONTENT_DB_PORT or 5432,
            database=settings.CONTENT_DB_NAME or "content",
            user=settings.CONTENT_DB_USER or "postgres",
            password=settings.CONTENT_DB_PASSWORD,
            **_conn_common_kwargs(),
        )
        logger.info("✅ Content database connection pool created (2-20 connections)")

    return _content_pool


def get_content_connection():
    """Get a raw psycopg2 connection for the content database"""
    return _get_content_pool().getconn()


def return_content_connection(conn):
    """Return a connection to the content pool"""
    if _content_pool and conn:
        _content_pool.putconn(conn)


def _get_user_pool():
    """Get or create the user directory connection pool"""
    global _user_pool
    if _user_pool is None:
        if not all([settings.USER_DB_HOST, settings.USER_DB_PASSWORD]):
            raise ValueError("Missing required user database environment variables: USER_DB_HOST and USER_DB_PASSWORD")

        _user_pool = pool.SimpleConnectionPool(
            minconn=1,
            maxconn=10,
            host=settings.USER_DB_HOST,
            port=settings.USER_DB_PORT or 5432,
            database=settings.USER_DB_NAME or "users",
            user=settings.USER_DB_USER or "postgres",
            password=settings.USER_DB_PASSWORD,
            **_conn_common_kwargs(),
        )
        logger.info("✅ User database connection pool created (1-10 connections)")

    return _user_pool


def get_user_connection():
    """Get connection for the user directory"""
    return _get_user_pool().getconn()


def return_user_connection(conn):
    """Return a connection to the user pool"""
    if _user_pool and conn:
        _user_pool.putconn(conn)


def initialize_database():
    """Test database connection and create the inventory tables"""
    logger.info("🔧 Testing database connection...")

    try:
        conn = get_content_connection()
        return_content_connection(conn)
        logger.info("✅ Database connection successful")

        try:
            from modules.inventory.rentals.repo import RentalRepo
            RentalRepo().init_tables()
            logger.info("✅ Rental request table initialized")
        except Exception as e:
            logger.warning(f"⚠️  Could not initialize rental tables: {e}")

        try:
            from modules.inventory.sync.repo import MirrorRepo
            MirrorRepo().init_tables()
            logger.info("✅ Inventory mirror tables initialized")
        except Exception as e:
            logger.warning(f"⚠️  Could not initialize mirror tables: {e}")

        return True
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        logger.warning("⚠️  Check database configuration and environment variables")
        return False
