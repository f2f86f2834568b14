"""Database engine and session factory configuration."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from filedesk.packages.files.core.config import get_settings

settings = get_settings()

# SQLite 连接需允许跨线程访问（TestClient/线程池中的同步路由）
_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

# ``pool_pre_ping`` keeps the connection pool healthy; ``echo`` mirrors SQL logs
# when enabled in settings for easier debugging.
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=settings.database_echo,
    connect_args=_connect_args,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
