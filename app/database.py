# app/database.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv
from app.core.config import settings

# Загрузка .env
load_dotenv()

def make_engine(database_url: str) -> Engine:
    """Создание движка SQLAlchemy"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        pool_pre_ping=True,      # Проверка соединения
        pool_recycle=300,        # Пересоздание каждые 5 мин
        echo=False,              # Логи SQL (True для debug)
        connect_args=connect_args,
    )

def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        expire_on_commit=False
    )

engine = make_engine(settings.DATABASE_URL)

# Фабрика сессий
SessionLocal = make_session_factory(engine)

# Базовый класс для моделей
Base = declarative_base()

def get_db():
    """FastAPI dependency для получения сессии БД"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Создание таблиц при старте (dev)
def create_tables(bind: Engine = None):
    # Модели должны быть импортированы до create_all
    import app.models.sync  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
