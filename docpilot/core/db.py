from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from docpilot.core.config import settings
from docpilot.db.base import Base

# Асинхронный движок
engine = create_async_engine(settings.database_url, future=True, echo=settings.database_echo)

# Сессии
SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# Функция для dependency injection в FastAPI
async def get_db():
    async with SessionLocal() as session:
        yield session


async def init_models(bind: AsyncEngine = engine) -> None:
    """Создание таблиц всех моделей"""
    import docpilot.db.models  # noqa: F401  регистрирует таблицы в metadata

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
