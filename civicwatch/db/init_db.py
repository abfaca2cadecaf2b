from sqlalchemy.ext.asyncio import AsyncEngine

from civicwatch.core.log import get_logger
from civicwatch.db.base_class import Base
from civicwatch.models import User, Report  # noqa: F401  registers the tables

logger = get_logger("civicwatch.storage")


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized")


async def create_initial_data(storage) -> None:
    """Create the first admin account when FIRST_ADMIN_EMAIL/PASSWORD are configured."""
    from civicwatch.core.config import settings
    from civicwatch.crud.user import create_user, get_user_by_email
    from civicwatch.models import UserRole
    from civicwatch.schemas import UserCreate

    if not (settings.FIRST_ADMIN_EMAIL and settings.FIRST_ADMIN_PASSWORD):
        return

    async with storage.transaction() as tx:
        admin = await get_user_by_email(tx, email=settings.FIRST_ADMIN_EMAIL)
        if not admin:
            await create_user(
                tx,
                obj_in=UserCreate(
                    name=settings.FIRST_ADMIN_NAME,
                    email=settings.FIRST_ADMIN_EMAIL,
                    password=settings.FIRST_ADMIN_PASSWORD,
                ),
                role=UserRole.ADMIN,
            )
            logger.info("Admin user created")
