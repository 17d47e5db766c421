import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings as default_settings
from .database import Database
from .errors import BookingError, ErrorKind
from .redis_client import create_redis
from .routers import appointments, availability
from .services.consumer import notification_consumer_loop
from .services.events import Notifier
from .services.notifications import LogNotificationGateway, WebhookNotificationGateway
from .services.reminder_checker import LeadBucket, ReminderDispatcher, reminder_checker_loop
from .services.slots.config import BookingConfig

logger = logging.getLogger(__name__)


def build_buckets(cfg: Settings) -> tuple[LeadBucket, ...]:
    return (
        LeadBucket("1h", cfg.reminder_1h_lead_minutes, "reminded_1h_at"),
        LeadBucket("30m", cfg.reminder_30m_lead_minutes, "reminded_30m_at"),
    )


def create_app(cfg: Settings | None = None, start_workers: bool = True) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(cfg.resolved_database_url).open()
        redis = create_redis(cfg.redis_url)
        notifier = Notifier(redis)

        app.state.settings = cfg
        app.state.db = db
        app.state.redis = redis
        app.state.notifier = notifier
        app.state.config = BookingConfig(
            shipping_limit_per_week=cfg.booking_limit_shipping_per_week,
            timezone=cfg.timezone,
        )

        tasks: list[asyncio.Task] = []
        if start_workers:
            if cfg.reminders_enabled:
                dispatcher = ReminderDispatcher(
                    db.session, notifier, build_buckets(cfg), cfg.timezone
                )
                tasks.append(asyncio.create_task(
                    reminder_checker_loop(dispatcher, cfg.reminder_interval_seconds)
                ))

            if cfg.notification_webhook_url:
                gateway = WebhookNotificationGateway(
                    cfg.notification_webhook_url, cfg.notification_timeout_seconds
                )
            else:
                gateway = LogNotificationGateway()
            tasks.append(asyncio.create_task(
                notification_consumer_loop(cfg.redis_url, gateway)
            ))

        logger.info("Appointments API started")
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            redis.close()
            db.close()
            logger.info("Appointments API stopped")

    app = FastAPI(title="Appointments API", lifespan=lifespan)

    @app.exception_handler(BookingError)
    async def booking_error_handler(_request: Request, exc: BookingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(_request: Request, exc: SQLAlchemyError):
        logger.error(f"Storage error: {exc}")
        err = BookingError(ErrorKind.SERVER_ERROR)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(availability.router)
    app.include_router(appointments.router)

    return app


logging.basicConfig(level=default_settings.log_level)

app = create_app()
