import sys

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from kincare.api.routes import router
from kincare.config import get_settings
from kincare.deps import Container, build_container
from kincare.errors import DependencyUnavailable, PersistenceFailure, ValidationError

# Configure loguru
logger.remove()
logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")


def create_app(container: Container | None = None) -> FastAPI:
    app = FastAPI(title="KinCare Core", version="0.1.0")
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("{} {}", request.method, request.url.path)
        response: Response = await call_next(request)
        logger.info("→ {}", response.status_code)
        return response

    @app.exception_handler(ValidationError)
    async def invalid_request(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "retryable": False})

    @app.exception_handler(DependencyUnavailable)
    async def dependency_unavailable(request: Request, exc: DependencyUnavailable):
        logger.warning("Dependency unavailable: {}", exc)
        return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure(request: Request, exc: PersistenceFailure):
        logger.error("Persistence failure: {}", exc)
        return JSONResponse(status_code=500, content={"detail": "Storage error, please retry", "retryable": True})

    app.include_router(router)

    @app.on_event("startup")
    async def startup():
        """Wire the container and start the Telegram bot alongside FastAPI."""
        settings = get_settings()
        if app.state.container is None:
            app.state.container = build_container(settings)

        if not settings.telegram_bot_token:
            logger.warning("KINCARE_TELEGRAM_BOT_TOKEN not set — bot will not start")
            return

        from kincare.bot.handler import build_bot_app

        bot_app = build_bot_app(settings.telegram_bot_token, app.state.container)
        app.state.bot = bot_app

        # Initialize and start polling in the background
        await bot_app.initialize()
        await bot_app.start()
        await bot_app.updater.start_polling(drop_pending_updates=True)
        logger.info("Telegram bot started (polling)")

    @app.on_event("shutdown")
    async def shutdown():
        """Gracefully stop the Telegram bot and release connections."""
        bot_app = getattr(app.state, "bot", None)
        if bot_app:
            await bot_app.updater.stop()
            await bot_app.stop()
            await bot_app.shutdown()
            logger.info("Telegram bot stopped")
        if app.state.container is not None:
            app.state.container.close()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
