import uvicorn

from app.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    is_dev = not settings.is_production
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=is_dev,
        workers=1 if is_dev else settings.web_concurrency,
    )
