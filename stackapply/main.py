from stackapply.api.main import app

if __name__ == "__main__":
    import uvicorn

    from stackapply.core.observability.logging import configure_logging
    from stackapply.core.settings import get_settings

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port)
