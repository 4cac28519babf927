import uvicorn

from tugofwar.core.config import settings


def main() -> None:
    # logging is configured by the app lifespan
    uvicorn.run("tugofwar.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
