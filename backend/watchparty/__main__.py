import uvicorn

from watchparty.config import get_settings


def main():
    settings = get_settings()
    uvicorn.run("watchparty.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)


if __name__ == "__main__":
    main()
