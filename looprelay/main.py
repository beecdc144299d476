"""Entry: start the control API; the relay loop autostarts from the app lifespan."""
import logging
import uvicorn

from looprelay.config import API_HOST, API_PORT, LOG_LEVEL


def main() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s: %(name)s: %(message)s")
    uvicorn.run(
        "looprelay.api.app:app",
        host=API_HOST,
        port=API_PORT,
    )


if __name__ == "__main__":
    main()
