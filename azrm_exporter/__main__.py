"""Run the exporter: python -m azrm_exporter"""

import uvicorn

from azrm_exporter.core.config import settings
from azrm_exporter.main import create_app


def main() -> None:
    uvicorn.run(
        create_app(settings),
        host=settings.SERVER_BIND_HOST,
        port=settings.SERVER_BIND_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
