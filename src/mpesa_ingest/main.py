import os

import uvicorn

from mpesa_ingest.logger import get_logging_config


def run() -> None:
    uvicorn.run(
        "mpesa_ingest.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    run()
