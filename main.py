"""
Local launcher for the editor backend.
`uvicorn main:app` works too; run() adds logging setup and the default port.
"""

import logging
import os

import uvicorn

from server import app

__all__ = ["app", "run"]


def run() -> None:
    logging.basicConfig(
        level=os.environ.get("TXTI_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run(app, host="127.0.0.1", port=port, reload=False)


if __name__ == "__main__":
    run()
