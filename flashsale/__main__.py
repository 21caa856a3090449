"""Entry point for running the flash sale bot via python -m flashsale"""

import asyncio
import logging

from flashsale.errors import ConnectionExhaustedError
from flashsale.runtime import main

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except ConnectionExhaustedError as exc:
        logging.getLogger("flash-sale").critical("Shutting down: %s", exc)
        raise SystemExit(1) from exc
