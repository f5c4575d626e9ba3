import argparse
import logging

import uvicorn

from autofill_agent.config import settings
from autofill_agent.server.api import app


def main():
    parser = argparse.ArgumentParser(description="Serve the autofill control API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
