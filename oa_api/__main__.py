"""Run the API server: ``python -m oa_api [config.yaml]``."""

from __future__ import annotations

import sys

import uvicorn

from oa_api.app import create_app
from oa_config import load_settings


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    settings = load_settings(args[0] if args else None)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
