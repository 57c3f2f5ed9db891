"""
Development server entry point.

    cd backend && python -m server.main
"""

from __future__ import annotations

import os


def main() -> None:
    import uvicorn  # pylint: disable=import-outside-toplevel

    uvicorn.run(
        "server.asgi:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_level="info",
        reload=os.environ.get("ENV", "dev") == "dev",  # Dev mode only
    )


if __name__ == "__main__":
    main()
