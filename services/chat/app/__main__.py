from __future__ import annotations

import uvicorn

from services.chat.app.settings import SETTINGS


def main() -> None:
    uvicorn.run(
        "services.chat.app.main:app",
        host=SETTINGS.host,
        port=SETTINGS.port,
        log_level=SETTINGS.log_level.lower(),
    )


if __name__ == "__main__":
    main()
