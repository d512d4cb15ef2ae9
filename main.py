import os

import uvicorn

from app.voice_coach.web import app


def main() -> None:
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").strip().lower() or "info",
    )


if __name__ == "__main__":
    main()
