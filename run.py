from __future__ import annotations

import os

from pastebin import create_app
from pastebin.api.pastes import SERVICE_EXTENSION


def main() -> None:
    env = os.getenv("APP_ENV", "development")
    app = create_app(env)

    host = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    port = int(os.getenv("PORT", os.getenv("FLASK_RUN_PORT", "3001")))

    try:
        app.run(host=host, port=port, threaded=True)
    finally:
        app.extensions[SERVICE_EXTENSION].repository.store.close()


if __name__ == "__main__":
    main()
