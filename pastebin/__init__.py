from __future__ import annotations

import os

from flask import Flask
from flask_cors import CORS

from .api.pastes import SERVICE_EXTENSION, api_bp
from .config import get_config
from .observability import init_observability
from .repositories.paste_repository import PasteRepository
from .services.paste_service import PasteService
from .storage import PasteStore, build_store


def create_app(env_name: str | None = None, *, store: PasteStore | None = None) -> Flask:
    """
    Application factory for the paste service.

    The configuration is selected based on the provided ``env_name`` or,
    if not given, the ``APP_ENV`` environment variable (falling back to
    ``development``). The storage strategy is chosen once here and held for
    the lifetime of the app; tests may inject their own ``store``.
    """
    if env_name is None:
        env_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    app_config = get_config(env_name)
    app.config.from_object(app_config)

    CORS(
        app,
        origins=app.config["CLIENT_URL"],
        supports_credentials=True,
    )

    # Initialize infrastructure layers
    init_observability(app)

    if store is None:
        store = build_store(app.config)
    repository = PasteRepository(
        store,
        attempts=app.config["STORE_RETRY_ATTEMPTS"],
        backoff_seconds=app.config["STORE_RETRY_BACKOFF_SECONDS"],
    )
    app.extensions[SERVICE_EXTENSION] = PasteService(
        repository=repository,
        swap_attempts=app.config["SWAP_ATTEMPTS"],
    )

    # Register API blueprints
    app.register_blueprint(api_bp)

    return app
