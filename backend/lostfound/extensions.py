import os

from flask_cors import CORS
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Flask extension singletons, bound in create_app()

db = SQLAlchemy()
migrate = Migrate()


def _allowed_origins() -> list[str]:
    # Comma-separated CORS_ALLOW_ORIGINS; production must set it explicitly.
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    origins = [o.strip() for o in raw.split(",") if o.strip()] if raw else []
    if not origins and os.getenv("FLASK_ENV", "development").lower() != "production":
        origins = [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ]
    return origins


cors = CORS(resources={r"/api/*": {"origins": _allowed_origins()}})
