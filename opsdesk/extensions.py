import os

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ======================
# Database
# ======================
db = SQLAlchemy()
migrate = Migrate()

# ======================
# Login Manager
# ======================
# JSON API only: no login_view, unauthorized requests get a 401 body
# (see opsdesk.auth.unauthorized).
login_manager = LoginManager()
login_manager.session_protection = "basic"

# ======================
# Rate Limiter
# ======================
# Prefer Redis in production, fall back to in-memory locally.
_limiter_storage = (
    os.getenv("LIMITER_STORAGE_URL")
    or os.getenv("REDIS_URL")
    or "memory://"
)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=_limiter_storage,
)
