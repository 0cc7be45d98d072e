import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables in priority order:
# 1. backend/.env (lowest priority)
# 2. repo_root/.env (overrides backend)
# 3. repo_root/.env.local (highest priority - overrides everything)
repo_root = Path(__file__).parent.parent
env_local = repo_root / ".env.local"
env_file = repo_root / ".env"
backend_env = Path(__file__).parent / ".env"

if backend_env.exists():
    load_dotenv(dotenv_path=backend_env, override=False)
if env_file.exists():
    load_dotenv(dotenv_path=env_file, override=True)
if env_local.exists():
    load_dotenv(dotenv_path=env_local, override=True)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


# -----------------------------------------------------------------------------
# Storage
# -----------------------------------------------------------------------------
CASEMAP_DB_PATH = os.getenv("CASEMAP_DB_PATH", str(Path(__file__).parent / "casemap.db"))
# Seconds a connection waits on a locked database before giving up
SQLITE_BUSY_TIMEOUT_SECONDS = float(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", "5"))
# Hard ceiling for a single graph save transaction; exceeding it is retryable
SAVE_TRANSACTION_TIMEOUT_SECONDS = float(os.getenv("SAVE_TRANSACTION_TIMEOUT_SECONDS", "30"))

# Seed system roles / relationship types / event types on startup
SEED_REGISTRIES_ON_STARTUP = _env_flag("SEED_REGISTRIES_ON_STARTUP", "true")

# -----------------------------------------------------------------------------
# Client save scheduler
# -----------------------------------------------------------------------------
AUTOSAVE_DELAY_SECONDS = float(os.getenv("AUTOSAVE_DELAY_SECONDS", "5"))
AUTOSAVE_BACKUP_PATH = os.getenv("AUTOSAVE_BACKUP_PATH", str(repo_root / ".casemap_autosave_backup.json"))

# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------
ENTITY_AVATAR_BASE_URL = os.getenv("ENTITY_AVATAR_BASE_URL", "https://ui-avatars.com/api/")

# -----------------------------------------------------------------------------
# HTTP
# -----------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]
