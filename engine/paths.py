import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent

def _is_container_runtime():
    if os.path.exists("/.dockerenv"):
        return True
    return os.path.isdir("/data")


def _default_root_paths():
    if _is_container_runtime():
        return {
            "data": Path("/data"),
            "config": Path("/config"),
            "storage": Path("/storage"),
            "logs": Path("/logs"),
        }
    base = PROJECT_ROOT / "data"
    return {
        "data": base,
        "config": base / "config",
        "storage": base / "storage",
        "logs": base / "logs",
    }


_DEFAULTS = _default_root_paths()

DATA_DIR = Path(os.environ.get("INGESTR_DATA_DIR", _DEFAULTS["data"])).resolve()
CONFIG_DIR = Path(os.environ.get("INGESTR_CONFIG_DIR", _DEFAULTS["config"])).resolve()
STORAGE_DIR = Path(os.environ.get("INGESTR_STORAGE_DIR", _DEFAULTS["storage"])).resolve()
LOG_DIR = Path(os.environ.get("INGESTR_LOG_DIR", _DEFAULTS["logs"])).resolve()
DB_PATH = Path(os.environ.get("INGESTR_DB_PATH", DATA_DIR / "database" / "ingestr.sqlite")).resolve()


@dataclass(frozen=True)
class EnginePaths:
    log_dir: str
    db_path: str
    temp_root: str
    upload_temp_dir: str
    storage_root: str


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def resolve_config_path(path):
    if not path:
        resolved = os.path.join(CONFIG_DIR, "config.json")
    elif os.path.isabs(path):
        resolved = os.path.abspath(path)
    else:
        resolved = os.path.abspath(os.path.join(CONFIG_DIR, path))
    if not is_within_base(resolved, CONFIG_DIR):
        raise ValueError(f"Config path must be within CONFIG_DIR: {CONFIG_DIR}")
    return resolved


def is_within_base(path, base_dir):
    real = os.path.realpath(path)
    base = os.path.realpath(base_dir)
    try:
        return os.path.commonpath([real, base]) == base
    except ValueError:
        return False


def build_engine_paths(data_dir=None, storage_dir=None, log_dir=None, db_path=None):
    data_dir = Path(data_dir or DATA_DIR)
    storage_root = Path(storage_dir or STORAGE_DIR)
    log_dir = Path(log_dir or LOG_DIR)
    db_path = Path(db_path or (DB_PATH if data_dir == DATA_DIR else data_dir / "database" / "ingestr.sqlite"))
    temp_root = data_dir / "tmp" / "scopes"
    upload_temp_dir = data_dir / "tmp" / "uploads"

    for d in (db_path.parent, temp_root, upload_temp_dir, storage_root, log_dir):
        ensure_dir(d)

    return EnginePaths(
        log_dir=str(log_dir),
        db_path=str(db_path),
        temp_root=str(temp_root),
        upload_temp_dir=str(upload_temp_dir),
        storage_root=str(storage_root),
    )
