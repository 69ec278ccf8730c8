import json
import os
from dataclasses import dataclass
from pathlib import Path

CONFIG_DIR = Path(os.environ.get("STALLVIEW_CONFIG_DIR", "config")).resolve()
ASSETS_DIR = CONFIG_DIR / "assets"
VIEWER_JSON = CONFIG_DIR / "viewer.json"
CATALOG_JSON = CONFIG_DIR / "catalog.json"

DEFAULT_AUTOPLAY_INTERVAL_MS = 2000
DEFAULT_MODE = "single-view"
DEFAULT_STORE_TIMEOUT_S = 10.0
DEFAULT_SESSION_IDLE_S = 1800.0
DEFAULT_SESSION_PRUNE_S = 60.0


@dataclass(frozen=True)
class ViewerSettings:
    autoplay_interval_ms: int = DEFAULT_AUTOPLAY_INTERVAL_MS
    default_mode: str = DEFAULT_MODE
    store_timeout_s: float = DEFAULT_STORE_TIMEOUT_S
    session_idle_s: float = DEFAULT_SESSION_IDLE_S
    session_prune_s: float = DEFAULT_SESSION_PRUNE_S

    @property
    def autoplay_interval_s(self) -> float:
        return self.autoplay_interval_ms / 1000.0


def ensure_config() -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    ASSETS_DIR.mkdir(parents=True, exist_ok=True)
    if not VIEWER_JSON.exists():
        VIEWER_JSON.write_text("{}", encoding="utf-8")
    if not CATALOG_JSON.exists():
        CATALOG_JSON.write_text("[]", encoding="utf-8")


def _read_json(path: Path, empty):
    if not path.exists():
        return empty
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return empty
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"{path.name} must be valid JSON") from exc


def _positive_number(data: dict, key: str, default):
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise RuntimeError(f"viewer.json: {key} must be a positive number")
    return value


def load_viewer_settings() -> ViewerSettings:
    data = _read_json(VIEWER_JSON, {})
    if not isinstance(data, dict):
        raise RuntimeError("viewer.json must be a JSON object")
    default_mode = data.get("default_mode", DEFAULT_MODE)
    if not isinstance(default_mode, str):
        raise RuntimeError("viewer.json: default_mode must be a string")
    return ViewerSettings(
        autoplay_interval_ms=int(
            _positive_number(data, "autoplay_interval_ms", DEFAULT_AUTOPLAY_INTERVAL_MS)
        ),
        default_mode=default_mode,
        store_timeout_s=float(_positive_number(data, "store_timeout_s", DEFAULT_STORE_TIMEOUT_S)),
        session_idle_s=float(_positive_number(data, "session_idle_s", DEFAULT_SESSION_IDLE_S)),
        session_prune_s=float(_positive_number(data, "session_prune_s", DEFAULT_SESSION_PRUNE_S)),
    )


def load_catalog() -> list[dict]:
    data = _read_json(CATALOG_JSON, [])
    if not isinstance(data, list):
        raise RuntimeError("catalog.json must be a JSON list of comic records")
    return data
