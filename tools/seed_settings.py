import json
import os
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path(os.getenv("DB_PATH", ROOT / "clicker.db"))
DATA_DIR = Path(os.getenv("DATA_DIR", ROOT / "clicker" / "data"))

# settings key -> built-in catalog file used when no settings file is given
CATALOG_FILES = {
    "upgrades": "upgrades.json",
    "deals": "deals.json",
    "tasks": "tasks.json",
    "daily_rewards": "daily_rewards.json",
    "admin_config": "admin.json",
}


def load_settings(path: Path | None = None) -> dict:
    if path is not None:
        if not path.exists():
            raise SystemExit(f"Settings file not found: {path}")
        settings = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(settings, dict):
            raise SystemExit("Settings file must contain a JSON object.")
        return settings
    settings = {}
    for key, name in CATALOG_FILES.items():
        catalog = DATA_DIR / name
        if not catalog.exists():
            raise SystemExit(f"{name} not found: {catalog}")
        settings[key] = json.loads(catalog.read_text(encoding="utf-8"))
    return settings


def ensure_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS game_settings (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            settings_json TEXT NOT NULL,
            last_updated TEXT
        )
        """
    )


def write_settings(conn: sqlite3.Connection, settings: dict) -> None:
    conn.execute(
        """
        INSERT INTO game_settings (id, settings_json, last_updated)
        VALUES (1, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            settings_json = excluded.settings_json,
            last_updated = excluded.last_updated
        """,
        (
            json.dumps(settings, ensure_ascii=False),
            datetime.now(timezone.utc).isoformat(),
        ),
    )


def main() -> None:
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    settings = load_settings(path)
    conn = sqlite3.connect(DB_PATH)
    try:
        ensure_table(conn)
        write_settings(conn, settings)
        conn.commit()
    finally:
        conn.close()
    keys = ", ".join(sorted(settings)) or "nothing"
    print(f"Seeded {keys} into {DB_PATH}")


if __name__ == "__main__":
    main()
