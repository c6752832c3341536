"""Drop the catalog database and rebuild the schema (development only)."""

from pathlib import Path

from feedworker.db.connection import get_db_path
from feedworker.db.migrate import migrate


def catalog_files(db_path: Path) -> list[Path]:
    """The database file plus the sidecars SQLite keeps next to it in WAL mode."""
    return [db_path] + [db_path.with_name(f"{db_path.name}{s}") for s in ("-wal", "-shm")]


def reset() -> None:
    db_path = get_db_path()
    removed = [path for path in catalog_files(db_path) if path.exists()]
    for path in removed:
        path.unlink()
    if removed:
        print(f"✓ Removed {', '.join(p.name for p in removed)}")

    migrate()
    print(f"✓ Fresh catalog at {db_path}")


if __name__ == "__main__":
    reset()
