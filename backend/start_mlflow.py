"""Start a local MLflow tracking server for generation and submission runs."""
import logging
import sqlite3
import subprocess
import sys
from pathlib import Path
from typing import Any

import yaml

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent / "configs" / "mlflow_config.yaml"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5001


def validate_sqlite_db(db_path: Path) -> bool:
    """Check that the tracking database opens and passes an integrity check."""
    conn = None
    try:
        conn = sqlite3.connect(str(db_path))
        row = conn.execute("PRAGMA integrity_check").fetchone()
    except sqlite3.DatabaseError:
        return False
    finally:
        if conn:
            conn.close()
    return bool(row) and row[0] == "ok"


def repair_sqlite_db(db_path: Path) -> bool:
    """Copy what is still readable into a fresh database and swap it in.

    A database that cannot be read at all is deleted, so the server starts
    with an empty one.
    """
    recovered_path = db_path.with_name(f"{db_path.stem}_recovered{db_path.suffix}")
    corrupt_db = None
    new_db = None
    try:
        corrupt_db = sqlite3.connect(str(db_path))
        new_db = sqlite3.connect(str(recovered_path))

        with new_db:
            for statement in corrupt_db.iterdump():
                if not statement.strip():
                    continue
                try:
                    new_db.execute(statement)
                except sqlite3.Error:
                    logger.warning("Skipping statement during repair: %s", statement[:80])

        new_db.close()
        new_db = None
        db_path.unlink(missing_ok=True)
        recovered_path.rename(db_path)
        logger.info("Repaired tracking database: %s", db_path)
        return True
    except sqlite3.Error:
        logger.exception("Could not repair tracking database")
        db_path.unlink(missing_ok=True)
        recovered_path.unlink(missing_ok=True)
        logger.warning("Deleted unreadable tracking database: %s", db_path)
        return False
    finally:
        if corrupt_db:
            corrupt_db.close()
        if new_db:
            new_db.close()


def load_config(config_path: Path = CONFIG_PATH) -> dict[str, Any]:
    """Read the server settings, filling in defaults."""
    with config_path.open() as f:
        config = yaml.safe_load(f) or {}

    server = config.get("server") or {}
    artifact = config.get("artifact") or {}
    if "location" not in artifact:
        msg = "mlflow_config.yaml needs artifact.location"
        raise ValueError(msg)

    return {
        "host": server.get("host", DEFAULT_HOST),
        "port": int(server.get("port", DEFAULT_PORT)),
        "artifact_location": Path(artifact["location"]),
    }


def build_command(host: str, port: int, db_path: Path, artifact_path: Path) -> list[str]:
    return [
        "mlflow",
        "server",
        "--backend-store-uri",
        f"sqlite:///{db_path}",
        "--default-artifact-root",
        str(artifact_path.absolute()),
        "--host",
        host,
        "--port",
        str(port),
    ]


def start_mlflow_server(config_path: Path = CONFIG_PATH) -> int:
    """Start the MLflow server in the foreground and return its exit code."""
    try:
        config = load_config(config_path)

        artifact_path = config["artifact_location"]
        artifact_path.mkdir(exist_ok=True, parents=True)

        db_path = artifact_path / "mlflow.db"
        if db_path.exists() and not validate_sqlite_db(db_path):
            logger.warning("Database corruption detected. Attempting repair...")
            if not repair_sqlite_db(db_path):
                logger.warning("Could not repair database. Starting with a fresh database.")

        command = build_command(config["host"], config["port"], db_path, artifact_path)

        logger.info("Starting MLflow server...")
        logger.info("Tracking URI: http://%s:%s", config["host"], config["port"])
        logger.info("Artifact location: %s", artifact_path)

        result = subprocess.run(command, check=False)
        return result.returncode

    except FileNotFoundError:
        logger.exception("Configuration file not found")
        return 1
    except (yaml.YAMLError, ValueError):
        logger.exception("Invalid MLflow configuration")
        return 1


if __name__ == "__main__":
    sys.exit(start_mlflow_server())
