import sqlite3

import pytest

import start_mlflow


def test_valid_database(tmp_path):
    db_path = tmp_path / "mlflow.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE runs (id TEXT)")
    conn.close()

    assert start_mlflow.validate_sqlite_db(db_path)


def test_garbage_file_is_not_a_database(tmp_path):
    db_path = tmp_path / "mlflow.db"
    db_path.write_bytes(b"this is not sqlite" * 100)

    assert not start_mlflow.validate_sqlite_db(db_path)


def test_repair_keeps_readable_rows(tmp_path):
    db_path = tmp_path / "mlflow.db"
    conn = sqlite3.connect(db_path)
    with conn:
        conn.execute("CREATE TABLE runs (id TEXT)")
        conn.execute("INSERT INTO runs VALUES ('r-1')")
    conn.close()

    assert start_mlflow.repair_sqlite_db(db_path)

    conn = sqlite3.connect(db_path)
    assert conn.execute("SELECT id FROM runs").fetchall() == [("r-1",)]
    conn.close()


def test_load_config(tmp_path):
    config_path = tmp_path / "mlflow_config.yaml"
    config_path.write_text("server:\n  port: 6000\nartifact:\n  location: ./runs\n")

    config = start_mlflow.load_config(config_path)

    assert config["host"] == "127.0.0.1"
    assert config["port"] == 6000
    assert config["artifact_location"].name == "runs"


def test_shipped_config_holds_only_server_settings():
    with start_mlflow.CONFIG_PATH.open() as f:
        raw = start_mlflow.yaml.safe_load(f)

    assert set(raw) == {"server", "artifact"}
    assert start_mlflow.load_config()["port"] == 5001


def test_load_config_requires_artifact_location(tmp_path):
    config_path = tmp_path / "mlflow_config.yaml"
    config_path.write_text("server:\n  port: 6000\n")

    with pytest.raises(ValueError, match="artifact.location"):
        start_mlflow.load_config(config_path)


def test_missing_config_exits_with_error(tmp_path):
    assert start_mlflow.start_mlflow_server(tmp_path / "missing.yaml") == 1


def test_server_command(tmp_path):
    command = start_mlflow.build_command("127.0.0.1", 5001, tmp_path / "mlflow.db", tmp_path)

    assert command[:2] == ["mlflow", "server"]
    assert command[command.index("--port") + 1] == "5001"
    assert command[command.index("--backend-store-uri") + 1].startswith("sqlite:///")
