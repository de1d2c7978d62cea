import logging

import pytest

from schooltrack.config import DEFAULT_UPLOAD_URL, TEMPLATE_YAML, Settings, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("CONFIG", "DATABASE_URL", "BACKUP_DIR", "UPLOAD_URL", "UPLOAD_TIMEOUT", "LOG_LEVEL"):
        monkeypatch.delenv(f"SCHOOLTRACK_{key}", raising=False)


def test_load_yaml_config(tmp_path):
    path = tmp_path / "schooltrack.yaml"
    path.write_text(
        "database_url: sqlite:///data.sqlite\n"
        "backup_dir: /var/backups/schooltrack\n"
        "upload_timeout: 15\n"
        "log_level: debug\n",
        encoding="utf-8",
    )

    settings = load_config(path)

    assert settings.database_url == "sqlite:///data.sqlite"
    assert settings.backup_dir == "/var/backups/schooltrack"
    assert settings.upload_timeout == 15.0
    assert settings.upload_url == DEFAULT_UPLOAD_URL
    assert settings.log_level == "DEBUG"
    assert settings.log_level_number == logging.DEBUG


def test_load_toml_config(tmp_path):
    path = tmp_path / "schooltrack.toml"
    path.write_text('database_url = "sqlite://"\nlog_level = "WARNING"\n', encoding="utf-8")

    settings = load_config(path)

    assert settings.database_url == "sqlite://"
    assert settings.log_level_number == logging.WARNING


def test_template_is_a_valid_config(tmp_path):
    path = tmp_path / "starter.yml"
    path.write_text(TEMPLATE_YAML, encoding="utf-8")

    settings = load_config(path)

    assert settings.database_url == "sqlite:///schooltrack.sqlite"
    assert not settings.backup_dir.startswith("~")


def test_environment_overrides_file_values(tmp_path, monkeypatch):
    path = tmp_path / "schooltrack.yaml"
    path.write_text("database_url: sqlite:///file.sqlite\n", encoding="utf-8")
    monkeypatch.setenv("SCHOOLTRACK_DATABASE_URL", "sqlite:///env.sqlite")
    monkeypatch.setenv("SCHOOLTRACK_UPLOAD_TIMEOUT", "30")

    settings = load_config(path)

    assert settings.database_url == "sqlite:///env.sqlite"
    assert settings.upload_timeout == 30.0


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "from-env.yaml"
    path.write_text("log_level: ERROR\n", encoding="utf-8")
    monkeypatch.setenv("SCHOOLTRACK_CONFIG", str(path))

    assert load_config().log_level == "ERROR"


def test_unknown_keys_are_rejected():
    with pytest.raises(ValueError, match="Unknown config keys: colour"):
        Settings.from_dict({"colour": "blue"})


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"log_level": "LOUD"}, "unknown level"),
        ({"database_url": "  "}, "non-empty string"),
        ({"upload_timeout": 0}, "must be positive"),
        ({"upload_timeout": "soon"}, "must be a number"),
    ],
)
def test_invalid_values_are_rejected(raw, message):
    with pytest.raises(ValueError, match=message):
        Settings.from_dict(raw)


def test_missing_file_and_unsupported_type(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")

    ini = tmp_path / "settings.ini"
    ini.write_text("[x]\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported config file type"):
        load_config(ini)
