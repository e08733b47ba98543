from streamrelay.config import DEFAULTS, load_config


def test_defaults_without_environment():
    config = load_config({})
    assert config == DEFAULTS
    assert config["PORT"] == 5000
    assert config["STREAM_TTL_SEC"] == 600


def test_environment_overrides():
    config = load_config({"PORT": "8080", "STREAM_TTL_SEC": "120", "UA": "Custom/1.0"})
    assert config["PORT"] == 8080
    assert config["STREAM_TTL_SEC"] == 120
    assert config["USER_AGENT"] == "Custom/1.0"


def test_invalid_numbers_fall_back(caplog):
    config = load_config({"PORT": "eighty", "FETCH_TIMEOUT_SEC": " "})
    assert config["PORT"] == 5000
    assert config["FETCH_TIMEOUT_SEC"] == 30
    assert "PORT" in caplog.text
