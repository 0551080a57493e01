from pathlib import Path

from pydantic import ValidationError

from .constants import CONFIG_FILE
from .errors import ConfigError
from .helpers import read_json
from .models import Settings


def load_config(path: str | Path | None = None) -> Settings:
    """
    Load and validate ``config.json``.

    :param path: explicit config path; defaults to ``config.json`` in the working directory.
    :return Settings: validated settings, or the defaults when no file exists.
    :raises ConfigError: the file is not JSON or does not match the schema.
    """
    config_path = Path(path) if path else Path.cwd() / CONFIG_FILE

    if not config_path.exists():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        return Settings()

    try:
        data = read_json(config_path)
    except ValueError as e:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {e}") from e

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}:\n{e}") from e
