import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Self

CONFIG_FILE = Path("tmsandbox.toml")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    speed: int = 300
    """Delay between two steps of a run, in milliseconds."""
    history_cap: int = 500
    history_drop: int = 100
    save_delay: float = 0.5
    """Seconds to wait after the last change before the session is written."""
    session_file: Path = Path("~/.tmsandbox/session.json")
    max_steps: int = 1_000_000
    """Step limit for headless runs."""

    def __post_init__(self) -> None:
        if self.speed < 0:
            raise ConfigError(f"speed must not be negative, got {self.speed}")
        if not 0 < self.history_drop <= self.history_cap:
            raise ConfigError(f"history_drop must be between 1 and history_cap, got {self.history_drop}")
        if self.save_delay < 0:
            raise ConfigError(f"save_delay must not be negative, got {self.save_delay}")
        if self.max_steps < 1:
            raise ConfigError(f"max_steps must be positive, got {self.max_steps}")

    @property
    def session_path(self) -> Path:
        return self.session_file.expanduser()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                raise ConfigError(f"Unknown configuration key '{key}'")
            expected = known[key].type
            if isinstance(value, bool):
                pass
            elif expected is Path and isinstance(value, str):
                values[key] = Path(value)
                continue
            elif expected is float and isinstance(value, int | float):
                values[key] = float(value)
                continue
            elif expected is int and isinstance(value, int):
                values[key] = value
                continue
            raise ConfigError(f"Config key '{key}' expected {expected.__name__}, got {type(value).__name__}")
        return cls(**values)

    @classmethod
    def load(cls, path: Path | None = None) -> Self:
        """Read settings from a TOML file, falling back to the defaults for anything it leaves out.

        Without an explicit path the file is optional.
        """
        if path is None:
            if not CONFIG_FILE.is_file():
                return cls()
            path = CONFIG_FILE
        try:
            data = tomllib.loads(path.read_text())
        except OSError as e:
            raise ConfigError(f"Could not read configuration file {path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Configuration file {path} is not valid TOML: {e}") from e
        return cls.from_dict(data.get("tmsandbox", data))

    def with_overrides(self, **overrides: Any) -> Self:
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
