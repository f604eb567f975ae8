"""Environment-backed application configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_HOME_DIR = "~/.ai"
DEFAULT_ANTHROPIC_MODEL_ID = "claude-3-7-sonnet-20250219"
DEFAULT_BEDROCK_MODEL_ID = "anthropic.claude-3-7-sonnet-20250219-v1:0"
ANTHROPIC_CONFIG_NAME = "anthropic.cfg"
BEDROCK_CONFIG_NAME = "model.cfg"


class ConfigError(RuntimeError):
    """Raised when a backend config file cannot be created or parsed."""


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _file_bool(value: object, default: bool) -> bool:
    """Read a config file flag written either as a JSON boolean or a string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _to_bool(value, default)
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables."""

    home_dir: str
    log_file: str
    shell: str
    history_max_bytes: int
    history_max_lines: int
    max_files: int
    max_turns: int
    request_timeout: float
    console_echo: bool
    color: bool
    log_level: str

    @classmethod
    def from_env(cls) -> AppConfig:
        home_dir = str(
            Path(os.getenv("AICMD_HOME") or DEFAULT_HOME_DIR).expanduser()
        )
        file_config = _load_preferred_file_config(home_dir)

        return cls(
            home_dir=home_dir,
            log_file=str(
                Path(
                    os.getenv("AICMD_LOG_FILE")
                    or _to_optional_string(file_config.get("log_file"))
                    or str(Path(home_dir) / "action.log")
                ).expanduser()
            ),
            shell=_resolve_shell(
                os.getenv("AICMD_SHELL")
                or _to_optional_string(file_config.get("shell"))
            ),
            history_max_bytes=_to_positive_int(
                os.getenv("AICMD_HISTORY_MAX_BYTES") or file_config.get("history_max_bytes"),
                default=5 * 1024,
            ),
            history_max_lines=_to_positive_int(
                os.getenv("AICMD_HISTORY_MAX_LINES") or file_config.get("history_max_lines"),
                default=50,
            ),
            max_files=_to_positive_int(
                os.getenv("AICMD_MAX_FILES") or file_config.get("max_files"),
                default=1000,
            ),
            max_turns=_to_non_negative_int(
                os.getenv("AICMD_MAX_TURNS") or file_config.get("max_turns"),
                default=0,
            ),
            request_timeout=_to_positive_float(
                os.getenv("AICMD_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                default=120.0,
            ),
            console_echo=_to_bool(
                os.getenv("AICMD_CONSOLE_ECHO"),
                default=_file_bool(file_config.get("console_echo"), True),
            ),
            color=os.getenv("NO_COLOR") is None and _file_bool(file_config.get("color"), True),
            log_level=(
                os.getenv("AICMD_LOG_LEVEL")
                or _to_optional_string(file_config.get("log_level"))
                or "WARNING"
            ).upper(),
        )


@dataclass(slots=True)
class AnthropicSettings:
    """Contents of ``anthropic.cfg``."""

    api_key: str = ""
    model_id: str = DEFAULT_ANTHROPIC_MODEL_ID

    @classmethod
    def load(cls, home_dir: str | Path) -> AnthropicSettings:
        raw = _load_or_bootstrap(Path(home_dir) / ANTHROPIC_CONFIG_NAME, asdict(cls()))
        settings = cls(
            api_key=_to_optional_string(raw.get("api_key")) or "",
            model_id=_to_optional_string(raw.get("model_id")) or DEFAULT_ANTHROPIC_MODEL_ID,
        )
        if not settings.api_key:
            settings.api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
        return settings


@dataclass(slots=True)
class BedrockSettings:
    """Contents of ``model.cfg``."""

    modelid: str = DEFAULT_BEDROCK_MODEL_ID
    region: str | None = None
    profile: str | None = None
    endpoint: str | None = None

    @classmethod
    def load(cls, home_dir: str | Path) -> BedrockSettings:
        raw = _load_or_bootstrap(
            Path(home_dir) / BEDROCK_CONFIG_NAME,
            {"modelid": DEFAULT_BEDROCK_MODEL_ID},
        )
        return cls(
            modelid=_to_optional_string(raw.get("modelid")) or DEFAULT_BEDROCK_MODEL_ID,
            region=_to_optional_string(raw.get("region")),
            profile=_to_optional_string(raw.get("profile")),
            endpoint=_to_optional_string(raw.get("endpoint")),
        )


def anthropic_config_path(home_dir: str | Path) -> Path:
    return Path(home_dir) / ANTHROPIC_CONFIG_NAME


def _load_or_bootstrap(path: Path, defaults: dict[str, object]) -> dict[str, object]:
    """Read a backend JSON file, writing ``defaults`` to it on first use."""
    if not path.exists():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(defaults, indent=2), encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"failed to write default config file {path}: {exc}") from exc
        LOGGER.info("backend_config_bootstrapped", extra={"path": str(path)})
        return dict(defaults)

    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"failed to parse config file {path}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return parsed


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str | Path) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        LOGGER.warning("config_file_unreadable", extra={"path": str(path)})
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config(home_dir: str) -> dict[str, object]:
    explicit_path = os.getenv("AICMD_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config(Path(home_dir) / "config.json")
    local_override = _load_file_config("aicmd.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _shell_value(value: str) -> str:
    normalized = value.strip().lower()
    aliases = {
        "powershell": "powershell",
        "pwsh": "powershell",
        "bash": "bash",
        "sh": "sh",
        "shell": "bash",
    }
    return aliases.get(normalized, _default_shell_for_platform())


def _default_shell_for_platform(os_name: str | None = None) -> str:
    platform_name = os.name if os_name is None else os_name
    return "powershell" if platform_name == "nt" else "bash"


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return _default_shell_for_platform()
    return _shell_value(value)


def _to_positive_int(value: object, *, default: int) -> int:
    parsed = _to_int(value)
    return parsed if parsed is not None and parsed > 0 else default


def _to_non_negative_int(value: object, *, default: int) -> int:
    parsed = _to_int(value)
    return parsed if parsed is not None and parsed >= 0 else default


def _to_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _to_positive_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
