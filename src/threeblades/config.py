from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

DEFAULT_ROOT = "https://api.3blades.io/v1"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_FORMAT = "json"
TOKEN_FILENAME = ".threeblades.token"
ENV_PREFIX = "THREEBLADES_"


@dataclass(frozen=True)
class Config:
    root: str = DEFAULT_ROOT
    namespace: str | None = None
    project: str | None = None
    project_id: str | None = None
    server: str | None = None
    server_id: str | None = None
    token: str | None = None  # lives in the token file, never in config.json
    limit: int = 0  # 0 lets the API pick its page size
    timeout_s: float = DEFAULT_TIMEOUT_S
    formats: dict[str, str] = field(default_factory=dict)  # entity -> default --format

    def format_for(self, entity: str) -> str:
        return self.formats.get(entity) or DEFAULT_FORMAT


def env(name: str) -> str | None:
    return os.getenv(ENV_PREFIX + name)


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if value := env("CONFIG_PATH"):
        return Path(value).expanduser()
    return user_config_path("threeblades") / "config.json"


def token_path(path_override: str | Path | None = None) -> Path:
    return config_path(path_override).parent / TOKEN_FILENAME


def _harden(path: Path) -> None:
    # Best-effort: not every filesystem supports chmod.
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass


def load_token(path_override: str | Path | None = None) -> str | None:
    path = token_path(path_override)
    if not path.exists():
        return None
    token = path.read_text(encoding="utf-8").strip()
    return token or None


def save_token(token: str, path_override: str | Path | None = None) -> Path:
    path = token_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(token, encoding="utf-8")
    _harden(path)
    return path


def clear_token(path_override: str | Path | None = None) -> bool:
    path = token_path(path_override)
    if not path.exists():
        return False
    path.unlink()
    return True


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    token = load_token(path_override)
    if not path.exists():
        return Config(token=token)

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config(token=token)

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed and k != "token"}
    if not isinstance(filtered.get("formats", {}), dict):
        filtered.pop("formats")
    return Config(token=token, **filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = asdict(cfg)
    data.pop("token")
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    _harden(path)
    return path


def merge_config(
    base: Config,
    *,
    root: str | None = None,
    namespace: str | None = None,
    project: str | None = None,
    token: str | None = None,
    timeout_s: float | None = None,
) -> Config:
    """
    Layer flag values and THREEBLADES_* environment variables over ``base``.

    Flags win over the environment, the environment wins over the config file.
    """
    merged_project = project or env("PROJECT") or base.project
    project_id = base.project_id
    if merged_project != base.project:
        # A memoized ID belongs to the configured project only.
        project_id = None

    timeout = timeout_s or env("TIMEOUT_S") or base.timeout_s
    try:
        timeout_f = float(timeout)
    except (TypeError, ValueError):
        timeout_f = base.timeout_s

    return replace(
        base,
        root=root or env("ROOT") or base.root,
        namespace=namespace or env("NAMESPACE") or base.namespace,
        project=merged_project,
        project_id=project_id,
        token=token or env("TOKEN") or base.token,
        timeout_s=timeout_f,
    )


def redact_token(token: str | None) -> str | None:
    if not token:
        return token
    if len(token) <= 10:
        return token[:2] + "..." + token[-2:]
    return token[:6] + "..." + token[-4:]
