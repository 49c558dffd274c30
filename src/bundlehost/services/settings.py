# src/bundlehost/services/settings.py
from __future__ import annotations
from dataclasses import dataclass, replace
import os
from pathlib import Path
from typing import Optional, Dict
from bundlehost.config import const


def _parse_env_file(path: str) -> Dict[str, str]:
    data: Dict[str, str] = {}
    p = Path(path)
    if not p.exists():
        return data
    for line in p.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" in line:
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip().strip('"').strip("'")
    return data


@dataclass(frozen=True, slots=True)
class Settings:
    base_dir: Path
    resource_url: str = const.DEFAULT_RESOURCE_URL
    branch: str = const.DEFAULT_BRANCH
    static_host: str = const.STATIC_HOST
    static_port: int = const.STATIC_PORT
    log_level: str = "INFO"
    github_api_url: str = const.GITHUB_API_URL
    github_codeload_url: str = const.GITHUB_CODELOAD_URL
    user_agent: str = const.USER_AGENT
    http_timeout_sec: float = const.HTTP_TIMEOUT_SEC
    entry_script: str = const.ENTRY_SCRIPT
    intercept_module: str = const.INTERCEPT_MODULE
    intercept_export: str = const.INTERCEPT_EXPORT

    @staticmethod
    def from_sources(env_file: Optional[str] = ".env") -> "Settings":
        def is_android() -> bool:
            return "ANDROID_BOOTLOGO" in os.environ or "ANDROID_ROOT" in os.environ

        def _get_base_dir(override: str) -> Path:
            if override:
                return Path(override).expanduser().resolve()
            if is_android():
                # app-private storage; cwd is the app files dir there
                return (Path.cwd() / ".bundlehost").resolve()
            return (Path.home() / ".bundlehost").resolve()

        env_file_vars = _parse_env_file(env_file) if env_file else {}

        def pick_env(key: str, default: Optional[str] = None) -> str:
            return os.environ.get(key) or env_file_vars.get(key) or (default or "")

        def pick_int(key: str, default: int) -> int:
            raw = pick_env(key)
            try:
                return int(raw) if raw else default
            except ValueError:
                return default

        def pick_float(key: str, default: float) -> float:
            raw = pick_env(key)
            try:
                return float(raw) if raw else default
            except ValueError:
                return default

        return Settings(
            base_dir=_get_base_dir(pick_env("BUNDLEHOST_BASE_DIR")),
            resource_url=pick_env("BUNDLEHOST_RESOURCE_URL", const.DEFAULT_RESOURCE_URL),
            branch=pick_env("BUNDLEHOST_BRANCH", const.DEFAULT_BRANCH),
            static_port=pick_int("BUNDLEHOST_STATIC_PORT", const.STATIC_PORT),
            log_level=pick_env("BUNDLEHOST_LOG_LEVEL", "INFO"),
            github_api_url=pick_env("BUNDLEHOST_GITHUB_API", const.GITHUB_API_URL).rstrip("/"),
            github_codeload_url=pick_env("BUNDLEHOST_GITHUB_CODELOAD", const.GITHUB_CODELOAD_URL).rstrip("/"),
            http_timeout_sec=pick_float("BUNDLEHOST_HTTP_TIMEOUT", const.HTTP_TIMEOUT_SEC),
        )

    def with_overrides(self, **kw) -> "Settings":
        known = {k: v for k, v in kw.items() if k in self.__dataclass_fields__ and v is not None}
        if "base_dir" in known:
            known["base_dir"] = Path(known["base_dir"])
        return replace(self, **known)
