from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping
import os

import yaml

from notifyhub.config import const

__all__ = ["ResourceSettings", "Settings"]


_TRUE = {"1", "true", "yes", "on"}


@dataclass(slots=True)
class ResourceSettings:
    kind: str = "team"  # "team" | "chat"
    team_id: str | None = None
    channel_id: str | None = None
    chat_id: str | None = None
    user_id: str | None = None
    return_all: bool = False


@dataclass(slots=True)
class Settings:
    api_base: str = const.API_BASE
    api_version: str = const.API_VERSION
    access_token: str | None = None
    notification_url: str | None = None
    store_path: str = "~/.notifyhub/scratch.sqlite"
    instance_id: str = "default"
    resource: ResourceSettings = field(default_factory=ResourceSettings)
    push_enabled: bool = True
    poll_interval: float = const.POLL_INTERVAL
    renew_interval: float = const.RENEW_INTERVAL
    request_timeout: float = const.REQUEST_TIMEOUT
    key_passphrase: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_sources(cls, config_path: str | Path | None = None, *, env: Mapping[str, str] | None = None) -> "Settings":
        """
        Build settings from (in increasing priority): defaults, a YAML file, ``NOTIFYHUB_*`` env vars.

        The config file is taken from ``config_path`` or ``NOTIFYHUB_CONFIG`` when set.
        """
        env = os.environ if env is None else env
        raw: dict[str, Any] = {}
        path = config_path or env.get(f"{const.ENV_PREFIX}CONFIG")
        if path:
            with open(Path(path).expanduser(), "r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
            if not isinstance(loaded, Mapping):
                raise ValueError(f"config file {path} must contain a mapping")
            raw.update(loaded)
        settings = _from_dict(raw)
        return settings.with_overrides(**_env_overrides(env))

    def with_overrides(self, **overrides: Any) -> "Settings":
        resource = overrides.pop("resource", None)
        updated = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        if isinstance(resource, Mapping):
            updated.resource = replace(updated.resource, **dict(resource))
        elif isinstance(resource, ResourceSettings):
            updated.resource = resource
        return updated

    def resolved_store_path(self) -> Path:
        return Path(self.store_path).expanduser().resolve()

    def to_dict(self, *, redact: bool = True) -> dict[str, Any]:
        data = asdict(self)
        if redact:
            for key in ("access_token", "key_passphrase"):
                if data.get(key):
                    data[key] = "***"
        return data


def _from_dict(raw: Mapping[str, Any]) -> Settings:
    known = {f.name for f in fields(Settings)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"unknown settings keys: {', '.join(sorted(unknown))}")
    payload = dict(raw)
    resource_raw = payload.pop("resource", None) or {}
    resource = ResourceSettings(**dict(resource_raw))
    return Settings(resource=resource, **payload)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    prefix = const.ENV_PREFIX
    out: dict[str, Any] = {}
    for f in fields(Settings):
        if f.name == "resource":
            continue
        value = env.get(prefix + f.name.upper())
        if value is None or value == "":
            continue
        if f.name in ("push_enabled", "log_json"):
            out[f.name] = value.strip().lower() in _TRUE
        elif f.name in ("poll_interval", "renew_interval", "request_timeout"):
            out[f.name] = float(value)
        else:
            out[f.name] = value
    resource: dict[str, Any] = {}
    for name in ("kind", "team_id", "channel_id", "chat_id", "user_id"):
        value = env.get(f"{prefix}RESOURCE_{name.upper()}")
        if value:
            resource[name] = value
    return_all = env.get(f"{prefix}RESOURCE_RETURN_ALL")
    if return_all:
        resource["return_all"] = return_all.strip().lower() in _TRUE
    if resource:
        out["resource"] = resource
    return out
