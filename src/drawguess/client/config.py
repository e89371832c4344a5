"""
客户端配置

优先级：模块常量（默认值） < settings.json < 环境变量。
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from drawguess.shared.constants import DEFAULT_ENDPOINT, DEFAULT_HOST, DEFAULT_PORT

logger = logging.getLogger(__name__)

SETTINGS_PATH = Path.cwd() / "settings.json"

ENV_ENDPOINT = "DRAWGUESS_ENDPOINT"
ENV_USERNAME = "DRAWGUESS_USERNAME"
ENV_ROOM = "DRAWGUESS_ROOM"
ENV_LOG_LEVEL = "DRAWGUESS_LOG_LEVEL"


@dataclass
class ClientConfig:
    username: str = "玩家"
    endpoint: str = DEFAULT_ENDPOINT
    room_id: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def load(cls, path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        config = cls()
        config.update(load_settings(path or SETTINGS_PATH))
        config.update_from_env(os.environ if env is None else env)
        return config

    def update(self, data: Dict[str, Any]) -> None:
        """合并 settings.json 内容；兼容旧版的 player_name / server_host / server_port"""
        if data.get("player_name"):
            self.username = str(data["player_name"])
        if data.get("server_host") or data.get("server_port"):
            host = data.get("server_host") or DEFAULT_HOST
            port = data.get("server_port") or DEFAULT_PORT
            self.endpoint = f"tcp://{host}:{port}"
        for key in ("username", "endpoint", "room_id", "log_level"):
            if data.get(key):
                setattr(self, key, str(data[key]))

    def update_from_env(self, env: Mapping[str, str]) -> None:
        if env.get(ENV_ENDPOINT):
            self.endpoint = env[ENV_ENDPOINT]
        if env.get(ENV_USERNAME):
            self.username = env[ENV_USERNAME]
        if env.get(ENV_ROOM):
            self.room_id = env[ENV_ROOM]
        if env.get(ENV_LOG_LEVEL):
            self.log_level = env[ENV_LOG_LEVEL].upper()

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_settings(path: Path) -> Dict[str, Any]:
    """从 JSON 文件加载设置（如果存在）"""
    try:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
            logger.warning("设置文件格式错误: %s", path)
    except (OSError, ValueError) as exc:
        logger.warning("加载设置失败: %s", exc)
    return {}


__all__ = ["ClientConfig", "SETTINGS_PATH", "load_settings"]
