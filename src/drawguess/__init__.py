"""
Draw & Guess - 你画我猜联机客户端内核

A real-time sync client for a multiplayer drawing and guessing game.
"""

__version__ = "0.1.0"
__author__ = "Draw & Guess Team"
__license__ = "MIT"

# 导出主要组件
from . import client, shared

__all__ = ["client", "shared", "__version__"]
