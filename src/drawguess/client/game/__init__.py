"""
客户端游戏逻辑模块

- state: 快照与计时合并后的只读视图（阶段、绘者、词语可见性、计分）
- intents: 按角色校验后发出的本地操作
- session: 单个客户端会话的上下文，驱动 pump() 主循环

该模块没有 UI 依赖，界面层只读取视图并调用动作接口。
"""

from drawguess.client.game.intents import IntentEmitter, generate_room_code
from drawguess.client.game.session import GameSession
from drawguess.client.game.state import ChatLog, Phase, ReconciledState, StateReconciler

__all__ = [
	"ChatLog",
	"GameSession",
	"IntentEmitter",
	"Phase",
	"ReconciledState",
	"StateReconciler",
	"generate_room_code",
]
