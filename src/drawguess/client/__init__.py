"""
客户端模块

负责与服务器的实时同步：连接、频道订阅、绘图协议与游戏状态。

模块组成：
- network: 连接状态机（握手、心跳、退避重连、保活、请求/应答）
- router: 话题订阅与消息分发，重连后自动重新订阅
- drawing: 0~1000 虚拟网格编码、绘图历史与 DrawBoard
- timers: 由 pump() 驱动的协作式定时器
- game: 状态调和、意图发送与会话上下文
- ui: 基于 Pygame 的画布渲染（需要时显式导入，内核不依赖 pygame）

入口提示：
- 运行 draw-guess-client（drawguess.client.main）启动 Pygame 客户端
"""

from . import drawing, game, network, router, timers

__all__ = ["drawing", "game", "network", "router", "timers"]
