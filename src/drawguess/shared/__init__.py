"""
共享模块

存放客户端各组件共用的代码，如常量、协议定义、异常类型等。

组件说明：
- constants: 网络参数、心跳/退避策略、坐标网格、画笔配置、话题模板
- protocols: 行分隔 JSON 信封 Message 与 pydantic 消息模型（绘图/聊天/状态快照）
- errors: 传输层与协议层异常

提示：
- 协议层约定按行分隔的 JSON 串，网络层直接透传 Message.to_json() + "\\n"
- 若新增公共工具，可在此模块下添加并在 __all__ 中显式导出
"""

from . import constants, errors, protocols

__all__ = ["constants", "errors", "protocols"]
