"""
异常定义

传输层失败通过退避重试在本地恢复，只有重试耗尽后的 ConnectionLostError 会提示给用户；
协议解析失败一律丢弃并记录日志。
"""


class DrawGuessError(Exception):
    """所有客户端内核异常的基类"""


class TransportError(DrawGuessError):
    """连接建立、握手或读写失败"""


class HandshakeError(TransportError):
    """握手未在超时内完成，或服务器未返回会话标识"""


class ConnectionLostError(TransportError):
    """重连次数耗尽，连接已丢失（面向用户的致命提示）"""

    def __init__(self, attempts: int, last_error: Exception = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"connection lost after {attempts} reconnect attempts")


class ProtocolError(DrawGuessError):
    """收到无法解析或不符合约定的消息"""


__all__ = [
    "DrawGuessError",
    "TransportError",
    "HandshakeError",
    "ConnectionLostError",
    "ProtocolError",
]
