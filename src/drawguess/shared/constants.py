"""
常量定义

定义客户端同步内核使用的各种常量。
"""

# 网络配置
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5555
DEFAULT_ENDPOINT = f"tcp://{DEFAULT_HOST}:{DEFAULT_PORT}"
ENDPOINT_SCHEMES = ("tcp",)
BUFFER_SIZE = 4096
CONNECT_TIMEOUT = 5.0  # 秒
HANDSHAKE_TIMEOUT = 5.0  # 秒

# 心跳（客户端与服务器双向，间隔一致）
HEARTBEAT_INTERVAL = 20.0  # 秒
# 超过 间隔 * 容差 未收到任何帧即视为静默断线
HEARTBEAT_TOLERANCE = 1.5
# 保活探测（轻量请求），连接确认关闭后自动停止
KEEPALIVE_INTERVAL = 60.0  # 秒
KEEPALIVE_PATH = "/ping"

# 重连退避：delay = min(base * 2^attempt, cap)
BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 15000
MAX_RECONNECT_ATTEMPTS = 5

# 加入房间后兜底拉取状态的延迟
STATE_PULL_DELAY = 0.5  # 秒

# 绘图坐标：与像素无关的虚拟网格
GRID_MAX = 1000
CANVAS_BACKGROUND = "#FFFFFF"
ERASER_COLOR = "#FFFFFF"
DEFAULT_COLOR = "#000000"

# 画笔配置
BRUSH_SIZES = [8, 16, 24, 32]
DEFAULT_BRUSH_SIZE = 16
COLOR_PALETTE = [
    "#000000", "#FFFFFF", "#C0C0C0", "#808080",
    "#FF0000", "#800000", "#FFFF00", "#808000",
    "#00FF00", "#008000", "#00FFFF", "#008080",
    "#0000FF", "#000080", "#FF00FF", "#800080",
    "#FFA500", "#A52A2A", "#FF69B4", "#FFD700",
]

# 游戏展示
DEFAULT_HINT = "_ _ _ _ _"
DEFAULT_ROUND_TIME = 60  # 秒
CHAT_CAPACITY = 200
ROOM_CODE_DIGITS = 6

# 窗口配置
WINDOW_WIDTH = 1280
WINDOW_HEIGHT = 800
WINDOW_TITLE = "Draw & Guess - 你画我猜"
FPS = 60

# 帧类型（行分隔 JSON 信封中的 type 字段）
MSG_CONNECT = "connect"
MSG_CONNECTED = "connected"
MSG_PING = "ping"
MSG_PONG = "pong"
MSG_SUBSCRIBE = "subscribe"
MSG_UNSUBSCRIBE = "unsubscribe"
MSG_SEND = "send"
MSG_MESSAGE = "message"
MSG_REQUEST = "request"
MSG_RESPONSE = "response"
MSG_ERROR = "error"

# 绘图/聊天消息的类型判别字段
DRAW = "DRAW"
CLEAR = "CLEAR"
CHAT = "CHAT"
SYSTEM = "SYSTEM"
GUESS_CORRECT = "GUESS_CORRECT"
JOIN = "JOIN"
LEAVE = "LEAVE"

# 话题（订阅）
TOPIC_DRAW = "/topic/room/{room_id}/draw"
TOPIC_CHAT = "/topic/room/{room_id}/chat"
TOPIC_STATE = "/topic/room/{room_id}/state"
TOPIC_TIME = "/topic/room/{room_id}/time"
QUEUE_DRAW = "/user/queue/draw"
QUEUE_ERRORS = "/user/queue/errors"

# 应用目的地（发送）
DEST_JOIN = "/app/join"
DEST_DRAW = "/app/draw/{room_id}"
DEST_CHAT = "/app/chat/{room_id}"
DEST_START = "/app/start/{room_id}"
DEST_CHOOSE_WORD = "/app/chooseWord/{room_id}"

# 请求路径（一次性拉取）
PATH_ROOM_STATE = "/api/room/{room_id}/state"
PATH_LOBBY_LIST = "/api/lobby/list"
