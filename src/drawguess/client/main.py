"""
客户端主程序入口

读取配置、连接服务器并显示游戏窗口。窗口层只做输入与渲染，
所有同步逻辑都在 GameSession 中。

按键：
- 鼠标左键拖动：作画（仅绘者）
- Delete：清空画布（仅绘者）
- Tab / [ / ]：切换颜色 / 调整画笔
- F2：切换橡皮擦
- 1~3：选词阶段选择候选词
- F5：开始游戏；F6：手动重连
- 直接输入文字 + Enter：聊天/猜词
"""

import logging
import sys
from typing import Optional, Tuple

import pygame

from drawguess.shared.constants import (
    BRUSH_SIZES,
    COLOR_PALETTE,
    DEFAULT_BRUSH_SIZE,
    ERASER_COLOR,
    FPS,
    WINDOW_HEIGHT,
    WINDOW_TITLE,
    WINDOW_WIDTH,
)
from drawguess.client.config import ClientConfig
from drawguess.client.drawing import CanvasSize, PixelSegment
from drawguess.client.game import GameSession
from drawguess.client.ui import ChatPanel, HudRenderer, SurfaceRenderer

logger = logging.getLogger(__name__)

SIDEBAR_WIDTH = 320
INPUT_HEIGHT = 36
HUD_HEIGHT = 260


def canvas_rect(screen_size: Tuple[int, int]) -> pygame.Rect:
    w, h = screen_size
    return pygame.Rect(0, 0, max(0, w - SIDEBAR_WIDTH), h)


class ClientWindow:
    """Pygame 窗口：把输入翻译成会话动作，每帧渲染会话视图"""

    def __init__(self, session: GameSession, screen: pygame.Surface):
        self.session = session
        self.screen = screen
        self.canvas = SurfaceRenderer()
        self.chat_panel = ChatPanel()
        self.hud = HudRenderer()
        self.font = pygame.font.SysFont(None, 22)
        self.text = ""
        self.color_index = 0
        self.eraser = False
        self.brush = DEFAULT_BRUSH_SIZE
        self._last_pos: Optional[Tuple[int, int]] = None
        self.running = True
        session.board.add_renderer(self.canvas)
        self.layout(screen.get_size())

    # 布局
    def layout(self, size: Tuple[int, int]) -> None:
        self.canvas_area = canvas_rect(size)
        self.sidebar = pygame.Rect(self.canvas_area.right, 0, SIDEBAR_WIDTH, size[1])
        # // 零尺寸（窗口最小化）由 DrawBoard 忽略
        self.session.resize(self.canvas_area.width, self.canvas_area.height)

    @property
    def color(self) -> str:
        if self.eraser:
            return ERASER_COLOR
        return COLOR_PALETTE[self.color_index]

    # 输入
    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.running = False
        elif event.type == pygame.VIDEORESIZE:
            self.screen = pygame.display.set_mode((event.w, event.h), pygame.RESIZABLE)
            self.layout((event.w, event.h))
        elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            if self.canvas_area.collidepoint(event.pos):
                self._last_pos = event.pos
        elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
            self._last_pos = None
        elif event.type == pygame.MOUSEMOTION and self._last_pos is not None:
            pos = (
                min(max(event.pos[0], 0), self.canvas_area.width),
                min(max(event.pos[1], 0), self.canvas_area.height),
            )
            segment = PixelSegment(self._last_pos[0], self._last_pos[1], pos[0], pos[1])
            self.session.draw_segment(segment, self.color, self.brush)
            self._last_pos = pos
        elif event.type == pygame.TEXTINPUT:
            self.text = (self.text + event.text)[:64]
        elif event.type == pygame.KEYDOWN:
            self._handle_key(event)

    def _handle_key(self, event: pygame.event.Event) -> None:
        state = self.session.state
        if event.key == pygame.K_RETURN:
            if self.session.chat(self.text):
                self.text = ""
        elif event.key == pygame.K_BACKSPACE:
            self.text = self.text[:-1]
        elif event.key == pygame.K_DELETE:
            self.session.clear()
        elif event.key == pygame.K_TAB:
            self.color_index = (self.color_index + 1) % len(COLOR_PALETTE)
            self.eraser = False
        elif event.key == pygame.K_F2:
            self.eraser = not self.eraser
        elif event.key in (pygame.K_LEFTBRACKET, pygame.K_RIGHTBRACKET):
            idx = BRUSH_SIZES.index(self.brush) if self.brush in BRUSH_SIZES else 0
            idx += 1 if event.key == pygame.K_RIGHTBRACKET else -1
            self.brush = BRUSH_SIZES[min(max(idx, 0), len(BRUSH_SIZES) - 1)]
        elif event.key == pygame.K_F5:
            self.session.start_game()
        elif event.key == pygame.K_F6:
            self.session.reconnect()
        elif state.choosing_word and pygame.K_1 <= event.key <= pygame.K_9 and not self.text:
            choices = state.word_choices
            idx = event.key - pygame.K_1
            if idx < len(choices):
                self.session.choose_word(choices[idx])

    # 渲染
    def draw(self) -> None:
        self.screen.fill((235, 235, 235))
        self.canvas.render(self.screen, self.canvas_area.topleft)
        hud_rect = pygame.Rect(self.sidebar.left, 0, self.sidebar.width, HUD_HEIGHT)
        self.hud.render(self.screen, self.session.state, hud_rect, self.session.notice)
        chat_rect = pygame.Rect(
            self.sidebar.left, HUD_HEIGHT, self.sidebar.width, self.sidebar.height - HUD_HEIGHT - INPUT_HEIGHT
        )
        self.chat_panel.render(self.screen, self.session.chat_log.entries, chat_rect)
        input_rect = pygame.Rect(self.sidebar.left + 4, self.sidebar.bottom - INPUT_HEIGHT, self.sidebar.width - 8, INPUT_HEIGHT - 4)
        pygame.draw.rect(self.screen, (250, 250, 250), input_rect, border_radius=6)
        pygame.draw.rect(self.screen, pygame.Color(self.color), input_rect, 2, border_radius=6)
        surf = self.font.render(self.text or "输入猜词...", True, (20, 20, 20) if self.text else (130, 130, 130))
        self.screen.blit(surf, (input_rect.x + 8, input_rect.y + (input_rect.height - surf.get_height()) // 2))


def main(argv=None) -> int:
    config = ClientConfig.load()
    args = list(sys.argv[1:] if argv is None else argv)
    if args:
        config.room_id = args[0]

    logging.basicConfig(
        level=config.log_level_value,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("启动客户端: user=%s endpoint=%s", config.username, config.endpoint)

    pygame.init()
    screen = pygame.display.set_mode((WINDOW_WIDTH, WINDOW_HEIGHT), pygame.RESIZABLE)
    pygame.display.set_caption(WINDOW_TITLE)
    pygame.key.start_text_input()
    clock = pygame.time.Clock()

    area = canvas_rect((WINDOW_WIDTH, WINDOW_HEIGHT))
    session = GameSession(config.username, config.endpoint, canvas_size=CanvasSize(area.width, area.height))
    window = ClientWindow(session, screen)
    try:
        session.connect()
    except ValueError as exc:
        logger.error("无效的服务器地址: %s", exc)
        pygame.quit()
        return 2
    if config.room_id:
        session.join_room(config.room_id)
    else:
        session.create_room()

    try:
        while window.running:
            for event in pygame.event.get():
                window.handle_event(event)
            session.pump()
            window.draw()
            pygame.display.flip()
            clock.tick(FPS)
    except KeyboardInterrupt:
        logger.info("收到中断信号，退出")
    finally:
        session.close()
        pygame.quit()
    return 0


if __name__ == "__main__":
    sys.exit(main())
