from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from fadebot.adapters.base import ChannelAdapter
from fadebot.adapters.mock import MockAdapter
from fadebot.config import Settings
from fadebot.controller import Controller
from fadebot.diagnostics import Diagnostics
from fadebot.engine import SessionEngine
from fadebot.errors import ConfigurationError
from fadebot.gate import SelectionGate
from fadebot.generation import DeepSeekGenerator, MessageGenerator, TemplateGenerator
from fadebot.logging_setup import get_logger
from fadebot.store import HistoryLog, SessionStore, build_stores
from fadebot.strategy import RandomCandidateStrategy


def build_adapter(settings: Settings) -> ChannelAdapter:
    if settings.ADAPTER == "mock":
        return MockAdapter(settings)
    raise ConfigurationError("Only ADAPTER='mock' is supported in this release.")


def build_generator(settings: Settings) -> MessageGenerator:
    if settings.GENERATOR == "template":
        return TemplateGenerator()
    if settings.GENERATOR == "deepseek":
        return DeepSeekGenerator(
            api_key=settings.DEEPSEEK_API_KEY,
            model=settings.DEEPSEEK_MODEL,
            base_url=settings.DEEPSEEK_BASE_URL,
            timeout_s=settings.GENERATION_TIMEOUT_S,
        )
    raise ConfigurationError(f"Unknown GENERATOR {settings.GENERATOR!r}. Choose 'template' or 'deepseek'.")


class BotContext:
    """Explicit handle on everything a running bot needs.

    Built once at startup, passed to the CLI, scheduler and web app, and torn
    down with :meth:`close`.
    """

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        history: HistoryLog,
        adapter: ChannelAdapter,
        generator: MessageGenerator,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.history = history
        self.adapter = adapter
        self.generator = generator
        self.engine = SessionEngine(store, history, generator, settings, clock=clock)
        self.gate = SelectionGate(store, settings, clock=clock)
        self.controller = Controller(
            adapter, self.engine, self.gate, RandomCandidateStrategy(settings.SEED), settings, clock=clock
        )
        self.diagnostics = Diagnostics(self.engine)
        self.closed = False
        self._logger = get_logger(self.__class__.__name__)

    def close(self) -> None:
        if self.closed:
            return
        self.controller.close()
        self.engine.close()
        self.adapter.close()
        self.store.close()
        self.closed = True
        self._logger.info("Bot context closed.")

    def __enter__(self) -> "BotContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def build_context(
    settings: Settings,
    *,
    adapter: ChannelAdapter | None = None,
    generator: MessageGenerator | None = None,
    clock: Callable[[], datetime] | None = None,
) -> BotContext:
    store, history = build_stores(settings, clock=clock)
    ctx = BotContext(
        settings,
        store,
        history,
        adapter or build_adapter(settings),
        generator or build_generator(settings),
        clock=clock,
    )
    ctx._logger.info(
        "Ready: store=%s generator=%s tag=%r max_rounds=%d night=%02d:00-%02d:00 testing=%s",
        settings.STORE,
        settings.GENERATOR,
        settings.REQUIRED_TAG,
        settings.MAX_ROUNDS,
        settings.NIGHT_START_HOUR,
        settings.NIGHT_END_HOUR,
        settings.TESTING_MODE,
    )
    return ctx
