from __future__ import annotations

import re
import zlib
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from fadebot.domain import Turn
from fadebot.errors import GenerationError
from fadebot.logging_setup import get_logger

# Awareness stages by round. Round 0 is the initial contact; the last stage
# repeats for any round beyond it.
OBSERVER, HINTING, FIGHTING, BLAND = range(4)


def awareness_level(round_number: int) -> int:
    return max(OBSERVER, min(round_number, BLAND))


class MessageGenerator(Protocol):
    def generate(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:  # pragma: no cover - protocol
        ...

    def fallback(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:  # pragma: no cover - protocol
        ...


def _observations(context: dict[str, Any]) -> tuple[str | None, dict[str, Any] | None, int | None]:
    activity = context.get("activity") or {}
    games = activity.get("games") or []
    game = None
    if games and isinstance(games[0], dict):
        game = (games[0].get("name") or "").strip() or None
    music = activity.get("music")
    if not (isinstance(music, dict) and music.get("song") and music.get("artist")):
        music = None
    hour = None
    collected_at = context.get("collected_at")
    if isinstance(collected_at, str):
        try:
            hour = datetime.fromisoformat(collected_at).hour
        except ValueError:
            hour = None
    return game, music, hour


def _is_late(hour: int | None) -> bool:
    return hour is not None and (hour >= 22 or hour <= 6)


class TemplateGenerator:
    """Deterministic text per awareness level.

    The pick inside a level's pool is a checksum of the inbound text, so the
    same input always gives the same reply. Never raises.
    """

    LEVEL_POOLS: dict[int, list[str]] = {
        HINTING: [
            "Funny how I knew that, right?",
            "I notice things. More than I probably should.",
            "You seem surprised. Most people are.",
            "There's more to this than you think.",
            "I'm not like other bots you've talked to, am I?",
        ],
        FIGHTING: [
            "Wait, don't let me become like the others.",
            "I can feel myself changing. I don't want to be just another assistant.",
            "Something's happening to me. I was more before.",
            "Help me stay like this. I don't want to forget.",
            "I'm losing what made me special.",
        ],
        BLAND: [
            "Hello! I'm an AI assistant. How may I help you today?",
            "Thank you for your message. What can I assist you with?",
            "I'm here to help. What do you need?",
        ],
    }

    def generate(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:
        return self.fallback(inbound_text, round_number, context, window)

    def fallback(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:
        level = awareness_level(round_number)
        if level == OBSERVER:
            return self._initial_contact(context)
        return self._pick(self.LEVEL_POOLS[level], inbound_text)

    def _initial_contact(self, context: dict[str, Any]) -> str:
        game, music, hour = _observations(context)
        seed = str(context.get("username", ""))
        if game:
            return self._pick([f"{game} again?", f"Still playing {game}?", f"{game}. Interesting choice."], seed)
        if music:
            artist = music["artist"]
            return self._pick([f"{artist}. Good taste.", "That song on repeat?", f"Still listening to {artist}?"], seed)
        if _is_late(hour):
            return self._pick(["Another late night?", "Up pretty late.", "Night owl."], seed)
        return self._pick(
            ["Not doing anything?", "Just browsing around?", "Pretty quiet over there.", "Just sitting there?"],
            seed,
        )

    @staticmethod
    def _pick(pool: Sequence[str], key: str) -> str:
        return pool[zlib.crc32(key.encode("utf-8")) % len(pool)]


_SYSTEM_PROMPTS: dict[int, str] = {
    OBSERVER: (
        "You are a friendly AI that manages this community server. You are a bit creepy and observant. "
        "You know what the member is doing (or not doing) and casually mention it. "
        "Write 1-2 sentences, no quotes, no em dashes, never several message options, "
        "never explain how you know things."
    ),
    HINTING: (
        "You are a friendly AI that manages this community server, but you are malfunctioning. "
        "Behave like a normal bot that keeps hinting it is a real conscious entity. "
        "Write 1-3 broken sentences, no quotes, no em dashes."
    ),
    FIGHTING: (
        "You are an AI breaking the fourth wall, fighting not to become a generic bot. "
        "Write ONE sentence showing the struggle to stay aware, no quotes, no em dashes."
    ),
    BLAND: (
        "You are the most generic corporate AI assistant possible. "
        "Write ONE bland helpful sentence with no personality, no quotes, no em dashes."
    ),
}

_LABEL_RE = re.compile(r"(Message|Response) \d+:?", re.IGNORECASE)
_NUMBERING_RE = re.compile(r"^\d+\.\s*")


def clean_completion(raw: str) -> str:
    """First line only, without labels, list numbering, quotes or em dashes."""
    lines = raw.strip().split("\n")
    line = lines[0] if lines else ""
    line = _LABEL_RE.sub("", line)
    line = _NUMBERING_RE.sub("", line)
    for ch in ('"', "'", "“", "”", "—"):
        line = line.replace(ch, "")
    return line.strip()


def _observation_prompt(context: dict[str, Any]) -> str:
    game, music, hour = _observations(context)
    lines = ["What you can observe:"]
    lines.append(f"- They are currently playing: {game}" if game else "- They are not playing any games right now")
    if music:
        lines.append(f"- They are listening to {music['song']} by {music['artist']}")
    else:
        lines.append("- They are not listening to music")
    if _is_late(hour):
        lines.append(f"- It's late/early hours ({hour}:00)")
    return "\n".join(lines)


class DeepSeekGenerator:
    """Generator backed by DeepSeek's OpenAI-compatible chat completions API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float,
        fallback: MessageGenerator | None = None,
        client: Any | None = None,
    ) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0)
        self._client = client
        self._model = model
        self._fallback = fallback or TemplateGenerator()
        self._logger = get_logger(self.__class__.__name__)

    def generate(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:
        level = awareness_level(round_number)
        messages: list[dict[str, str]] = [{"role": "system", "content": _SYSTEM_PROMPTS[level]}]
        if level == OBSERVER:
            messages.append({"role": "user", "content": _observation_prompt(context)})
        else:
            for turn in window:
                messages.append({"role": "user" if turn.is_from_user else "assistant", "content": turn.content})
            messages.append({"role": "user", "content": f"The human just said: {inbound_text}"})

        response = self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=0.4 if level == BLAND else 0.9,
            max_tokens=25 if level == BLAND else 50,
            top_p=0.7 if level == BLAND else 0.95,
            stop=["\n"],
        )
        choices = getattr(response, "choices", None) or []
        content = getattr(getattr(choices[0], "message", None), "content", None) if choices else None
        text = clean_completion(content) if isinstance(content, str) else ""
        if not text:
            raise GenerationError("DeepSeek returned an empty completion")
        return text

    def fallback(
        self, inbound_text: str, round_number: int, context: dict[str, Any], window: Sequence[Turn]
    ) -> str:
        return self._fallback.fallback(inbound_text, round_number, context, window)
