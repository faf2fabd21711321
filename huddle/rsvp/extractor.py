# =============================================================================
# File: huddle/rsvp/extractor.py
# Description: Reads the RSVP state rendered into a match thread's status
#              message back into the store's three-category shape
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from huddle.common.enums.enums import Confidence, Evidence, RsvpCategory, RsvpResponse, ThreadKind
from huddle.config.chat_config import ChatConfig
from huddle.config.logging_config import get_logger
from huddle.rsvp.history import MessageHistoryReader
from huddle.rsvp.models import ChatAuthor, ChatMessage, Embed, ThreadInfo

log = get_logger("huddle.rsvp.extractor")

CATEGORIES: Tuple[RsvpCategory, ...] = (
    RsvpCategory.ATTENDING,
    RsvpCategory.NOT_ATTENDING,
    RsvpCategory.NO_RESPONSE,
)

_CURRENT_SECTION = re.compile(r"\**\s*Current RSVPs\s*:?\s*\**\s*:?[ \t]*\n?", re.IGNORECASE)
_MATCH_ID = re.compile(r"Match ID:\s*\**\s*([A-Za-z0-9][A-Za-z0-9_-]*)", re.IGNORECASE)
_RSVP_ACTIVITY = re.compile(r"\brsvp|\battending\b|\bno response\b", re.IGNORECASE)

_CONFIRMATION = re.compile(r"\*\*(.+?)\*\*.*?-\s*(YES|NO)\b", re.IGNORECASE)
_LINK_TITLE = "Successfully Linked"
_LINK_DESCRIPTION = re.compile(r"\*\*\[(.+?)\]")
_LINK_CONTENT = re.compile(r"linked to \S+ account \*\*(.+?)\*\*", re.IGNORECASE)


# =============================================================================
# Result types
# =============================================================================

@dataclass
class CategoryReading:
    """How one category was read from the status text."""
    names: List[str] = field(default_factory=list)
    pattern: Optional[str] = None
    confidence: Confidence = Confidence.LOW
    valid: bool = True
    declared_count: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "names": list(self.names),
            "pattern": self.pattern,
            "confidence": self.confidence.value,
            "valid": self.valid,
            "declared_count": self.declared_count,
        }


@dataclass
class RenderedState:
    """What a thread's status message says, plus how much of it can be trusted."""
    evidence: Evidence
    readings: Dict[RsvpCategory, CategoryReading] = field(default_factory=dict)
    event_id: Optional[str] = None
    message_id: Optional[str] = None
    thread_id: Optional[str] = None
    message_created_at: Optional[datetime] = None

    def names(self, category: RsvpCategory) -> List[str]:
        reading = self.readings.get(category)
        return list(reading.names) if reading else []

    @property
    def attending(self) -> List[str]:
        return self.names(RsvpCategory.ATTENDING)

    @property
    def not_attending(self) -> List[str]:
        return self.names(RsvpCategory.NOT_ATTENDING)

    @property
    def no_response(self) -> List[str]:
        return self.names(RsvpCategory.NO_RESPONSE)

    @property
    def ambiguous(self) -> bool:
        return self.evidence == Evidence.AMBIGUOUS

    @property
    def invalid_categories(self) -> List[RsvpCategory]:
        return [c for c, r in self.readings.items() if not r.valid]

    def to_dict(self) -> dict:
        return {
            "evidence": self.evidence.value,
            "event_id": self.event_id,
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "categories": {c.value: r.to_dict() for c, r in self.readings.items()},
        }


@dataclass
class PatternHit:
    names: List[str]
    declared_count: Optional[int] = None


# =============================================================================
# Pattern extractors (highest priority first)
# =============================================================================

def parse_names_list(raw: str) -> List[str]:
    """Comma separated names; trims and strips markdown bold."""
    names = []
    for part in raw.split(","):
        name = part.replace("**", "").strip()
        if name:
            names.append(name)
    return names


def _to_count(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


class PatternExtractor:
    """One way of reading category lines out of the status text."""
    name: str = ""
    confidence: Confidence = Confidence.LOW

    def extract(self, text: str) -> Dict[RsvpCategory, PatternHit]:
        raise NotImplementedError


class PlaceholderExtractor(PatternExtractor):
    """The renderer's text for a match nobody can answer yet."""
    name = "placeholder"
    confidence = Confidence.HIGH

    PLACEHOLDERS = ("No RSVPs yet", "No team members registered yet")

    def extract(self, text: str) -> Dict[RsvpCategory, PatternHit]:
        lowered = text.lower()
        if any(p.lower() in lowered for p in self.PLACEHOLDERS):
            return {category: PatternHit(names=[]) for category in CATEGORIES}
        return {}


class _LineRegexExtractor(PatternExtractor):
    patterns: Dict[RsvpCategory, Pattern] = {}

    def extract(self, text: str) -> Dict[RsvpCategory, PatternHit]:
        hits: Dict[RsvpCategory, PatternHit] = {}
        for line in text.splitlines():
            plain = line.replace("**", "").strip()
            if not plain:
                continue
            for category, pattern in self.patterns.items():
                if category in hits:
                    continue
                match = pattern.search(plain)
                if match:
                    hits[category] = PatternHit(
                        names=parse_names_list(match.group("names")),
                        declared_count=_to_count(match.group("count")),
                    )
                    break
        return hits


_TAIL = r"\s*(?:\((?P<count>\d+)\))?\s*:\s*(?P<names>.*)$"


class LabelMarkerExtractor(_LineRegexExtractor):
    """`✅ Attending (2): a, b` as written by the status renderer."""
    name = "label_marker"
    confidence = Confidence.HIGH

    patterns = {
        RsvpCategory.ATTENDING: re.compile(r"✅[^:\n]*?(?<!Not )\bAttending" + _TAIL, re.IGNORECASE),
        RsvpCategory.NOT_ATTENDING: re.compile(r"❌[^:\n]*?\bNot Attending" + _TAIL, re.IGNORECASE),
        RsvpCategory.NO_RESPONSE: re.compile(r"⏳[^:\n]*?\bNo Response" + _TAIL, re.IGNORECASE),
    }


class LabelOnlyExtractor(_LineRegexExtractor):
    """`Attending: a, b` at line start, no marker."""
    name = "label_only"
    confidence = Confidence.MEDIUM

    patterns = {
        RsvpCategory.NOT_ATTENDING: re.compile(r"^Not Attending" + _TAIL, re.IGNORECASE),
        RsvpCategory.NO_RESPONSE: re.compile(r"^No Response" + _TAIL, re.IGNORECASE),
        RsvpCategory.ATTENDING: re.compile(r"^Attending" + _TAIL, re.IGNORECASE),
    }


class KeywordFallbackExtractor(PatternExtractor):
    """Any `label: comma list` line whose label names a category."""
    name = "keyword_fallback"
    confidence = Confidence.LOW

    LINE = re.compile(r"^(?P<label>[^:\n]{1,60}?)\s*(?:\((?P<count>\d+)\))?\s*:\s*(?P<names>.+)$")
    KEYWORDS: Tuple[Tuple[RsvpCategory, Pattern], ...] = (
        (RsvpCategory.NO_RESPONSE,
         re.compile(r"\b(no response|no reply|pending|awaiting|unanswered)\b", re.IGNORECASE)),
        (RsvpCategory.NOT_ATTENDING,
         re.compile(r"\b(not attending|not going|declined|absent|unavailable)\b", re.IGNORECASE)),
        (RsvpCategory.ATTENDING,
         re.compile(r"\b(attending|going|accepted|confirmed|available)\b", re.IGNORECASE)),
    )

    def extract(self, text: str) -> Dict[RsvpCategory, PatternHit]:
        hits: Dict[RsvpCategory, PatternHit] = {}
        for line in text.splitlines():
            plain = line.replace("**", "").strip()
            match = self.LINE.match(plain)
            if not match:
                continue
            for category, keyword in self.KEYWORDS:
                if keyword.search(match.group("label")):
                    if category not in hits:
                        hits[category] = PatternHit(
                            names=parse_names_list(match.group("names")),
                            declared_count=_to_count(match.group("count")),
                        )
                    break
        return hits


DEFAULT_CASCADE: Tuple[PatternExtractor, ...] = (
    PlaceholderExtractor(),
    LabelMarkerExtractor(),
    LabelOnlyExtractor(),
    KeywordFallbackExtractor(),
)


# =============================================================================
# Message helpers
# =============================================================================

def _embed_text(embed: Embed) -> str:
    parts = [embed.title or "", embed.description or ""]
    parts.extend(f"{f.name}: {f.value}" for f in embed.fields)
    parts.append(embed.footer or "")
    return "\n".join(parts)


def message_text(message: ChatMessage) -> str:
    """Content plus every embed, flattened."""
    return "\n".join([message.content] + [_embed_text(e) for e in message.embeds])


def extract_event_id(message: ChatMessage) -> Optional[str]:
    """The `Match ID: <id>` footer (or any text carrying it)."""
    for embed in message.embeds:
        for text in (embed.footer, embed.description):
            if text:
                match = _MATCH_ID.search(text)
                if match:
                    return match.group(1)
        for embed_field in embed.fields:
            match = _MATCH_ID.search(embed_field.value)
            if match:
                return match.group(1)
    match = _MATCH_ID.search(message.content or "")
    return match.group(1) if match else None


def parse_rsvp_confirmation(message: ChatMessage) -> Optional[Tuple[str, RsvpResponse]]:
    """`✅ Your RSVP has been recorded! **nick** - YES` -> (nick, yes)."""
    for text in [message.content] + [e.description or "" for e in message.embeds]:
        if not text or "rsvp" not in text.lower():
            continue
        match = _CONFIRMATION.search(text)
        if match:
            return match.group(1).strip(), RsvpResponse(match.group(2).lower())
    return None


@dataclass
class LinkConfirmation:
    nickname: str
    skill_level: Optional[int] = None
    rating: Optional[int] = None
    country: Optional[str] = None
    actor: Optional[ChatAuthor] = None


def _int_or_none(value: str) -> Optional[int]:
    digits = re.sub(r"[^\d]", "", value or "")
    return int(digits) if digits else None


def parse_link_confirmation(message: ChatMessage) -> Optional[LinkConfirmation]:
    """A bot message announcing a successful account link."""
    for embed in message.embeds:
        if embed.title and _LINK_TITLE.lower() in embed.title.lower():
            match = _LINK_DESCRIPTION.search(embed.description or "")
            if not match:
                continue
            fields = {f.name.strip().lower(): f.value for f in embed.fields}
            return LinkConfirmation(
                nickname=match.group(1).strip(),
                skill_level=_int_or_none(fields.get("skill level", "")),
                rating=_int_or_none(fields.get("elo", "")),
                country=(fields.get("country") or "").strip() or None,
                actor=message.interaction_user,
            )
    match = _LINK_CONTENT.search(message.content or "")
    if match:
        return LinkConfirmation(nickname=match.group(1).strip(), actor=message.interaction_user)
    return None


# =============================================================================
# Extractor
# =============================================================================

class RenderedStateExtractor:
    """
    Finds the newest status message in a thread and reads it.

    Each category is taken from the highest-priority pattern that matched it.
    A category whose `(n)` count disagrees with the names it lists is
    flagged invalid and the whole reading becomes ambiguous.
    """

    def __init__(
            self,
            chat_config: ChatConfig,
            cascade: Sequence[PatternExtractor] = DEFAULT_CASCADE,
    ):
        self.chat_config = chat_config
        self.cascade = tuple(cascade)

    # =========================================================================
    # Status message detection
    # =========================================================================

    def is_status_message(self, message: ChatMessage, bot_user_id: str) -> bool:
        if message.author.id != bot_user_id:
            return False
        marker = self.chat_config.status_title_marker.lower()
        for embed in message.embeds:
            if embed.title and marker in embed.title.lower():
                return True
            if embed.description and "current rsvps" in embed.description.lower():
                return True
            if any("rsvp" in f.name.lower() for f in embed.fields):
                return True
        return False

    def status_text(self, message: ChatMessage) -> str:
        """The text the categories are read from."""
        chunks: List[str] = []
        for embed in message.embeds:
            description = embed.description or ""
            section = _CURRENT_SECTION.search(description)
            chunks.append(description[section.end():] if section else description)
            chunks.extend(f"{f.name}: {f.value}" for f in embed.fields)
        return "\n".join(chunks)

    def is_concluded(self, thread: Optional[ThreadInfo], thread_kind: Optional[ThreadKind]) -> bool:
        if thread_kind == ThreadKind.CONCLUDED:
            return True
        return bool(thread and thread.name.startswith(self.chat_config.concluded_thread_prefix))

    # =========================================================================
    # Parsing
    # =========================================================================

    def parse_text(self, text: str) -> Tuple[Dict[RsvpCategory, CategoryReading], bool]:
        """Run the cascade. Returns (readings, anything_matched)."""
        chosen: Dict[RsvpCategory, CategoryReading] = {}
        for extractor in self.cascade:
            for category, hit in extractor.extract(text).items():
                if category in chosen:
                    continue
                reading = CategoryReading(
                    names=hit.names,
                    pattern=extractor.name,
                    confidence=extractor.confidence,
                    declared_count=hit.declared_count,
                )
                if hit.declared_count is not None and hit.declared_count != len(hit.names):
                    reading.valid = False
                    reading.confidence = Confidence.LOW
                chosen[category] = reading

        if not chosen:
            return {}, False

        # The renderer omits empty categories
        floor = min((r.confidence for r in chosen.values() if r.valid), key=lambda c: c.rank,
                    default=Confidence.LOW)
        for category in CATEGORIES:
            if category not in chosen:
                chosen[category] = CategoryReading(names=[], pattern="absent", confidence=floor)

        return {c: chosen[c] for c in CATEGORIES}, True

    def parse_messages(
            self,
            messages: Sequence[ChatMessage],
            bot_user_id: str,
            thread: Optional[ThreadInfo] = None,
            thread_kind: Optional[ThreadKind] = None,
            include_concluded: bool = False,
    ) -> RenderedState:
        """Read state from a newest-first message list."""
        thread_id = thread.id if thread else None

        if self.is_concluded(thread, thread_kind) and not include_concluded:
            return RenderedState(evidence=Evidence.NOT_APPLICABLE, thread_id=thread_id)

        status = next((m for m in messages if self.is_status_message(m, bot_user_id)), None)

        if status is None:
            activity = any(_RSVP_ACTIVITY.search(message_text(m)) for m in messages)
            return RenderedState(
                evidence=Evidence.AMBIGUOUS if activity else Evidence.NONE,
                thread_id=thread_id,
            )

        readings, matched = self.parse_text(self.status_text(status))
        state = RenderedState(
            evidence=Evidence.PARSED,
            readings=readings,
            event_id=extract_event_id(status),
            message_id=status.id,
            thread_id=thread_id,
            message_created_at=status.created_at,
        )

        if not matched:
            log.warning(f"Status message {status.id} in thread {thread_id} could not be parsed")
            state.evidence = Evidence.AMBIGUOUS
        elif state.invalid_categories:
            log.warning(
                f"Status message {status.id} in thread {thread_id} failed count validation: "
                f"{[c.value for c in state.invalid_categories]}"
            )
            state.evidence = Evidence.AMBIGUOUS

        return state

    async def read_thread(
            self,
            history: MessageHistoryReader,
            thread: ThreadInfo,
            thread_kind: Optional[ThreadKind] = None,
            include_concluded: bool = False,
            max_pages: int = 1,
            page_size: int = 50,
    ) -> RenderedState:
        """Fetch bounded thread history and parse it."""
        if self.is_concluded(thread, thread_kind) and not include_concluded:
            return RenderedState(evidence=Evidence.NOT_APPLICABLE, thread_id=thread.id)

        messages = await history.fetch_recent(thread.id, limit=max_pages * page_size, max_pages=max_pages)
        return self.parse_messages(
            messages,
            history.chat.bot_user_id,
            thread=thread,
            thread_kind=thread_kind,
            include_concluded=include_concluded,
        )
