"""Platform notice normalization (core domain).

Backends speaking different protocol dialects (NapCat, OneBot v11 /
go-cqhttp, icqq, TRSS-Yunzai, Lagrange / LLOneBot) report the same logical
notice with different field names and discriminators. Each dialect shape is
one ``EventRule`` in ``EVENT_RULES``; supporting a new dialect means appending
a rule, not editing a branch.

Evaluation order:
1) Dialect-specific rules, in table order
2) Generic heuristic rules, in table order
3) ``kind="none"``

An extractor returns None when the minimal fields for its kind are missing,
which lets evaluation continue with the next rule. ``normalize`` never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.models import (
    EVENT_ADMIN_CHANGE,
    EVENT_ESSENCE,
    EVENT_FILE_UPLOAD,
    EVENT_HONOR,
    EVENT_LUCKY_DRAW,
    EVENT_MEMBER_CHANGE,
    EVENT_MUTE,
    EVENT_NONE,
    EVENT_POKE,
    EVENT_REACTION,
    EVENT_RECALL,
    NormalizedEvent,
)

LOGGER = logging.getLogger(__name__)

HONOR_LABELS = {
    "talkative": "Dragon King",
    "performer": "Group Fire",
    "emotion": "Source of Joy",
    "legend": "Group Legend",
    "strong_newbie": "Rising Sprout",
    "lucky_king": "Lucky King",
}

# Common QQ face ids. Unknown ids are described generically.
EMOJI_NAMES = {
    "4": "smug",
    "5": "tears",
    "6": "shy",
    "9": "sobbing",
    "10": "awkward",
    "11": "angry",
    "12": "cheeky",
    "13": "grin",
    "14": "smile",
    "15": "sad",
    "16": "cool",
    "21": "cute",
    "27": "sweat",
    "28": "chuckle",
    "32": "question",
    "34": "dizzy",
    "39": "bye",
    "42": "applause",
    "53": "cake",
    "60": "coffee",
    "63": "rose",
    "64": "wilted rose",
    "66": "heart",
    "67": "broken heart",
    "74": "sun",
    "75": "moon",
    "76": "thumbs up",
    "77": "thumbs down",
    "78": "handshake",
    "79": "victory",
    "118": "fist salute",
    "124": "OK",
    "144": "cheers",
    "147": "lollipop",
    "178": "side-eye grin",
    "179": "doge",
    "182": "laugh cry",
    "201": "like",
    "264": "facepalm",
    "271": "eating melon",
    "277": "fire",
    "282": "meteor",
    "285": "plus one",
    "306": "666",
}

_REACTION_REMOVAL_VALUES = {"remove", "cancel", "delete"}

MEMBER_INCREASE_SUB_TYPES = ("increase", "approve", "invite")
MEMBER_DECREASE_SUB_TYPES = ("decrease", "leave", "kick", "kick_me")


def honor_label(honor_type: Optional[str]) -> str:
    return HONOR_LABELS.get(honor_type or "", honor_type or "unknown honor")


def emoji_description(emoji_id: Any) -> str:
    return EMOJI_NAMES.get(str(emoji_id), f"emoji[{emoji_id}]")


def format_duration(seconds: int) -> str:
    """Human readable mute duration; seconds are omitted once days appear."""

    if seconds <= 0:
        return "0s"
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs and not days:
        parts.append(f"{secs}s")
    return " ".join(parts) or "0s"


@dataclass(frozen=True)
class EventRule:
    """One dialect's shape for one event kind."""

    kind: str
    dialect: str
    matches: Callable[[Mapping[str, Any]], bool]
    extract: Callable[[Mapping[str, Any]], Optional[NormalizedEvent]]
    generic: bool = False


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _build(
    kind: str,
    raw: Mapping[str, Any],
    is_group: bool,
    actor_id: Any,
    target_id: Any = None,
    **extra: Any,
) -> NormalizedEvent:
    group_id = raw.get("group_id")
    if group_id:
        extra["group_id"] = group_id
    return NormalizedEvent(
        kind=kind,
        is_group_scoped=bool(is_group),
        actor_id=actor_id,
        target_id=target_id,
        extra={key: value for key, value in extra.items() if value is not None},
    )


def _notice(*types: str) -> Callable[[Mapping[str, Any]], bool]:
    return lambda raw: raw.get("notice_type") in types


def _notice_sub(notice_types: tuple, *sub_types: str) -> Callable[[Mapping[str, Any]], bool]:
    return lambda raw: raw.get("notice_type") in notice_types and raw.get("sub_type") in sub_types


def _sub(*sub_types: str) -> Callable[[Mapping[str, Any]], bool]:
    return lambda raw: raw.get("sub_type") in sub_types


# -- poke ------------------------------------------------------------------


def _poke(raw, is_group, actor_keys, target_keys, with_action=False) -> Optional[NormalizedEvent]:
    actor = _first(raw, *actor_keys)
    target = _first(raw, *target_keys)
    if actor is None and target is None:
        return None
    action = (raw.get("action") or "poke") if with_action else raw.get("action")
    return _build(EVENT_POKE, raw, is_group, actor, target, action=action)


def _poke_napcat_group(raw):
    return _poke(raw, True, ("operator_id", "user_id"), ("target_id", "poked_uid"), with_action=True)


def _poke_napcat_friend(raw):
    return _poke(raw, False, ("operator_id", "user_id"), ("target_id", "poked_uid"))


def _poke_onebot(raw):
    return _poke(raw, bool(raw.get("group_id")), ("user_id", "sender_id"), ("target_id",))


def _poke_icqq(raw):
    return _poke(raw, raw.get("notice_type") == "group", ("user_id", "operator_id"), ("target", "target_id"))


def _poke_generic(raw):
    return _poke(raw, bool(raw.get("group_id")), ("operator_id", "user_id"), ("target_id", "target"))


def _mentions_poke(raw) -> bool:
    raw_event = raw.get("raw_event")
    return raw.get("action") == "poke" or (isinstance(raw_event, str) and "poke" in raw_event)


# -- reaction --------------------------------------------------------------


def _reaction_is_add(raw) -> bool:
    for key in ("set", "is_set"):
        if raw.get(key) in (False, 0, "remove"):
            return False
    for key in ("sub_type", "action", "operate", "type"):
        if raw.get(key) in _REACTION_REMOVAL_VALUES:
            return False
    return True


def _reaction(raw, user, emoji_id, sender, **extra) -> Optional[NormalizedEvent]:
    message_id = raw.get("message_id")
    if not message_id:
        return None
    return _build(
        EVENT_REACTION,
        raw,
        bool(raw.get("group_id")) or raw.get("notice_type") == "group_msg_emoji_like",
        user,
        sender,
        message_id=message_id,
        emoji_id=emoji_id,
        is_add=_reaction_is_add(raw),
        **extra,
    )


def _reaction_napcat(raw):
    emoji_id = None
    count = None
    likes = raw.get("likes")
    if isinstance(likes, list) and likes and isinstance(likes[0], Mapping):
        emoji_id = _first(likes[0], "emoji_id", "id")
        count = likes[0].get("count")
    return _reaction(
        raw,
        raw.get("user_id"),
        emoji_id,
        raw.get("message_sender_id"),
        count=count,
    )


def _reaction_onebot(raw):
    return _reaction(
        raw,
        _first(raw, "user_id", "operator_id"),
        _first(raw, "emoji_id", "face_id"),
        raw.get("target_id"),
    )


def _reaction_lagrange(raw):
    emoji = raw.get("emoji") if isinstance(raw.get("emoji"), Mapping) else {}
    return _reaction(
        raw,
        _first(raw, "user_id", "operator_id"),
        emoji.get("id") or raw.get("emoji_id"),
        raw.get("target_id"),
        emoji_type=emoji.get("type"),
    )


def _reaction_generic(raw):
    return _reaction(raw, _first(raw, "user_id", "operator_id"), raw.get("emoji_id"), None)


# -- recall ----------------------------------------------------------------


def _recall(raw, is_group, message_id, operator, author) -> Optional[NormalizedEvent]:
    if not message_id:
        return None
    # The author is only reported when someone else recalled the message.
    target = author if author and author != operator else None
    return _build(EVENT_RECALL, raw, is_group, operator, target, message_id=message_id)


def _recall_group(raw):
    return _recall(raw, True, raw.get("message_id"), raw.get("operator_id"), raw.get("user_id"))


def _recall_friend(raw):
    return _recall(raw, False, raw.get("message_id"), raw.get("user_id"), raw.get("user_id"))


def _recall_icqq(raw):
    return _recall(
        raw,
        raw.get("notice_type") == "group",
        _first(raw, "message_id", "seq"),
        _first(raw, "operator_id", "user_id"),
        raw.get("user_id"),
    )


def _recall_trss(raw):
    return _recall(
        raw,
        bool(raw.get("group_id")),
        raw.get("message_id"),
        _first(raw, "operator_id", "user_id"),
        None,
    )


# -- member change ---------------------------------------------------------


def _member_change(raw, direction) -> Optional[NormalizedEvent]:
    user = _first(raw, "user_id", "target_id")
    if user is None:
        return None
    operator = _first(raw, "operator_id", "admin_id")
    sub_type = raw.get("sub_type")
    if direction == "increase":
        sub_type = "invite" if sub_type == "invite" else "approve"
    else:
        sub_type = sub_type if sub_type in ("kick", "kick_me") else "leave"
    return _build(
        EVENT_MEMBER_CHANGE,
        raw,
        True,
        user if operator is None else operator,
        user,
        direction=direction,
        sub_type=sub_type,
    )


def _member_increase(raw):
    return _member_change(raw, "increase")


def _member_decrease(raw):
    return _member_change(raw, "decrease")


def _member_icqq(raw):
    direction = "increase" if raw.get("sub_type") in MEMBER_INCREASE_SUB_TYPES else "decrease"
    return _member_change(raw, direction)


# -- admin change ----------------------------------------------------------


def _admin_change(raw, direction) -> Optional[NormalizedEvent]:
    user = raw.get("user_id")
    if not user:
        return None
    return _build(EVENT_ADMIN_CHANGE, raw, True, raw.get("operator_id"), user, direction=direction)


def _admin_onebot(raw):
    return _admin_change(raw, "set" if raw.get("sub_type") == "set" else "unset")


def _admin_icqq(raw):
    return _admin_change(raw, "set" if raw.get("set") else "unset")


# -- mute ------------------------------------------------------------------


def _mute(raw) -> Optional[NormalizedEvent]:
    user = _first(raw, "user_id", "target_id")
    if user is None:
        return None
    try:
        duration = int(_first(raw, "duration", "time") or 0)
    except (TypeError, ValueError):
        duration = 0
    # A zero duration is how most backends report a lifted ban.
    lift = duration <= 0 or raw.get("sub_type") in ("lift_ban", "unban")
    if lift:
        duration = 0
    return _build(
        EVENT_MUTE,
        raw,
        True,
        _first(raw, "operator_id", "admin_id"),
        user,
        direction="lift" if lift else "ban",
        duration=duration,
    )


# -- lucky draw ------------------------------------------------------------


def _lucky_draw(raw, winner_keys) -> Optional[NormalizedEvent]:
    winner = _first(raw, *winner_keys)
    if winner is None:
        return None
    return _build(EVENT_LUCKY_DRAW, raw, bool(raw.get("group_id")), raw.get("user_id"), winner)


# -- honor -----------------------------------------------------------------


def _honor(raw) -> Optional[NormalizedEvent]:
    user = raw.get("user_id")
    if not user:
        return None
    honor_type = raw.get("honor_type")
    return _build(
        EVENT_HONOR,
        raw,
        bool(raw.get("group_id")),
        user,
        None,
        honor_type=honor_type,
        honor_label=honor_label(honor_type),
    )


# -- essence ---------------------------------------------------------------


def _essence(raw, direction) -> Optional[NormalizedEvent]:
    message_id = raw.get("message_id")
    if not message_id:
        return None
    return _build(
        EVENT_ESSENCE,
        raw,
        True,
        raw.get("operator_id"),
        raw.get("sender_id"),
        direction=direction,
        message_id=message_id,
    )


def _essence_onebot(raw):
    return _essence(raw, "delete" if raw.get("sub_type") == "delete" else "add")


def _essence_notify(raw):
    return _essence(raw, "delete" if raw.get("action") == "delete" else "add")


# -- file upload -----------------------------------------------------------


def _file_upload(raw, is_group) -> Optional[NormalizedEvent]:
    file_info = raw.get("file")
    if not file_info:
        return None
    return _build(EVENT_FILE_UPLOAD, raw, is_group, raw.get("user_id"), None, file=file_info)


EVENT_RULES: List[EventRule] = [
    EventRule(EVENT_POKE, "napcat", _notice("group_poke"), _poke_napcat_group),
    EventRule(EVENT_POKE, "napcat", _notice("friend_poke"), _poke_napcat_friend),
    EventRule(EVENT_POKE, "onebot", _notice_sub(("notify",), "poke"), _poke_onebot),
    EventRule(EVENT_POKE, "icqq", _notice_sub(("group", "friend"), "poke"), _poke_icqq),
    EventRule(
        EVENT_POKE,
        "trss",
        lambda raw: raw.get("post_type") == "notice" and raw.get("sub_type") == "poke",
        _poke_generic,
    ),
    EventRule(EVENT_POKE, "any", _mentions_poke, _poke_generic, generic=True),
    EventRule(EVENT_REACTION, "napcat", _notice("group_msg_emoji_like"), _reaction_napcat),
    EventRule(EVENT_REACTION, "onebot", _sub("emoji_like", "reaction"), _reaction_onebot),
    EventRule(EVENT_REACTION, "lagrange", _notice("reaction"), _reaction_lagrange),
    EventRule(
        EVENT_REACTION,
        "any",
        lambda raw: raw.get("emoji_id") is not None and bool(raw.get("message_id")),
        _reaction_generic,
        generic=True,
    ),
    EventRule(EVENT_RECALL, "onebot", _notice("group_recall"), _recall_group),
    EventRule(EVENT_RECALL, "onebot", _notice("friend_recall"), _recall_friend),
    EventRule(EVENT_RECALL, "icqq", _notice_sub(("group", "friend"), "recall"), _recall_icqq),
    EventRule(
        EVENT_RECALL,
        "trss",
        lambda raw: raw.get("post_type") == "notice" and raw.get("sub_type") == "recall",
        _recall_trss,
    ),
    EventRule(EVENT_MEMBER_CHANGE, "onebot", _notice("group_increase"), _member_increase),
    EventRule(EVENT_MEMBER_CHANGE, "onebot", _notice("group_decrease"), _member_decrease),
    EventRule(
        EVENT_MEMBER_CHANGE,
        "icqq",
        _notice_sub(("group",), *MEMBER_INCREASE_SUB_TYPES, *MEMBER_DECREASE_SUB_TYPES),
        _member_icqq,
    ),
    EventRule(EVENT_ADMIN_CHANGE, "onebot", _notice("group_admin"), _admin_onebot),
    EventRule(EVENT_ADMIN_CHANGE, "icqq", _notice_sub(("group",), "admin"), _admin_icqq),
    EventRule(EVENT_MUTE, "onebot", _notice("group_ban"), _mute),
    EventRule(EVENT_MUTE, "icqq", _notice_sub(("group",), "ban", "lift_ban", "unban"), _mute),
    EventRule(
        EVENT_LUCKY_DRAW,
        "onebot",
        _notice_sub(("notify",), "lucky_king"),
        lambda raw: _lucky_draw(raw, ("target_id",)),
    ),
    EventRule(EVENT_LUCKY_DRAW, "icqq", _sub("lucky_king"), lambda raw: _lucky_draw(raw, ("target_id", "target"))),
    EventRule(EVENT_HONOR, "onebot", _notice_sub(("notify",), "honor"), _honor),
    EventRule(EVENT_HONOR, "icqq", _sub("honor"), _honor),
    EventRule(EVENT_ESSENCE, "onebot", _notice("essence"), _essence_onebot),
    EventRule(EVENT_ESSENCE, "notify", _notice_sub(("notify",), "essence"), _essence_notify),
    EventRule(EVENT_FILE_UPLOAD, "onebot", _notice("group_upload"), lambda raw: _file_upload(raw, True)),
    EventRule(EVENT_FILE_UPLOAD, "onebot", _notice("offline_file"), lambda raw: _file_upload(raw, False)),
    EventRule(
        EVENT_FILE_UPLOAD,
        "icqq",
        _sub("upload"),
        lambda raw: _file_upload(raw, bool(raw.get("group_id"))),
    ),
]


def _as_mapping(raw: Any) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    # Adapter event objects expose fields as attributes.
    fields = getattr(raw, "__dict__", None)
    if isinstance(fields, dict):
        return fields
    return {}


def _none_event(raw: Mapping[str, Any]) -> NormalizedEvent:
    return NormalizedEvent(
        kind=EVENT_NONE,
        is_group_scoped=bool(raw.get("group_id")),
        actor_id=_first(raw, "user_id", "operator_id"),
    )


def normalize(raw: Any, rules: Optional[List[EventRule]] = None) -> NormalizedEvent:
    """Map one inbound platform notice to a NormalizedEvent."""

    data = _as_mapping(raw)
    table = EVENT_RULES if rules is None else rules
    for generic_pass in (False, True):
        for rule in table:
            if rule.generic != generic_pass:
                continue
            try:
                if not rule.matches(data):
                    continue
                event = rule.extract(data)
            except (AttributeError, TypeError, ValueError, KeyError, IndexError):
                LOGGER.debug("Rule %s/%s failed on malformed event", rule.kind, rule.dialect, exc_info=True)
                continue
            if event is not None:
                return event
    return _none_event(data)


def describe(event: NormalizedEvent) -> str:
    """One-line English summary of a normalized event."""

    extra: Dict[str, Any] = dict(event.extra)
    scope = "group" if event.is_group_scoped else "private"
    if event.kind == EVENT_POKE:
        return f"[{scope}] {event.actor_id} poked {event.target_id}"
    if event.kind == EVENT_REACTION:
        verb = "reacted with" if extra.get("is_add", True) else "removed"
        emoji = emoji_description(extra.get("emoji_id"))
        return f"[{scope}] {event.actor_id} {verb} {emoji} on message {extra.get('message_id')}"
    if event.kind == EVENT_RECALL:
        if event.target_id is not None:
            return (
                f"[{scope}] {event.actor_id} recalled message {extra.get('message_id')} "
                f"from {event.target_id}"
            )
        return f"[{scope}] {event.actor_id} recalled message {extra.get('message_id')}"
    if event.kind == EVENT_MEMBER_CHANGE:
        verb = "joined" if extra.get("direction") == "increase" else "left"
        detail = f" ({extra['sub_type']})" if extra.get("sub_type") else ""
        return f"[{scope}] {event.target_id} {verb}{detail}"
    if event.kind == EVENT_ADMIN_CHANGE:
        verb = "promoted to admin" if extra.get("direction") == "set" else "removed as admin"
        return f"[{scope}] {event.target_id} {verb}"
    if event.kind == EVENT_MUTE:
        if extra.get("direction") == "lift":
            return f"[{scope}] {event.actor_id} unmuted {event.target_id}"
        return (
            f"[{scope}] {event.actor_id} muted {event.target_id} "
            f"for {format_duration(extra.get('duration', 0))}"
        )
    if event.kind == EVENT_LUCKY_DRAW:
        return f"[{scope}] {event.target_id} won the lucky draw from {event.actor_id}"
    if event.kind == EVENT_HONOR:
        return f"[{scope}] {event.actor_id} earned {extra.get('honor_label')}"
    if event.kind == EVENT_ESSENCE:
        verb = "marked" if extra.get("direction") == "add" else "unmarked"
        return f"[{scope}] {event.actor_id} {verb} message {extra.get('message_id')} as essence"
    if event.kind == EVENT_FILE_UPLOAD:
        return f"[{scope}] {event.actor_id} uploaded a file"
    return f"[{scope}] unrecognized notice"
