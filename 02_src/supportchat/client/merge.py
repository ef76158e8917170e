"""Pure reconciliation functions for the engine's message list."""

from collections import Counter
from dataclasses import replace

from ..models import ReactionGroup
from .models import ChatMessage


def latest_confirmed_id(messages: list[ChatMessage]) -> str | None:
    """Poll cursor: newest entry a poll has delivered.

    Pending entries and sends confirmed only by their own POST are skipped;
    anything the counterpart stored before them would otherwise fall behind
    the cursor and never arrive.
    """
    for message in reversed(messages):
        if message.id is not None and not message.awaiting_poll:
            return message.id
    return None


def oldest_confirmed_id(messages: list[ChatMessage]) -> str | None:
    """Pagination cursor: oldest entry with a server id."""
    for message in messages:
        if message.id is not None:
            return message.id
    return None


def merge_incoming(
    local: list[ChatMessage], incoming: list[ChatMessage]
) -> list[ChatMessage] | None:
    """Append genuinely new messages, collapsing matching optimistic echoes.

    Returns None when nothing is new so callers can skip the state update.
    Entries awaiting a poll move to their server position once delivered.
    Every other new message absorbs at most one pending entry with the same
    sender flag and content, oldest first. Pending entries stay last.
    """
    awaiting = {m.id for m in local if m.awaiting_poll}
    known = {m.id for m in local if m.id is not None and not m.awaiting_poll}
    fresh: list[ChatMessage] = []
    delivered: set[str] = set()
    for message in incoming:
        if message.id is None or message.id in known:
            continue
        known.add(message.id)
        if message.id in awaiting:
            delivered.add(message.id)
        fresh.append(message)

    if not fresh:
        return None

    unmatched = Counter(
        (m.is_operator, m.content) for m in fresh if m.id not in delivered
    )
    confirmed: list[ChatMessage] = []
    pending: list[ChatMessage] = []
    for message in local:
        if message.id is None:
            key = (message.is_operator, message.content)
            if unmatched[key] > 0:
                unmatched[key] -= 1
                continue
            pending.append(message)
        elif message.id not in delivered:
            confirmed.append(message)

    return confirmed + fresh + pending


def confirm_pending(
    local: list[ChatMessage], local_id: str, confirmed: ChatMessage
) -> list[ChatMessage] | None:
    """Swap an optimistic entry for the server's copy after a successful write.

    The copy stays flagged ``awaiting_poll`` until a poll delivers it. If a
    poll already did, the pending entry is simply dropped. Returns None when
    there is nothing to change.
    """
    already_known = any(m.id == confirmed.id for m in local)
    index = next((i for i, m in enumerate(local) if m.local_id == local_id), None)

    if index is None:
        return None
    if already_known:
        return local[:index] + local[index + 1 :]

    merged = replace(confirmed, local_id=local_id, awaiting_poll=True)
    if merged.reply_to is None and local[index].reply_to is not None:
        merged.reply_to = local[index].reply_to
    return local[:index] + [merged] + local[index + 1 :]


def _without_party(group: ReactionGroup, as_operator: bool) -> ReactionGroup | None:
    count = group.count - 1
    if count <= 0:
        return None
    if as_operator:
        return replace(group, count=count, has_operator=False)
    return replace(group, count=count, has_visitor=False)


def _has_party(group: ReactionGroup, as_operator: bool) -> bool:
    return group.has_operator if as_operator else group.has_visitor


def apply_reaction_toggle(
    reactions: list[ReactionGroup], emoji: str, as_operator: bool
) -> list[ReactionGroup]:
    """Mirror the server's toggle-and-replace rule on a reaction summary."""
    current = next((g for g in reactions if g.emoji == emoji), None)

    if current is not None and _has_party(current, as_operator):
        result = []
        for group in reactions:
            if group.emoji == emoji:
                group = _without_party(group, as_operator)
                if group is None:
                    continue
            result.append(group)
        return result

    result = []
    for group in reactions:
        if group.emoji != emoji and _has_party(group, as_operator):
            group = _without_party(group, as_operator)
            if group is None:
                continue
        result.append(group)

    for i, group in enumerate(result):
        if group.emoji == emoji:
            if as_operator:
                result[i] = replace(group, count=group.count + 1, has_operator=True)
            else:
                result[i] = replace(group, count=group.count + 1, has_visitor=True)
            return result

    result.append(
        ReactionGroup(
            emoji=emoji,
            count=1,
            has_operator=as_operator,
            has_visitor=not as_operator,
        )
    )
    return result
