"""Interactive UI components for choosing group members."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import User

logger = logging.getLogger(__name__)


def member_label(user: User) -> str:
    """Label shown for a member in completions."""
    return f"{user.name} <{user.email}>" if user.email else user.name


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="alc" matches "Alice"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


class MemberCompleter(Completer):
    """Fuzzy search completer over group members."""

    def __init__(self, members: list[User]):
        """Initialize the completer with the selectable members."""
        self.members = members
        self.label_to_id = {member_label(member): member.id for member in members}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for label in self.label_to_id:
            if not query or fuzzy_match(query, label.lower()):
                yield Completion(
                    text=label,
                    start_position=-len(document.text),
                    display=label,
                )


def select_member_interactive(
    members: list[User], prompt: str, default_id: str | None = None
) -> str | None:
    """
    Pick one member with fuzzy search.

    Args:
        members: Selectable members
        prompt: Prompt text, e.g. "Paid by"
        default_id: Member pre-filled in the prompt

    Returns:
        Selected member id, or None to cancel
    """
    completer = MemberCompleter(members)
    session: PromptSession[str] = PromptSession(completer=completer)

    default_text = ""
    for member in members:
        if member.id == default_id:
            default_text = member_label(member)

    print("   Type to search, press Enter to confirm, Ctrl+C to cancel\n")

    try:
        while True:
            result = session.prompt(
                f"{prompt}: ", default=default_text, complete_while_typing=True
            )
            if not result:
                return None

            member_id = completer.label_to_id.get(result)
            if member_id:
                logger.debug(f"User selected member {member_id}")
                return member_id

            print("❌ Unknown member. Pick one from the list or press Tab to complete.")
            default_text = ""

    except KeyboardInterrupt:
        print("\n⏭️  Cancelled")
        return None
    except EOFError:
        return None


def select_members_interactive(members: list[User], prompt: str) -> list[str]:
    """
    Pick several members, one per prompt, until an empty entry.

    Returns:
        Selected member ids in the order chosen, without duplicates
    """
    print(f"\n👥 {prompt} (empty entry to finish)")
    selected: list[str] = []
    remaining = list(members)

    while remaining:
        member_id = select_member_interactive(remaining, "Add")
        if member_id is None:
            break
        selected.append(member_id)
        remaining = [member for member in remaining if member.id != member_id]

    return selected


def confirm_action(message: str) -> bool:
    """Simple yes/no confirmation, defaulting to no."""
    response = input(f"{message} [y/N] ").strip().lower()
    return response in ("y", "yes")
