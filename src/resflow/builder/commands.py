"""Editing commands, decoupled from whatever key bindings trigger them."""

from enum import Enum
from typing import Callable, Dict, List, Union

from resflow.builder.clipboard import ClipboardManager
from resflow.exceptions import ValidationError
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)


class EditCommand(str, Enum):
    COPY = "copy"
    CUT = "cut"
    PASTE = "paste"
    SELECT_ALL = "select-all"
    UNDO = "undo"
    REDO = "redo"
    DELETE = "delete"


def parse_command(name: str) -> EditCommand:
    """Accept a command value (``select-all``) or member name (``SELECT_ALL``)."""
    key = name.strip()
    for command in EditCommand:
        if key.lower() == command.value or key.upper().replace("-", "_") == command.name:
            return command
    raise ValidationError(
        f"Unknown edit command: {name!r}",
        details={"allowed": [command.value for command in EditCommand]},
    )


class CommandDispatcher:
    """
    Routes edit commands to the ClipboardManager.

    Commands are ignored while focus is in a text-entry field, so typing in a
    config form never copies or deletes nodes.
    """

    def __init__(self, clipboard: ClipboardManager) -> None:
        self.clipboard = clipboard
        self._handlers: Dict[EditCommand, Callable[[], object]] = {
            EditCommand.COPY: clipboard.copy,
            EditCommand.CUT: clipboard.cut,
            EditCommand.PASTE: clipboard.paste,
            EditCommand.SELECT_ALL: clipboard.select_all,
            EditCommand.UNDO: clipboard.undo,
            EditCommand.REDO: clipboard.redo,
            EditCommand.DELETE: clipboard.delete_selection,
        }

    def available(self) -> List[str]:
        return [command.value for command in self._handlers]

    def dispatch(self, command: Union[EditCommand, str], text_entry_focused: bool = False) -> bool:
        """Run ``command``. Returns False when it was suppressed."""
        if isinstance(command, str) and not isinstance(command, EditCommand):
            command = parse_command(command)
        if text_entry_focused:
            logger.debug("command %s suppressed: text entry has focus", command.value)
            return False
        self._handlers[command]()
        return True
