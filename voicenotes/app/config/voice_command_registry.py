import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from voicenotes.app.config.command_types import CommandKind, CommandScope, VoiceCommand

logger = logging.getLogger(__name__)

START_DICTATION = "start_dictation"
STOP_DICTATION = "stop_dictation"


def _editor_op(name: str, keywords: List[str], method: str, description: str) -> VoiceCommand:
    return VoiceCommand(
        name=name, keywords=keywords, scope=CommandScope.EDITOR, kind=CommandKind.DOM_OP, method=method, description=description
    )


def _editor_method(
    name: str, keywords: List[str], method: str, description: str, value: Optional[str] = None
) -> VoiceCommand:
    return VoiceCommand(
        name=name,
        keywords=keywords,
        scope=CommandScope.EDITOR,
        kind=CommandKind.EDITOR_METHOD,
        method=method,
        value=value,
        description=description,
    )


class VoiceCommandRegistry:
    """Default voice commands in registration order.

    Order is significant: matching is first-hit-wins, so specific app commands come
    before editor commands and the open-ended AI query comes last.
    """

    DEFAULT_COMMANDS: List[VoiceCommand] = [
        VoiceCommand(
            name=START_DICTATION,
            keywords=["start writing", "start dictating", "begin writing", "begin dictating", "start dictation"],
            scope=CommandScope.APP,
            description="Start dictating into the current note",
        ),
        VoiceCommand(
            name=STOP_DICTATION,
            keywords=["stop writing", "stop dictating", "end writing", "end dictating", "stop dictation", "done writing"],
            scope=CommandScope.APP,
            description="Stop dictation and finalize the recording",
        ),
        VoiceCommand(
            name="create_note",
            keywords=["create a new note", "create new note", "create a note", "create note", "new note"],
            scope=CommandScope.APP,
            description="Open a new empty note",
        ),
        VoiceCommand(
            name="close_editor",
            keywords=["close editor", "done editing", "finish note", "close note"],
            scope=CommandScope.APP,
            description="Close the note editor",
        ),
        VoiceCommand(
            name="save_note",
            keywords=["save this note", "save changes", "save note"],
            scope=CommandScope.APP,
            description="Save the open note",
        ),
        _editor_op("new_line", ["next line", "new line", "enter", "break line"], "insert_line_break", "Start a new line"),
        _editor_op(
            "insert_task", ["add a task", "new task", "insert task", "checkbox", "task item"], "insert_task", "Insert a task item"
        ),
        _editor_op(
            "bullet_list",
            ["add bullet list", "start bullets", "bullet points", "unordered list"],
            "insert_unordered_list",
            "Start a bulleted list",
        ),
        _editor_op(
            "numbered_list",
            ["add number list", "start numbering", "numbered list", "ordered list"],
            "insert_ordered_list",
            "Start a numbered list",
        ),
        _editor_op(
            "divider",
            ["add a line", "insert divider", "horizontal rule", "line separator"],
            "insert_horizontal_rule",
            "Insert a horizontal divider",
        ),
        _editor_op(
            "bold", ["make it bold", "start bold", "bold this", "stop bold", "end bold", "bold"], "bold", "Toggle bold"
        ),
        _editor_op(
            "underline",
            ["underline this", "start underline", "add underline", "stop underline", "end underline", "underline"],
            "underline",
            "Toggle underline",
        ),
        _editor_op("italic", ["italicize", "make it italic", "start italic", "italic"], "italic", "Toggle italic"),
        _editor_method(
            "clear_formatting",
            ["clear formatting", "remove style", "normal text", "clear style"],
            "clear_formatting",
            "Remove formatting from the selection",
        ),
        _editor_method(
            "delete_word",
            ["delete word", "delete last word", "remove word", "scratch word"],
            "delete_last_unit",
            "Delete the last word",
            value="word",
        ),
        _editor_method(
            "delete_sentence",
            ["delete sentence", "delete last sentence", "remove sentence", "scratch sentence"],
            "delete_last_unit",
            "Delete the last sentence",
            value="sentence",
        ),
        _editor_method(
            "delete_paragraph",
            ["delete paragraph", "delete last paragraph", "remove paragraph", "scratch paragraph"],
            "delete_last_unit",
            "Delete the last paragraph",
            value="paragraph",
        ),
        _editor_method("undo", ["undo that", "undo", "undo last"], "undo", "Undo the last edit"),
        _editor_method("redo", ["redo that", "redo", "redo last"], "redo", "Redo the last undone edit"),
        _editor_method(
            "summarize_note",
            ["summarize this note", "summary of this", "create summary", "summarize"],
            "summarize_note",
            "Summarize the open note",
        ),
        _editor_method(
            "proofread_note",
            ["proofread this note", "proofread this", "check my writing", "proof read this", "proofread"],
            "proofread_note",
            "Proofread the open note",
        ),
        VoiceCommand(
            name="ai_query",
            keywords=[
                "search for",
                "find",
                "search",
                "create",
                "summarize",
                "open",
                "what are",
                "do i have",
                "can you",
                "show me",
                "add",
                "remind me",
                "delete",
            ],
            scope=CommandScope.APP,
            requires_argument=True,
            command_mode_only=True,
            description="Ask the assistant a free-form question about your notes",
        ),
    ]

    @classmethod
    def get_default_commands(cls) -> List[VoiceCommand]:
        """Return a copy of the default command list."""
        return list(cls.DEFAULT_COMMANDS)

    @classmethod
    def get_commands_dict(cls) -> Dict[str, VoiceCommand]:
        """Map command names to commands."""
        return {command.name: command for command in cls.DEFAULT_COMMANDS}

    @classmethod
    def get_keywords(cls) -> List[str]:
        """All keywords in registration order, duplicates included."""
        return [keyword for command in cls.DEFAULT_COMMANDS for keyword in command.keywords]


class CommandTable:
    """Ordered, read-only set of voice commands with runtime handler binding.

    Commands are immutable. Binding a handler swaps in a copy of the command carrying
    the callable, keeping the registration position.

    Args:
        commands: Commands in registration order. Defaults to VoiceCommandRegistry.
    """

    def __init__(self, commands: Optional[Iterable[VoiceCommand]] = None) -> None:
        self._commands: List[VoiceCommand] = list(
            commands if commands is not None else VoiceCommandRegistry.get_default_commands()
        )
        names = [command.name for command in self._commands]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate command names in command table: {names}")

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self):
        return iter(self._commands)

    @property
    def commands(self) -> Sequence[VoiceCommand]:
        return tuple(self._commands)

    def get(self, name: str) -> Optional[VoiceCommand]:
        for command in self._commands:
            if command.name == name:
                return command
        return None

    def bind_handler(self, name: str, handler: Callable[..., Any]) -> None:
        """Attach a direct callable to an APP command.

        Args:
            name: Command name.
            handler: Called with (argument, transcript); may be sync or async.

        Raises:
            KeyError: No command with that name.
            ValueError: The command is not an APP command.
        """
        for index, command in enumerate(self._commands):
            if command.name != name:
                continue
            if command.scope != CommandScope.APP:
                raise ValueError(f"Handlers can only be bound to app commands, '{name}' is {command.scope.value}")
            self._commands[index] = command.model_copy(update={"handler": handler})
            logger.debug(f"Bound handler for command '{name}'")
            return
        raise KeyError(name)

    def eligible(self, scopes: Set[CommandScope], dictating: bool = False) -> List[VoiceCommand]:
        """Commands in the given scopes, in registration order.

        Args:
            scopes: Scopes currently eligible.
            dictating: Excludes command_mode_only commands when True.
        """
        return [
            command
            for command in self._commands
            if command.scope in scopes and not (dictating and command.command_mode_only)
        ]
