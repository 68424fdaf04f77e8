from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, Field


class CommandScope(str, Enum):
    """Where a command applies.

    APP commands act on the application as a whole and are always eligible. EDITOR
    commands act on the open note and are eligible during dictation, or in command
    mode while an editor is open.
    """

    APP = "app"
    EDITOR = "editor"


class CommandKind(str, Enum):
    """How a matched command is carried out.

    ACTION: an application action, run by a bound handler or published as AppCommandEvent.
    DOM_OP: a formatting or insertion operation applied to the editor content.
    EDITOR_METHOD: a named method on the editor, optionally with a fixed value.
    """

    ACTION = "action"
    DOM_OP = "dom_op"
    EDITOR_METHOD = "editor_method"


class VoiceCommand(BaseModel):
    """A single entry of the command table.

    Attributes:
        name: Stable identifier used for handler binding and logging.
        keywords: Trigger phrases, matched in order as whole words.
        scope: APP or EDITOR.
        kind: Execution kind, see CommandKind.
        requires_argument: The keyword only fires when followed by non-empty text.
        command_mode_only: Never eligible while dictating.
        method: Editor method or DOM operation name.
        value: Fixed argument passed along with the method.
        handler: Direct callable for APP actions, bound at runtime.
        description: Short human readable description.
    """

    name: str
    keywords: List[str]
    scope: CommandScope
    kind: CommandKind = CommandKind.ACTION
    requires_argument: bool = False
    command_mode_only: bool = False
    method: Optional[str] = None
    value: Optional[str] = None
    handler: Optional[Callable[..., Any]] = Field(default=None, exclude=True)
    description: str = ""

    class Config:
        frozen = True
        arbitrary_types_allowed = True


class ParseResult(BaseModel):
    """Base class for the outcome of matching a finalized transcript."""

    class Config:
        arbitrary_types_allowed = True


class NoMatchResult(ParseResult):
    """No eligible keyword was found in the transcript."""


class DuplicateMatchResult(ParseResult):
    """A keyword matched but repeats the previous accepted match inside the duplicate window.

    Attributes:
        keyword: The repeated keyword.
        age_ms: Milliseconds since the previous accepted match.
    """

    keyword: str
    age_ms: float


class CommandMatch(ParseResult):
    """An accepted match.

    Attributes:
        command: The matched command.
        keyword: The keyword that fired.
        argument: Trimmed original-case text after the keyword, if any.
        transcript: The full transcript the match came from.
    """

    command: VoiceCommand
    keyword: str
    argument: Optional[str] = None
    transcript: str = ""
