import pytest

from voicenotes.app.config.command_types import CommandScope, VoiceCommand
from voicenotes.app.config.voice_command_registry import CommandTable
from voicenotes.app.services.voice.partial_match_predictor import PartialMatchPredictor

DICTATION_SCOPES = {CommandScope.APP, CommandScope.EDITOR}


@pytest.fixture
def predictor():
    return PartialMatchPredictor(CommandTable())


@pytest.mark.parametrize("fragment", ["add", "add a", "Add a", "add a task", "stop", "new", "undo"])
def test_prefixes_of_keywords_could_be_commands(predictor, fragment):
    assert predictor.could_be_command(fragment, DICTATION_SCOPES)


@pytest.mark.parametrize("fragment", ["dear diary", "the weather", "buy some milk"])
def test_plain_text_is_not_withheld(predictor, fragment):
    assert not predictor.could_be_command(fragment, DICTATION_SCOPES)


def test_fragment_longer_than_keyword_agrees_on_keyword_words(predictor):
    assert predictor.could_be_command("add a task for tomorrow", DICTATION_SCOPES)


def test_empty_fragment(predictor):
    assert not predictor.could_be_command("", DICTATION_SCOPES)
    assert not predictor.could_be_command(" ... ", DICTATION_SCOPES)


def test_command_mode_only_keywords_ignored_while_dictating(predictor):
    # "remind me" only belongs to the assistant query
    assert not predictor.could_be_command("remind", DICTATION_SCOPES, dictating=True)
    assert predictor.could_be_command("remind", {CommandScope.APP}, dictating=False)


def test_scopes_limit_candidates(predictor):
    assert predictor.could_be_command("italic", DICTATION_SCOPES)
    assert not predictor.could_be_command("italic", {CommandScope.APP})


def test_possible_completions_in_registration_order(predictor):
    completions = predictor.possible_completions("add a", DICTATION_SCOPES)

    assert completions == ["add a task", "add a line"]


def test_custom_table_keywords():
    table = CommandTable([VoiceCommand(name="ping", keywords=["ping the server"], scope=CommandScope.APP)])
    predictor = PartialMatchPredictor(table)

    assert predictor.could_be_command("ping the", {CommandScope.APP})
    assert not predictor.could_be_command("pong", {CommandScope.APP})
    assert predictor.could_be_command("ping", {CommandScope.APP})
