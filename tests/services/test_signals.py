"""
Tests for heuristic signal detection.
"""

from kaiwa.models import JLPTLevel, MessageRole
from kaiwa.services.conversation import (
    add_message,
    analyze_message_completion,
    analyze_objective_progress,
    complete_objective,
    detect_signals,
    initialize_context,
    should_offer_hint,
)


def converse(context, *turns):
    for role, text in turns:
        context = add_message(context, role, text)
    return context


def test_single_message_never_offers_hint(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5), (MessageRole.USER, "help me")
    )

    assert not should_offer_hint(context)


def test_hint_offered_when_latest_user_message_asks_for_help(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.ASSISTANT, "いらっしゃいませ"),
        (MessageRole.USER, "I don't understand"),
    )

    assert should_offer_hint(context)


def test_japanese_help_phrase(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.ASSISTANT, "どちらまでですか"),
        (MessageRole.USER, "すみません、わかりません"),
    )

    assert should_offer_hint(context)


def test_no_hint_when_help_was_asked_earlier(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "help"),
        (MessageRole.ASSISTANT, "どうぞ"),
        (MessageRole.USER, "京都までお願いします"),
    )

    assert not should_offer_hint(context)


def test_assistant_text_is_not_scanned(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "こんにちは"),
        (MessageRole.ASSISTANT, "Do you need help? Are you done?"),
    )

    assert not should_offer_hint(context)
    assert detect_signals(context).completion_phrases == []


def test_confidence_without_completion_phrases(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5), (MessageRole.USER, "こんにちは")
    )

    signal = analyze_objective_progress(context, 0)

    assert signal.confidence == 10
    assert not signal.likely_completed


def test_one_phrase_is_not_enough(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5), (MessageRole.USER, "done")
    )

    signal = analyze_objective_progress(context, 0)

    assert signal.confidence == 40
    assert not signal.likely_completed


def test_two_distinct_phrases_cross_threshold(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "はい"),
        (MessageRole.ASSISTANT, "切符はこちらです"),
        (MessageRole.USER, "Finished!"),
    )

    signal = analyze_objective_progress(context, 0)

    assert signal.confidence == 70
    assert signal.likely_completed


def test_repeated_phrase_counts_once(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "done"),
        (MessageRole.USER, "done done"),
    )

    assert analyze_objective_progress(context, 0).confidence == 40


def test_confidence_is_capped(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "yes, finished, completed, done"),
    )

    assert analyze_objective_progress(context, 0).confidence == 100


def test_only_recent_messages_count(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "done, finished"),
        *[(MessageRole.ASSISTANT, "…")] * 6,
    )

    assert analyze_objective_progress(context, 0).confidence == 10


def test_out_of_range_objective(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)

    signal = analyze_objective_progress(context, 5)

    assert not signal.likely_completed
    assert signal.confidence == 0


def test_completed_objective_is_certain(task_definition):
    context = complete_objective(initialize_context(task_definition, JLPTLevel.N5), 0)

    signal = analyze_objective_progress(context, 0)

    assert signal.likely_completed
    assert signal.confidence == 100


def test_message_completion_scores_one_message():
    assert analyze_message_completion("はい、できました").confidence == 70
    assert analyze_message_completion("はい、できました").likely_completed
    assert analyze_message_completion("done").confidence == 40
    assert not analyze_message_completion("もう一杯コーヒーをお願いします").likely_completed


def test_window_still_remembers_earlier_phrases(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "はい、できました"),
        (MessageRole.ASSISTANT, "次は？"),
        (MessageRole.USER, "切符をください"),
    )

    assert analyze_objective_progress(context, 1).likely_completed
    assert not analyze_message_completion("切符をください").likely_completed


def test_detect_signals(task_definition):
    context = converse(
        initialize_context(task_definition, JLPTLevel.N5),
        (MessageRole.USER, "はい、できました"),
        (MessageRole.ASSISTANT, "次は？"),
        (MessageRole.USER, "ヒントをください"),
    )

    signals = detect_signals(context)

    assert signals.help_requested
    assert signals.completion_phrases == ["できました", "はい"]
