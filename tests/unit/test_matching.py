"""Unit tests for action name resolution."""

from eidolon.runtime.matching import ActionMatcher, normalize_name


def test_normalize_name():
    assert normalize_name("Send_Message") == "sendmessage"
    assert normalize_name(" send-message. ") == "sendmessage"
    assert normalize_name("SEND MESSAGE") == "sendmessage"
    assert normalize_name(None) == ""


def build_matcher():
    matcher = ActionMatcher()
    matcher.register("RESPOND", ["REPLY", "CHAT"], "respond")
    matcher.register("CONTINUE", ["ELABORATE", "KEEP_TALKING"], "continue")
    matcher.register("FOLLOW_ROOM", ["LISTEN", "PAY_ATTENTION"], "follow")
    return matcher


def test_exact_name_wins():
    matcher = build_matcher()

    assert matcher.resolve("respond") == "respond"
    assert matcher.resolve("follow-room") == "follow"
    assert len(matcher) == 3


def test_name_containment_either_direction():
    matcher = build_matcher()

    # label contains a name
    assert matcher.resolve("PLEASE_CONTINUE_NOW") == "continue"
    # name contains label
    assert matcher.resolve("FOLLOW") == "follow"


def test_simile_lookup():
    matcher = build_matcher()

    assert matcher.resolve("reply") == "respond"
    assert matcher.resolve("keep talking") == "continue"
    assert matcher.resolve("ATTENTION") == "follow"


def test_name_match_beats_simile_match():
    """A label that is one action's simile and contains another's name resolves to the name."""
    matcher = ActionMatcher()
    matcher.register("TALK", [], "talk")
    matcher.register("RESPOND", ["TALKING"], "respond")

    assert matcher.resolve("TALKING") == "talk"


def test_registration_order_breaks_ties():
    matcher = ActionMatcher()
    matcher.register("GREET", ["HELLO"], "first")
    matcher.register("GREET", ["HI"], "second")

    assert matcher.resolve("GREET") == "first"
    assert matcher.resolve("HI") == "second"


def test_unknown_and_empty_labels():
    matcher = build_matcher()

    assert matcher.resolve("DANCE") is None
    assert matcher.resolve("") is None
    assert matcher.resolve(None) is None
    assert matcher.resolve("___") is None


def test_resolution_is_deterministic():
    matcher = build_matcher()

    results = {matcher.resolve("CHAT") for _ in range(20)}
    assert results == {"respond"}
