from prod_control.patching import apply_directives, line_matches, patch_text
from prod_control.types import (
    CommentLine,
    InsertLine,
    InsertPosition,
    MatchType,
    OutcomeStatus,
    ReplaceLine,
)


JAIL = """[DEFAULT]
bantime  = 10m
backend = auto

[sshd]
port = ssh
"""


def test_line_matches_each_match_type():
    assert line_matches("   [sshd]", "[sshd]", MatchType.STARTS_WITH)
    assert not line_matches("# [sshd]", "[sshd]", MatchType.STARTS_WITH)
    assert line_matches("port = ssh", "= s", MatchType.CONTAINS)
    assert line_matches("  exact line  ", "exact line", MatchType.EXACT)
    assert not line_matches("exact line plus", "exact line", MatchType.EXACT)
    assert line_matches("value = 1   ", "= 1", MatchType.ENDS_WITH)


def test_insert_below_once_only_after_sshd_section():
    directive = InsertLine(
        match_string="[sshd]",
        insert_string="enabled: true",
        position=InsertPosition.BELOW,
        match_type=MatchType.STARTS_WITH,
        once_only=True,
    )
    result = patch_text(JAIL, [directive])

    lines = result.text.splitlines()
    assert lines[lines.index("[sshd]") + 1] == "enabled: true"
    assert result.changed is True
    assert result.outcomes[0].status is OutcomeStatus.SUCCESS
    assert result.text.endswith("\n")


def test_insert_above_every_match():
    lines = ["a", "target", "b", "target"]
    result = apply_directives(lines, [InsertLine("target", "new", position=InsertPosition.ABOVE)])
    assert result.lines == ["a", "new", "target", "b", "new", "target"]
    assert result.outcomes[0].matches == 2


def test_once_only_mutates_at_most_one_line():
    lines = ["x = 1", "x = 2", "x = 3"]
    replace = ReplaceLine("x", "x = 0", match_type=MatchType.STARTS_WITH, once_only=True)
    insert = InsertLine("x", "# note", once_only=True)

    replaced = apply_directives(lines, [replace])
    assert replaced.lines == ["x = 0", "x = 2", "x = 3"]

    inserted = apply_directives(lines, [insert])
    assert inserted.lines == ["x = 1", "# note", "x = 2", "x = 3"]


def test_exact_replace_without_match_is_skipped_and_unchanged():
    directive = ReplaceLine("missing", "anything", match_type=MatchType.EXACT, report_failure=False)
    result = patch_text(JAIL, [directive])

    assert result.text == JAIL
    assert result.changed is False
    assert result.outcomes[0].status is OutcomeStatus.SKIPPED
    assert result.outcomes[0].details == "no-match"


def test_report_failure_marks_directive_failed_but_continues():
    directives = [
        ReplaceLine("nothing here", "x", report_failure=True),
        ReplaceLine("backend = auto", "backend = systemd", match_type=MatchType.EXACT),
    ]
    result = patch_text(JAIL, directives)

    assert result.failed is True
    assert [o.status for o in result.outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.SUCCESS]
    assert "backend = systemd" in result.text


def test_inserted_line_is_not_rescanned_by_same_directive():
    directive = InsertLine("enabled", "enabled: true", match_type=MatchType.CONTAINS)
    result = apply_directives(["enabled: false"], [directive])

    assert result.lines == ["enabled: false", "enabled: true"]
    assert result.outcomes[0].matches == 1


def test_repeated_runs_are_not_idempotent():
    directive = InsertLine("[sshd]", "enabled: true", match_type=MatchType.STARTS_WITH, once_only=True)
    once = patch_text(JAIL, [directive]).text
    twice = patch_text(once, [directive]).text

    assert twice.count("enabled: true") == 2


def test_directives_apply_in_declaration_order():
    lines = ["alpha"]
    directives = [
        InsertLine("alpha", "beta"),
        ReplaceLine("beta", "gamma", match_type=MatchType.EXACT),
    ]
    result = apply_directives(lines, directives)
    assert result.lines == ["alpha", "gamma"]


def test_comment_line_prefixes_matches():
    result = apply_directives(
        ["/swapfile none swap sw 0 0", "UUID=abc / ext4 defaults 0 1"],
        [CommentLine("/swapfile", match_type=MatchType.STARTS_WITH)],
    )
    assert result.lines[0] == "#/swapfile none swap sw 0 0"
    assert result.lines[1].startswith("UUID=")


def test_zero_directives_returns_identical_content():
    text = "no trailing newline\r\nsecond"
    result = patch_text(text, [])
    assert result.text == text
    assert result.outcomes == []
    assert result.changed is False


def test_crlf_line_endings_are_preserved():
    text = "one\r\ntwo\r\n"
    result = patch_text(text, [ReplaceLine("two", "three", match_type=MatchType.EXACT)])
    assert result.text == "one\r\nthree\r\n"


def test_apply_directives_does_not_mutate_input():
    lines = ["keep"]
    apply_directives(lines, [InsertLine("keep", "added")])
    assert lines == ["keep"]


def test_form_feeds_and_other_separators_survive_untouched():
    text = "a = 1\n\x0c\nsection\x0cmore\x85tail\nb = 2\n"
    result = patch_text(text, [ReplaceLine("a = 1", "a = 9", match_type=MatchType.EXACT)])
    assert result.text == "a = 9\n\x0c\nsection\x0cmore\x85tail\nb = 2\n"


def test_mixed_line_endings_keep_their_own_terminator():
    text = "a = 1\nb = 2\r\nc = 3\n"
    result = patch_text(
        text,
        [
            ReplaceLine("c = 3", "c = 9", match_type=MatchType.EXACT),
            InsertLine("b = 2", "b2 = 0", match_type=MatchType.EXACT),
        ],
    )
    assert result.text == "a = 1\nb = 2\r\nb2 = 0\r\nc = 9\n"


def test_insert_below_unterminated_last_line():
    result = patch_text("first\nlast", [InsertLine("last", "added", match_type=MatchType.EXACT)])
    assert result.text == "first\nlast\nadded"
