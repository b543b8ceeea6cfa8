from claude_pipeline.rate_limit import detect_rate_limit


def test_sentinel_in_stderr_is_detected():
    check = detect_rate_limit(None, "Claude AI usage limit reached|1700000000", now_ms=1_699_999_000_000)

    assert check.is_rate_limited is True
    assert check.reset_time_ms == 1_700_000_000_000
    assert check.wait_ms == 1_000_000
    assert check.is_timeout is False


def test_claude_code_variant_inside_other_output():
    text = "some output\nClaude Code usage limit reached|1700003600 please wait\n"
    check = detect_rate_limit(text, now_ms=0)

    assert check.is_rate_limited is True
    assert check.reset_time_ms == 1_700_003_600_000


def test_past_deadline_never_yields_negative_wait():
    check = detect_rate_limit("Claude AI usage limit reached|100", now_ms=1_000_000_000)

    assert check.wait_ms == 0


def test_long_wait_is_flagged_as_timeout():
    now_ms = 1_700_000_000_000
    seven_hours = 7 * 60 * 60
    check = detect_rate_limit(f"Claude AI usage limit reached|{1_700_000_000 + seven_hours}", now_ms=now_ms)

    assert check.is_timeout is True


def test_ordinary_failures_are_not_rate_limits():
    assert detect_rate_limit("usage limit reached|1700000000", "Error: boom").is_rate_limited is False
    assert detect_rate_limit().is_rate_limited is False


def test_same_text_gives_same_answer():
    text = "Claude AI usage limit reached|1700000000"
    assert detect_rate_limit(text, now_ms=5) == detect_rate_limit(text, now_ms=5)
