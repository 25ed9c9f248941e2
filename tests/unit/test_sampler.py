"""Unit tests for terminal buffer cleaning."""

from __future__ import annotations

from agentmux.terminal.sampler import clean, drop_echo, strip_ansi, strip_control


def test_strip_ansi_removes_color_sequences() -> None:
    """Test that SGR and cursor sequences are removed."""
    assert strip_ansi("\x1b[31mred\x1b[0m \x1b[2Kline") == "red line"


def test_strip_control_flattens_newlines() -> None:
    """Test that line breaks become spaces and other control characters go."""
    assert strip_control("a\nb\r\x07c\x1b[1m!") == "a b c!"


def test_strip_control_keeps_adjacent_lines_apart() -> None:
    """Test that words ending and starting adjacent lines do not fuse."""
    flattened = strip_control("Checking the auth\r\nfailed_logins table\nok")
    assert flattened == "Checking the auth failed_logins table ok"
    assert "authfailed" not in flattened


def test_clean_drops_box_chrome() -> None:
    """Test that bordered input boxes disappear entirely."""
    raw = (
        "╭──────────────╮\n"
        "│ > list files │\n"
        "╰──────────────╯\n"
        "Created src/app.py\n"
    )
    assert clean(raw) == "Created src/app.py"


def test_clean_drops_banner_and_prompt_hint() -> None:
    """Test that the CLI banner and input hint lines are removed."""
    raw = (
        "Continue CLI v1.4.2\n"
        "Ask anything, @ for context, ! for shell mode\n"
        "Installed 3 packages\n"
    )
    assert clean(raw) == "Installed 3 packages"


def test_clean_drops_spinner_and_interrupt_footer() -> None:
    """Test that spinner frames and the interrupt hint are removed."""
    raw = "⣾ Thinking\n( 12s • esc to interrupt )\n●\nDone writing tests\n"
    cleaned = clean(raw)
    assert "esc to interrupt" not in cleaned
    assert "⣾" not in cleaned
    assert cleaned.splitlines() == ["Thinking", "Done writing tests"]


def test_clean_keeps_meaningful_lines_in_order() -> None:
    """Test that real output lines survive with trailing space trimmed."""
    raw = "\x1b[32mStep 1\x1b[0m   \r\n\r\n\r\n\r\nStep 2\n"
    assert clean(raw) == "Step 1\nStep 2"


def test_clean_empty_input() -> None:
    """Test that an empty capture cleans to an empty string."""
    assert clean("") == ""
    assert clean("\n\n  \n") == ""


def test_drop_echo_removes_prompt_lines_inside_input_box() -> None:
    """Test that echoed prompt rows are dropped and agent output survives."""
    prompt = "Add error handling to the login route\nKeep the invalid-token branch"
    region = (
        "│ > Add error handling to the login route │\n"
        "│ Keep the invalid-token branch           │\n"
        "Updated src/routes/login.py\n"
        "All checks pass\n"
    )
    assert drop_echo(region, prompt).splitlines() == [
        "Updated src/routes/login.py",
        "All checks pass",
    ]


def test_drop_echo_handles_wrapped_prompt_rows() -> None:
    """Test that a long prompt wrapped across rows is still recognised."""
    prompt = "Refactor the payment module so failed charges are retried with backoff"
    region = (
        "> Refactor the payment module so failed\n"
        "  charges are retried with backoff\n"
        "Done\n"
    )
    assert drop_echo(region, prompt).splitlines() == ["Done"]


def test_drop_echo_keeps_short_fragments() -> None:
    """Test that short output lines are not mistaken for prompt fragments."""
    prompt = "Fix the failed build step in ci.yml"
    assert drop_echo("failed\nDone", prompt).splitlines() == ["failed", "Done"]


def test_drop_echo_with_empty_prompt() -> None:
    """Test that an empty prompt leaves the region untouched."""
    assert drop_echo("error: boom\n", "") == "error: boom\n"
