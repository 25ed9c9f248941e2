"""Noise removal for captured terminal buffers.

The agent CLI renders a full-screen TUI: bordered input boxes, spinner
frames, a version banner and an interrupt hint footer. ``clean`` strips all
of that and leaves only the text lines the agent actually produced. It is a
pure string transform so the noise policy can be tested with literal inputs.

``strip_control`` is the lighter transform used before signature scanning:
it removes escape sequences and control characters but keeps every other
character, including the TUI glyphs. Line breaks become single spaces so
words on adjacent lines never fuse into a false signature match.

``drop_echo`` removes the lines the TUI echoes back after a prompt is
typed into the input box, so the prompt text itself is never scanned.
"""

from __future__ import annotations

import re

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|\x1b\][^\x07]*\x07|\x1b[()][A-Za-z0-9]")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
# Keep newlines and tabs when cleaning for display.
DISPLAY_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

BOX_TOP = re.compile(r"╭[─╮]*╮")
BOX_BOTTOM = re.compile(r"╰[─╯]*╯")
BOX_ROW = re.compile(r"│[^│\n]*│")
BOX_GLYPHS = re.compile(r"[╭╮╰╯│─]")
SPINNER_GLYPHS = re.compile(r"[●▋◉⡾⡻⡧⢿⡯⠻⠫⠛⠵⠯⡿⣿⣾⣽⣻⣟⣯⣷⠿⠟]")
INTERRUPT_HINT = re.compile(r"\( \d+s • esc to interrupt \)")
PROMPT_HINT = re.compile(r"Ask anything.*?shell mode", re.IGNORECASE)
BANNER = re.compile(r"Continue CLI v[\d.]+")

NOISE_LINE = re.compile(r"^[●▋◉\s]*$")
INTERRUPT_LINE = re.compile(r"^\(.*interrupt.*\)$")
NOISE_PREFIXES = ("Continue CLI", "Ask anything")
BLANK_RUN = re.compile(r"\n{3,}")
LINE_BREAK = re.compile(r"\r\n|\r|\n")

ECHO_MARKERS = "│┃>❯ \t"
# Shorter fragments match too much ordinary output.
MIN_ECHO_FRAGMENT = 20


def strip_ansi(raw: str) -> str:
    """Remove ANSI escape sequences."""
    return ANSI_ESCAPE.sub("", raw)


def strip_control(raw: str) -> str:
    """Remove ANSI escape sequences and all C0/C1 control characters.

    Line breaks are replaced by a space before the remaining control
    characters are dropped, so the result is a single line.
    """
    return CONTROL_CHARS.sub("", LINE_BREAK.sub(" ", strip_ansi(raw)))


def _echo_key(line: str) -> str:
    return " ".join(DISPLAY_CONTROL_CHARS.sub("", strip_ansi(line)).strip(ECHO_MARKERS).split())


def drop_echo(region: str, prompt: str) -> str:
    """Remove the echoed prompt from a captured region.

    A line is dropped when, ignoring escape sequences, box borders, input
    markers and whitespace, it equals a prompt line or is a long enough
    fragment of one (the TUI wraps long prompts across rows).
    """
    prompt_lines = [key for key in map(_echo_key, LINE_BREAK.split(prompt)) if key]
    if not prompt_lines:
        return region

    def echoed(line: str) -> bool:
        key = _echo_key(line)
        if not key:
            return False
        if key in prompt_lines:
            return True
        return len(key) >= MIN_ECHO_FRAGMENT and any(key in p for p in prompt_lines)

    return "\n".join(line for line in LINE_BREAK.split(region) if not echoed(line))


def _is_noise_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return True
    if NOISE_LINE.match(stripped) or INTERRUPT_LINE.match(stripped):
        return True
    return stripped.startswith(NOISE_PREFIXES)


def clean(raw: str) -> str:
    """Reduce a raw screen capture to the meaningful text lines.

    Args:
        raw: Buffer contents as written by the multiplexer hardcopy command.

    Returns:
        Cleaned text with no escape sequences, no TUI chrome and no blank
        line runs longer than one.
    """
    text = DISPLAY_CONTROL_CHARS.sub("", strip_ansi(raw.replace("\r\n", "\n")))
    text = text.replace("\r", "\n")
    for pattern in (
        BOX_TOP,
        BOX_BOTTOM,
        BOX_ROW,
        BOX_GLYPHS,
        SPINNER_GLYPHS,
        INTERRUPT_HINT,
        PROMPT_HINT,
        BANNER,
    ):
        text = pattern.sub("", text)

    lines = [line.rstrip() for line in text.split("\n") if not _is_noise_line(line)]
    return BLANK_RUN.sub("\n\n", "\n".join(lines)).strip()
