"""Display-text cleanup for session content.

Claude Code wraps slash commands, command output and injected reminders in
XML-like tags. None of that markup should reach a title, a search index or a
terminal, so every piece of text passes through `sanitize_display_content`
first. The function is idempotent.
"""

import re
from html.parser import HTMLParser

import markdown

# Blocks whose whole body is noise for display purposes
_DROPPED_BLOCKS = re.compile(
    r"<(system-reminder|local-command-caveat|command-message)>[\s\S]*?</\1>",
    re.IGNORECASE,
)
_COMMAND_NAME = re.compile(r"<command-name>\s*([^<]*?)\s*</command-name>", re.IGNORECASE)
_COMMAND_ARGS = re.compile(r"<command-args>\s*([\s\S]*?)\s*</command-args>", re.IGNORECASE)
_COMMAND_OUTPUT = re.compile(
    r"<(local-command-stdout|local-command-stderr)>([\s\S]*?)</\1>", re.IGNORECASE
)
_LEFTOVER_TAGS = re.compile(
    r"</?(command-name|command-args|command-message|command-contents|"
    r"local-command-stdout|local-command-stderr|system-reminder|local-command-caveat)>",
    re.IGNORECASE,
)
_BLANK_RUNS = re.compile(r"\n{3,}")

COMMAND_OUTPUT_PREFIXES = ("<local-command-stdout>", "<local-command-stderr>")
INTERRUPTED_PREFIX = "[Request interrupted by user"


def is_command_output_content(text: str) -> bool:
    """Whether the text is the captured output of a local slash command."""
    return text.startswith(COMMAND_OUTPUT_PREFIXES)


def is_interruption(text: str) -> bool:
    return text.startswith(INTERRUPTED_PREFIX)


def sanitize_display_content(text: str) -> str:
    """Strip presentation-only markup from message text."""
    if not text:
        return ""

    text = _DROPPED_BLOCKS.sub("", text)

    # "<command-name>/foo</command-name><command-args>bar</command-args>" -> "/foo bar"
    name_match = _COMMAND_NAME.search(text)
    if name_match:
        args_match = _COMMAND_ARGS.search(text)
        command = name_match.group(1)
        if args_match and args_match.group(1):
            command = f"{command} {args_match.group(1)}"
        text = _COMMAND_ARGS.sub("", text)
        text = _COMMAND_NAME.sub(command, text, count=1)
        text = _COMMAND_NAME.sub("", text)

    text = _COMMAND_OUTPUT.sub(lambda m: m.group(2), text)
    text = _LEFTOVER_TAGS.sub("", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


class _TextCollector(HTMLParser):
    """Collects the text nodes of rendered HTML, markup dropped."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "br":
            self.parts.append("\n")

    def handle_data(self, data):
        self.parts.append(data)

    def text(self) -> str:
        return _BLANK_RUNS.sub("\n\n", "".join(self.parts)).strip()


def markdown_to_plain_text(text: str) -> str:
    """Render markdown as the plain text a reader would see.

    Code spans and fenced code keep their literal contents.
    """
    if not text:
        return ""
    collector = _TextCollector()
    collector.feed(markdown.markdown(text, extensions=["fenced_code", "tables"]))
    collector.close()
    return collector.text()
