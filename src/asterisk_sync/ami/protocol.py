"""AMI wire format.

Requests and responses are plain ``Key: Value`` lines separated by CRLF,
with a blank line terminating each message. There is no length prefix,
so framing is purely line based.
"""
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Union

# Upper bound on lines read for a single frame
MAX_READ_ITERATIONS = 1000

# Seconds for connect, send and each blocking read
DEFAULT_TIMEOUT = 5.0

DEFAULT_PORT = 5038

LINE_END = "\r\n"

END_COMMAND = "--END COMMAND--"

_COMMAND_HEADER_KEYS = {"Response", "Privilege", "ActionID", "Message"}

Fields = Union[Mapping[str, object], Iterable[tuple[str, object]]]


def field_pairs(fields: Fields) -> list[tuple[str, object]]:
    if isinstance(fields, Mapping):
        return list(fields.items())
    return list(fields)


def encode_action(fields: Fields) -> bytes:
    """Serialize ordered key/value pairs as one AMI request."""
    lines = []
    for key, value in field_pairs(fields):
        text = str(value)
        if "\r" in text or "\n" in text or "\r" in key or "\n" in key:
            raise ValueError(f"AMI field {key!r} must not contain line breaks")
        lines.append(f"{key}: {text}{LINE_END}")
    lines.append(LINE_END)
    return "".join(lines).encode("utf-8")


def split_line(line: str) -> tuple[str, str]:
    """Split one frame line on its first colon, trimming both halves.

    Lines without a colon yield an empty value.
    """
    key, _, value = line.partition(":")
    return key.strip(), value.strip()


def parse_lines(lines: Iterable[str]) -> list[tuple[str, str]]:
    """Decode frame lines into ordered (key, value) pairs."""
    items = []
    for line in lines:
        if ":" not in line:
            continue
        key, value = split_line(line)
        if key:
            items.append((key, value))
    return items


def parse_frame(text: str) -> dict[str, str]:
    """Decode one frame into a flat mapping.

    A key that repeats keeps its last value.
    """
    return dict(parse_lines(text.splitlines()))


@dataclass
class AmiResponse:
    """One response frame read after an action."""
    lines: list[str] = field(default_factory=list)
    terminated: bool = True

    @classmethod
    def from_text(cls, text: str, terminated: bool = True) -> "AmiResponse":
        return cls(lines=[line for line in text.splitlines() if line], terminated=terminated)

    @property
    def raw(self) -> str:
        return LINE_END.join(self.lines)

    @property
    def items(self) -> list[tuple[str, str]]:
        return parse_lines(self.lines)

    @property
    def fields(self) -> dict[str, str]:
        return dict(self.items)

    @property
    def empty(self) -> bool:
        return not self.lines

    @property
    def success(self) -> bool:
        """True if any field value carries the success indicator."""
        return any("Success" in value for _, value in self.items)

    @property
    def message(self) -> str:
        return self.fields.get("Message", "")

    @property
    def output(self) -> str:
        """Text produced by a ``Command`` action.

        Handles both the ``Output:`` line style and the older
        ``Response: Follows`` style closed by ``--END COMMAND--``.
        """
        outputs = [value for key, value in self.items if key == "Output"]
        if outputs:
            return "\n".join(outputs)

        if self.fields.get("Response") != "Follows":
            return ""

        body = list(self.lines)
        while body and ":" in body[0] and split_line(body[0])[0] in _COMMAND_HEADER_KEYS:
            body.pop(0)
        if body and body[-1].endswith(END_COMMAND):
            last = body.pop()[: -len(END_COMMAND)]
            if last.strip():
                body.append(last)
        return "\n".join(body)
