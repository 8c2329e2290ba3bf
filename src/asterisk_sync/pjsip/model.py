"""In-memory model of an Asterisk INI configuration file.

A document is free-form header lines followed by an ordered list of
sections. Each section keeps its properties as an ordered multimap, so
repeated keys such as ``allow=`` survive in order and count.

Parsed lines keep their original text and are written back unchanged,
which makes ``render(parse(text)) == text`` for any input. Sections
built in code carry no original text and are rendered canonically.

Ownership is by section name: one identity (``101``) may own several
sections of different types that all share that name.
"""
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Union

from .errors import ConfigParseError

COMMENT_MARKER = ";"

_SECTION_RE = re.compile(r"^\s*\[([^\]]+)\]")
_PROPERTY_RE = re.compile(r"^\s*([^=;\s\[]+)\s*=>?\s*(.*)$")


def _strip_inline_comment(value: str) -> str:
    """Cut an unescaped inline comment and unescape escaped markers."""
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value) and value[i + 1] == COMMENT_MARKER:
            out.append(COMMENT_MARKER)
            i += 2
            continue
        if ch == COMMENT_MARKER:
            break
        out.append(ch)
        i += 1
    return "".join(out).strip()


def _escape_value(value: str) -> str:
    return value.replace(COMMENT_MARKER, "\\" + COMMENT_MARKER)


@dataclass
class Property:
    """One ``key=value`` line."""
    key: str
    value: str
    raw: Optional[str] = field(default=None, compare=False, repr=False)

    def render(self) -> str:
        if self.raw is not None:
            return self.raw
        return f"{self.key}={_escape_value(self.value)}"


@dataclass
class RawLine:
    """A comment, blank or unrecognized line kept verbatim."""
    text: str

    def render(self) -> str:
        return self.text


Entry = Union[Property, RawLine]


@dataclass
class ConfigSection:
    """A ``[name]`` section and its ordered body.

    ``pre_lines`` holds the comment and blank lines found directly above
    the header in a parsed file. It is None for sections built in code,
    which get a blank separator line and optional ``comment`` instead.
    """
    name: str
    entries: list[Entry] = field(default_factory=list)
    header: Optional[str] = field(default=None, compare=False, repr=False)
    pre_lines: Optional[list[str]] = field(default=None, compare=False, repr=False)
    comment: Optional[str] = field(default=None, compare=False, repr=False)

    @classmethod
    def new(cls, name: str, section_type: str, comment: Optional[str] = None) -> "ConfigSection":
        section = cls(name=name, comment=comment)
        section.add("type", section_type)
        return section

    @property
    def type(self) -> Optional[str]:
        return self.get("type")

    @property
    def properties(self) -> list[Property]:
        return [e for e in self.entries if isinstance(e, Property)]

    def items(self) -> list[tuple[str, str]]:
        return [(p.key, p.value) for p in self.properties]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value for ``key``."""
        for prop in self.properties:
            if prop.key == key:
                return prop.value
        return default

    def get_all(self, key: str) -> list[str]:
        return [p.value for p in self.properties if p.key == key]

    def add(self, key: str, value: object) -> "ConfigSection":
        """Append a value, keeping any existing values for ``key``."""
        self.entries.append(Property(key, str(value)))
        return self

    def set(self, key: str, value: object) -> "ConfigSection":
        """Replace all values for ``key`` with one value at the first position."""
        new = Property(key, str(value))
        result: list[Entry] = []
        placed = False
        for entry in self.entries:
            if isinstance(entry, Property) and entry.key == key:
                if not placed:
                    result.append(new)
                    placed = True
                continue
            result.append(entry)
        if not placed:
            result.append(new)
        self.entries = result
        return self

    def remove(self, key: str) -> int:
        before = len(self.entries)
        self.entries = [
            e for e in self.entries if not (isinstance(e, Property) and e.key == key)
        ]
        return before - len(self.entries)

    def header_line(self) -> str:
        return self.header if self.header is not None else f"[{self.name}]"

    def render_lines(self) -> list[str]:
        """Header and body lines, without any leading lines."""
        return [self.header_line()] + [entry.render() for entry in self.entries]

    def unowned_lines(self) -> list[str]:
        """Directives and other non-comment lines parsed into this section."""
        lines = list(self.pre_lines or [])
        lines.extend(e.text for e in self.entries if isinstance(e, RawLine))
        return [line for line in lines if line.strip() and not line.lstrip().startswith(COMMENT_MARKER)]


def _with_lines(lines: list[str], extra: list[str]) -> list[str]:
    if lines and lines[-1].strip():
        return lines + [""] + extra
    return lines + extra


@dataclass
class ConfigDocument:
    """An ordered list of sections plus the lines around them.

    ``footer`` holds lines that must stay after every section, such as an
    ``#include`` left behind by a removed last section.
    """
    header: list[str] = field(default_factory=list)
    sections: list[ConfigSection] = field(default_factory=list)
    footer: list[str] = field(default_factory=list)
    trailing_newline: bool = field(default=True, compare=False)

    def find_sections_by_name(self, name: str) -> list[ConfigSection]:
        """All sections called ``name``; names are not unique."""
        return [s for s in self.sections if s.name == name]

    def remove_sections_by_name(self, name: str) -> int:
        """Drop every section called ``name`` and return how many went.

        Directive lines parsed into a removed section stay where the
        section was: after the previous kept section, or in the footer
        when no kept section follows. Comments and blank lines go with it.
        Surviving sections are copied, never modified in place.
        """
        kept: list[ConfigSection] = []
        carried: list[str] = []
        removed = 0
        for section in self.sections:
            if section.name == name:
                removed += 1
                carried.extend(section.unowned_lines())
                continue
            if carried:
                if kept:
                    prev = kept[-1]
                    lines = _with_lines(prev.render_lines(), carried)[len(prev.entries) + 1:]
                    kept[-1] = replace(prev, entries=prev.entries + [RawLine(line) for line in lines])
                else:
                    self.header = _with_lines(self.header, carried)
                carried = []
            kept.append(section)
        if carried:
            self.footer = carried + self.footer
        self.sections = kept
        return removed

    def add_section(self, section: ConfigSection) -> None:
        self.sections.append(section)
        self.trailing_newline = True

    def add_sections(self, sections: Iterable[ConfigSection]) -> None:
        for section in sections:
            self.add_section(section)

    def prepend_sections(self, sections: Iterable[ConfigSection]) -> None:
        """Insert sections ahead of all existing ones, after the header."""
        self.sections[0:0] = list(sections)
        self.trailing_newline = True

    def has_section_with_type(self, name: str, section_type: str) -> bool:
        return any(s.type == section_type for s in self.find_sections_by_name(name))

    def section_names(self) -> list[str]:
        """Distinct section names in document order."""
        seen: dict[str, None] = {}
        for section in self.sections:
            seen.setdefault(section.name, None)
        return list(seen)

    def render(self) -> str:
        return render(self)


def parse(text: str) -> ConfigDocument:
    """Parse INI text into a ConfigDocument.

    Comment and blank lines directly above a header belong to that
    section; those at the end of the file stay in the last section.
    Lines before the first header, whatever they contain, are header.
    """
    doc = ConfigDocument(trailing_newline=text.endswith("\n"))
    if not text:
        doc.trailing_newline = False
        return doc

    lines = text.split("\n")
    if doc.trailing_newline:
        lines.pop()

    current: Optional[ConfigSection] = None
    pending: list[str] = []

    for line in lines:
        match = _SECTION_RE.match(line)
        if match and match.group(1).strip():
            current = ConfigSection(
                name=match.group(1).strip(),
                header=line,
                pre_lines=pending,
            )
            doc.sections.append(current)
            pending = []
            continue

        if current is None:
            doc.header.append(line)
            continue

        prop = None
        if not line.lstrip().startswith(COMMENT_MARKER):
            prop = _PROPERTY_RE.match(line)

        if prop is None:
            pending.append(line)
            continue

        current.entries.extend(RawLine(p) for p in pending)
        pending = []
        current.entries.append(
            Property(prop.group(1), _strip_inline_comment(prop.group(2)), raw=line)
        )

    if current is not None:
        current.entries.extend(RawLine(p) for p in pending)

    return doc


def parse_bytes(data: bytes, encoding: str = "utf-8") -> ConfigDocument:
    try:
        text = data.decode(encoding)
    except UnicodeDecodeError as e:
        raise ConfigParseError(f"Configuration is not valid {encoding}: {e}") from e
    return parse(text)


def render(doc: ConfigDocument) -> str:
    """Render a ConfigDocument back to INI text.

    Sections built in code are separated from preceding content by a
    single blank line unless one is already there.
    """
    out: list[str] = list(doc.header)
    for section in doc.sections:
        if section.pre_lines is None:
            if out and out[-1].strip():
                out.append("")
            if section.comment:
                out.append(section.comment)
        else:
            out.extend(section.pre_lines)
        out.extend(section.render_lines())
    if doc.footer:
        out = _with_lines(out, doc.footer)

    text = "\n".join(out)
    if doc.trailing_newline and out:
        text += "\n"
    return text


def find_sections_by_name(doc: ConfigDocument, name: str) -> list[ConfigSection]:
    return doc.find_sections_by_name(name)


def remove_sections_by_name(doc: ConfigDocument, name: str) -> int:
    return doc.remove_sections_by_name(name)


def add_section(doc: ConfigDocument, section: ConfigSection) -> None:
    doc.add_section(section)


def add_sections(doc: ConfigDocument, sections: Iterable[ConfigSection]) -> None:
    doc.add_sections(sections)


def has_section_with_type(doc: ConfigDocument, name: str, section_type: str) -> bool:
    return doc.has_section_with_type(name, section_type)
