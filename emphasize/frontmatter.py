"""
Frontmatter parsing for markdown articles.

An article file starts with a YAML block fenced by `---` lines:

    ---
    title: Hello
    date: 2024-01-02
    tags: [rust, python]
    draft: true
    ---
    Body text...

Leading blank lines and indentation before the opening fence are tolerated.
"""
from datetime import date
from typing import List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from emphasize.errors import FrontMatterError

FENCE = "---"


class FrontMatter(BaseModel):
    title: str
    date: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    template: Optional[str] = None
    draft: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def date_as_text(cls, value):
        # YAML turns 2024-01-02 into a date object
        if isinstance(value, date):
            return value.isoformat()
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def tags_as_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


def _split(name: str, text: str) -> Tuple[str, int]:
    """Return the raw YAML payload and the offset where the body starts."""
    start = len(text) - len(text.lstrip(" \t\r\n"))
    if not text.startswith(FENCE, start):
        raise FrontMatterError(name, "Start of frontmatter not found")

    opening_end = text.find("\n", start)
    if opening_end == -1:
        raise FrontMatterError(name, "EOF while parsing frontmatter")
    if text[start:opening_end].rstrip() != FENCE:
        raise FrontMatterError(name, "Malformed frontmatter marker")

    payload_start = pos = opening_end + 1
    while pos <= len(text):
        line_end = text.find("\n", pos)
        line = text[pos:] if line_end == -1 else text[pos:line_end]
        if line.rstrip() == FENCE:
            offset = len(text) if line_end == -1 else line_end + 1
            return text[payload_start:pos], offset
        if line_end == -1:
            break
        pos = line_end + 1

    raise FrontMatterError(name, "EOF while parsing frontmatter")


def parse_frontmatter(name: str, text: str) -> Tuple[FrontMatter, int]:
    """
    Parse the frontmatter block of an article.

    Args:
        name: file name, used in error messages
        text: full file contents

    Returns:
        the parsed FrontMatter and the offset of the first body character
    """
    payload, offset = _split(name, text)

    try:
        data = yaml.safe_load(payload)
    except yaml.YAMLError as e:
        raise FrontMatterError(name, f"Invalid YAML ({e})") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontMatterError(name, "Frontmatter must be a mapping")

    try:
        return FrontMatter.model_validate(data), offset
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise FrontMatterError(name, f"Invalid frontmatter fields ({fields})") from e
