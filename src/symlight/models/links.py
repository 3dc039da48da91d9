"""Location references and the outcome of authorizing them."""

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict


class LocationRef(BaseModel):
    """A file path plus line (and optional column / end line) parsed from text."""

    model_config = ConfigDict(frozen=True)

    path: str
    line: int
    col: int = 1
    end_line: int | None = None

    @property
    def is_range(self) -> bool:
        return self.end_line is not None and self.end_line >= self.line

    def key(self) -> str:
        """Canonical allow-list key: ``path:line`` or ``path:start-end``."""
        if self.is_range:
            return f"{self.path}:{self.line}-{self.end_line}"
        return f"{self.path}:{self.line}"


class ActiveLink(BaseModel):
    """A navigable reference the caller vouched for."""

    kind: Literal["active"] = "active"
    href: str
    display_text: str
    data_attributes: dict[str, str]


class PlainTextLink(BaseModel):
    """A reference degraded to its display text."""

    kind: Literal["plain"] = "plain"
    display_text: str


class SymbolLink(BaseModel):
    """A non-navigating placeholder carrying a symbol for secondary lookup."""

    kind: Literal["symbol"] = "symbol"
    symbol: str
    display_text: str


RenderedLink = Union[ActiveLink, PlainTextLink, SymbolLink]
