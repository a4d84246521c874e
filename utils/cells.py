from enum import Enum
from typing import Any, NamedTuple


class CellKind(str, Enum):
    """Type tag of a coerced spreadsheet cell."""
    EMPTY = "empty"
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"


class CellValue(NamedTuple):
    """
    One coerced record field, ready to be handed to a sheet writer.

    Attributes:
        kind: Type tag of the cell
        value: ``None`` for empty cells, otherwise a str, int, float or bool matching ``kind``
    """
    kind: CellKind
    value: Any = None

    @classmethod
    def string(cls, value: str) -> "CellValue":
        return cls(CellKind.STRING, value)

    @classmethod
    def integer(cls, value: int) -> "CellValue":
        return cls(CellKind.INTEGER, value)

    @classmethod
    def floating(cls, value: float) -> "CellValue":
        return cls(CellKind.FLOAT, value)

    @classmethod
    def boolean(cls, value: bool) -> "CellValue":
        return cls(CellKind.BOOLEAN, value)


EMPTY_CELL = CellValue(CellKind.EMPTY)
