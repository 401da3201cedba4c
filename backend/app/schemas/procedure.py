"""
LoveCakes Backend — Stored Procedure Result Types
===================================================

What:  The selector a caller passes to the gateway (ExpectedReturn) and the
       tagged union the gateway returns (InvocationResult).
How:   Each result shape is its own frozen Pydantic model with a literal
       `kind` discriminator, so callers branch on the type (or `kind`) and
       cannot mistake a single row for a list of result sets.

Shapes:
    ExpectedReturn.NONE   → NoResult          data: None
    ExpectedReturn.SINGLE → SingleRow         data: {"id": 42, ...} | None
    ExpectedReturn.MULTI  → ResultSets        data: [[{...}, ...], [...]]
    ExpectedReturn.MULTI  → NamedResultSets   data: {"items": [...], "totals": [...]}
      (+ result_set_names)

Example:
    result = await gateway.invoke("GetProductById", {"id": 42}, ExpectedReturn.SINGLE)
    match result:
        case SingleRow(row=None):
            raise NotFoundError(resource="product", resource_id="42")
        case SingleRow(row=row):
            return row
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Row = Dict[str, Any]
RecordSet = List[Row]


class ExpectedReturn(str, Enum):
    """What the caller asserts the procedure returns. Not verified against the procedure."""

    NONE = "None"
    SINGLE = "Single"
    MULTI = "Multi"


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class NoResult(_Result):
    """ExpectedReturn.NONE: every row the procedure produced is discarded."""

    kind: Literal["none"] = "none"

    @property
    def data(self) -> None:
        return None


class SingleRow(_Result):
    """ExpectedReturn.SINGLE: first row of the first result set, or None when it is empty."""

    kind: Literal["single"] = "single"
    row: Optional[Row] = None

    @property
    def data(self) -> Optional[Row]:
        return self.row


class ResultSets(_Result):
    """ExpectedReturn.MULTI without names: every result set, in order."""

    kind: Literal["multi"] = "multi"
    result_sets: List[RecordSet] = Field(default_factory=list)

    @property
    def data(self) -> List[RecordSet]:
        return self.result_sets


class NamedResultSets(_Result):
    """ExpectedReturn.MULTI with names: result sets zipped positionally with the names."""

    kind: Literal["named"] = "named"
    result_sets: Dict[str, RecordSet] = Field(default_factory=dict)

    @property
    def data(self) -> Dict[str, RecordSet]:
        return self.result_sets


InvocationResult = Annotated[
    Union[NoResult, SingleRow, ResultSets, NamedResultSets],
    Field(discriminator="kind"),
]


class CreateObjectResult(BaseModel):
    """
    What:  The row returned by create-style procedures.
    How:   Procedures select `id` and `dateCreated`; both spellings are accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(description="Identifier of the created record")
    date_created: datetime = Field(
        alias="dateCreated",
        description="Creation timestamp reported by the database",
    )

    @classmethod
    def from_result(cls, result: SingleRow) -> Optional["CreateObjectResult"]:
        """Parse a SingleRow, returning None when the procedure produced no row."""
        if result.row is None:
            return None
        return cls.model_validate(result.row)
