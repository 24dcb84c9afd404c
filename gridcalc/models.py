from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

class Column(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str = ""

class Cell(BaseModel):
    value: Optional[str] = None
    formula: Optional[str] = None  # starts with "="; value/error are outputs when set
    error: Optional[str] = None

    @field_validator("value", "formula", "error", mode="before")
    @classmethod
    def _stringify(cls, v):
        # grid clients send bare numbers and booleans for literal cells
        if isinstance(v, bool):
            return "TRUE" if v else "FALSE"
        if isinstance(v, (int, float)):
            return str(v)
        return v

class TableData(BaseModel):
    rows: int = Field(default=0, ge=0)
    columns: Dict[str, Column] = Field(default_factory=dict)
    data: Dict[str, Cell]

class EvaluateResponse(BaseModel):
    message: str = "Evaluation received"
    table: TableData
