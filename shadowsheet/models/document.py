from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum


class DocumentKind(str, Enum):
    TALENT = "Talent"
    BOON = "Boon"
    SPELL = "Spell"
    CLASS = "Class"
    ANCESTRY = "Ancestry"
    PATRON = "Patron"
    ROLL_TABLE = "RollTable"
    LANGUAGE = "Language"
    EFFECT = "Effect"
    ITEM = "Item"

    @classmethod
    def parse(cls, value: Any) -> "DocumentKind":
        for kind in cls:
            if str(value).lower() == kind.value.lower():
                return kind
        return cls.ITEM


class ResultKind(str, Enum):
    TEXT = "text"
    DOCUMENT = "document"


class Document(BaseModel):
    id: str
    kind: DocumentKind = DocumentKind.ITEM
    name: str = ""
    img: str = ""
    pack: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)
    effects: List[Any] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_raw(cls, data: dict, pack: str = "") -> "Document":
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            kind=DocumentKind.parse(data.get("type", "Item")),
            name=data.get("name") or "",
            img=data.get("img") or "",
            pack=pack,
            payload=data.get("system") or {},
            effects=data.get("effects") or [],
            raw=data,
        )


class TableResult(BaseModel):
    id: str = ""
    range: Tuple[int, int] = (1, 1)
    kind: ResultKind = ResultKind.TEXT
    text: str = ""
    document_ref: Optional[str] = None
    img: str = ""

    @classmethod
    def from_raw(cls, data: dict) -> "TableResult":
        ref = data.get("documentUuid")
        if not ref and data.get("documentId"):
            collection = data.get("documentCollection") or data.get("collection") or ""
            ref = f"Compendium.{collection}.{data['documentId']}" if collection else data["documentId"]
        raw_range = data.get("range") or [1, 1]
        raw_type = data.get("type", "text")
        is_document = ref is not None and raw_type not in ("text", 0)
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            range=(int(raw_range[0]), int(raw_range[1])),
            kind=ResultKind.DOCUMENT if is_document else ResultKind.TEXT,
            text=data.get("text") or data.get("name") or data.get("description") or "",
            document_ref=ref if is_document else None,
            img=data.get("img") or "",
        )

    def covers(self, total: int) -> bool:
        return self.range[0] <= total <= self.range[1]


class RollTable(BaseModel):
    id: str
    name: str = ""
    img: str = ""
    formula: str = "1d1"
    results: List[TableResult] = Field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Document) -> "RollTable":
        raw_results = doc.raw.get("results") or doc.payload.get("results") or []
        if isinstance(raw_results, dict):
            raw_results = list(raw_results.values())
        return cls(
            id=doc.id,
            name=doc.name,
            img=doc.img,
            formula=doc.raw.get("formula") or doc.payload.get("formula") or "1d1",
            results=[TableResult.from_raw(r) for r in raw_results],
        )

    def results_for(self, total: int) -> List[TableResult]:
        return [r for r in self.results if r.covers(total)]


class TableDraw(BaseModel):
    table: RollTable
    total: int
    results: List[TableResult] = Field(default_factory=list)
