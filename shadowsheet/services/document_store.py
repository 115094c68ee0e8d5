"""
Read-only index of the bundled rule content (classes, talents, spells, roll
tables, ...). Construct once, ``await initialize()`` once, then query.
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..config import settings
from ..models.document import Document, DocumentKind, RollTable, TableDraw
from ..utils.logger import logger
from .dice_roller import Roll


class DocumentNotFoundError(LookupError):
    def __init__(self, doc_id: str, what: str = "Document"):
        super().__init__(f"{what} not found: {doc_id}")
        self.doc_id = doc_id


class DocumentStore:
    def __init__(
        self,
        source: Union[str, Path, Iterable[dict], None] = None,
        system_id: Optional[str] = None,
    ):
        self.source = source if source is not None else settings.PACKS_DIR
        self.system_id = system_id or settings.SYSTEM_ID
        self._index: Dict[str, Document] = {}
        self._init_task: Optional[asyncio.Task] = None
        self._initialized = False
        self.scan_count = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self):
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await self._init_task

    async def _initialize(self):
        self.scan_count += 1
        if isinstance(self.source, (str, Path)):
            entries = await asyncio.to_thread(self._scan_directory, Path(self.source))
        else:
            entries = [(raw.get("_pack", ""), raw) for raw in self.source]

        for pack, raw in entries:
            self._add(raw, pack)
        self._initialized = True
        logger.info(f"DocumentStore indexed {len(self.get_all_documents())} documents ({len(self._index)} keys)")

    def _scan_directory(self, packs_dir: Path) -> List[tuple]:
        if not packs_dir.exists():
            logger.warning(f"Packs directory not found: {packs_dir}")
            return []

        entries = []
        for root, _dirs, files in os.walk(packs_dir):
            pack = Path(root).name.replace(".db", "")
            for name in sorted(files):
                if not name.endswith(".json"):
                    continue
                path = Path(root) / name
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    logger.error(f"Failed to parse {path}: {e}")
                    continue
                for raw in data if isinstance(data, list) else [data]:
                    entries.append((pack, raw))
        return entries

    def _add(self, raw: dict, pack: str):
        doc = Document.from_raw(raw, pack=pack)
        if not doc.id:
            logger.debug(f"Skipping document without id in pack '{pack}': {doc.name}")
            return

        keys = [doc.id]
        if pack:
            doc_type = {
                DocumentKind.ROLL_TABLE: "RollTable",
            }.get(doc.kind, "Actor" if raw.get("type") == "Actor" else "Item")
            keys.append(f"Compendium.{self.system_id}.{pack}.{doc.id}")
            keys.append(f"Compendium.{self.system_id}.{pack}.{doc_type}.{doc.id}")
        for key in keys:
            self._index[key] = doc

    def _require_initialized(self):
        if not self._initialized:
            raise RuntimeError("DocumentStore.initialize() has not completed")

    # --- Queries ---

    def get_document(self, doc_id: str) -> Optional[Document]:
        self._require_initialized()
        if not doc_id:
            return None
        doc = self._index.get(doc_id)
        if doc is None and "." in doc_id:
            # Tolerate references from another system prefix or pack layout
            doc = self._index.get(doc_id.rsplit(".", 1)[-1])
        return doc

    def require_document(self, doc_id: str) -> Document:
        doc = self.get_document(doc_id)
        if doc is None:
            raise DocumentNotFoundError(doc_id)
        return doc

    def get_all_documents(self) -> List[Document]:
        self._require_initialized()
        unique: Dict[int, Document] = {}
        for doc in self._index.values():
            unique.setdefault(id(doc), doc)
        return list(unique.values())

    def get_index(self) -> Dict[str, str]:
        self._require_initialized()
        return {key: doc.name for key, doc in self._index.items()}

    def find_by_name(self, name: str, kind: Optional[DocumentKind] = None) -> Optional[Document]:
        target = name.strip().lower()
        for doc in self.get_all_documents():
            if doc.name.lower() == target and (kind is None or doc.kind == kind):
                return doc
        return None

    def get_spells_by_source(self, class_name: str) -> List[Document]:
        class_doc = self.find_by_name(class_name, DocumentKind.CLASS)
        if class_doc is None:
            logger.warning(f"No class named '{class_name}' in the document store")
            return []

        spells = []
        for doc in self.get_all_documents():
            if doc.kind != DocumentKind.SPELL:
                continue
            refs = doc.payload.get("class") or []
            if isinstance(refs, str):
                refs = [refs]
            if any(self.get_document(ref) is class_doc for ref in refs):
                spells.append(doc)
        return spells

    # --- Roll tables ---

    def get_table(self, table_id: str) -> RollTable:
        doc = self.get_document(table_id)
        if doc is None or doc.kind != DocumentKind.ROLL_TABLE:
            raise DocumentNotFoundError(table_id, "Table")
        return RollTable.from_document(doc)

    def list_tables(self) -> List[Dict[str, str]]:
        return [
            {"id": doc.id, "name": doc.name}
            for doc in self.get_all_documents()
            if doc.kind == DocumentKind.ROLL_TABLE
        ]

    def draw(self, table_id: str, roll_override: Optional[int] = None, rng=None) -> TableDraw:
        table = self.get_table(table_id)
        if roll_override is not None:
            total = int(roll_override)
        else:
            total = int(Roll(table.formula, rng=rng).evaluate().total)
        results = table.results_for(total)
        logger.info(f"Drew {total} on '{table.name}' ({len(results)} results)")
        return TableDraw(table=table, total=total, results=results)

    def get_result_pool(self, table_id: str, result_id: str) -> TableDraw:
        table = self.get_table(table_id)
        target = next((r for r in table.results if r.id == result_id), None)
        if target is None:
            raise DocumentNotFoundError(result_id, "Result")
        pool = [r for r in table.results if r.range == target.range]
        return TableDraw(table=table, total=target.range[0], results=pool)

    def copy_document(self, doc_id: str) -> Optional[Document]:
        """A deep copy of a document, safe for callers to mutate."""
        doc = self.get_document(doc_id)
        return doc.model_copy(deep=True) if doc is not None else None
