"""Persistence seams.

The pipeline and the chat flow only ever talk to the `Repository`,
`FileStorage` and `SessionStore` protocols. The local implementations below
back the CLI with a JSON file and a folder of uploads.
"""
import io
import json
import logging
import random
import time
import uuid
from pathlib import Path
from typing import Optional, List, Dict, Iterable, Protocol

import yaml
from PIL import Image, UnidentifiedImageError

from .models import (
    ConversationSession, CustomerRef, FieldStaffRef, OrderRef, RawExtractedRecord,
    StoredProduct, FieldKey,
)

logger = logging.getLogger(__name__)


class Repository(Protocol):
    def find_customers_by_code(self, codes: Optional[Iterable[str]] = None) -> List[CustomerRef]: ...

    def find_orders_by_number(self, numbers: Optional[Iterable[str]] = None) -> List[OrderRef]: ...

    def find_field_staff_by_code(self, code: str, ignore_case: bool = False) -> Optional[FieldStaffRef]: ...

    def find_product_by_account_number(self, number: str) -> Optional[StoredProduct]: ...

    def save(self, record: RawExtractedRecord) -> str: ...


class FileStorage(Protocol):
    def store(self, data: bytes, filename: str) -> str: ...


class SessionStore(Protocol):
    def get(self, chat_id: str) -> Optional[ConversationSession]: ...

    def put(self, session: ConversationSession) -> None: ...


class LocalRepository:
    """JSON-file repository; with no path everything stays in memory."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self.customers: List[CustomerRef] = []
        self.orders: List[OrderRef] = []
        self.field_staff: List[FieldStaffRef] = []
        self.products: List[StoredProduct] = []
        if path is not None and path.exists():
            self._load()

    def _load(self):
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        self.customers = [CustomerRef(**c) for c in data.get("customers", [])]
        self.orders = [OrderRef(**o) for o in data.get("orders", [])]
        self.field_staff = [FieldStaffRef(**s) for s in data.get("field_staff", [])]
        self.products = [StoredProduct(**p) for p in data.get("products", [])]

    def flush(self):
        if self.path is None:
            return
        data = {
            "customers": [c.model_dump() for c in self.customers],
            "orders": [o.model_dump() for o in self.orders],
            "field_staff": [s.model_dump() for s in self.field_staff],
            "products": [p.model_dump() for p in self.products],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp.replace(self.path)

    def load_reference(self, data: Dict) -> Dict[str, int]:
        """Merge customers / orders / field_staff lists (YAML-shaped dict) into the store."""
        counts = {}
        for key, model, current, ident in (
            ("customers", CustomerRef, self.customers, "code"),
            ("orders", OrderRef, self.orders, "number"),
            ("field_staff", FieldStaffRef, self.field_staff, "code"),
        ):
            known = {getattr(item, ident) for item in current}
            added = 0
            for raw in data.get(key) or []:
                if isinstance(raw, str):
                    raw = {ident: raw}
                item = model(**raw)
                if getattr(item, ident) in known:
                    continue
                current.append(item)
                known.add(getattr(item, ident))
                added += 1
            counts[key] = added
        self.flush()
        return counts

    def load_reference_file(self, path: Path) -> Dict[str, int]:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return self.load_reference(data)

    # Repository protocol

    def find_customers_by_code(self, codes=None) -> List[CustomerRef]:
        if codes is None:
            return list(self.customers)
        wanted = set(codes)
        return [c for c in self.customers if c.code in wanted]

    def find_orders_by_number(self, numbers=None) -> List[OrderRef]:
        if numbers is None:
            return list(self.orders)
        wanted = set(numbers)
        return [o for o in self.orders if o.number in wanted]

    def find_field_staff_by_code(self, code: str, ignore_case: bool = False) -> Optional[FieldStaffRef]:
        if not code:
            return None
        for staff in self.field_staff:
            if staff.code == code or (ignore_case and staff.code.lower() == code.lower()):
                return staff
        return None

    def find_product_by_account_number(self, number: str) -> Optional[StoredProduct]:
        for product in self.products:
            if product.fields.get(FieldKey.NO_REK.value) == number:
                return product
        return None

    def save(self, record: RawExtractedRecord) -> str:
        product = StoredProduct(
            id=uuid.uuid4().hex[:12],
            fields=record.as_flat_dict(),
            source_file=record.source_file,
            source_chat=record.source_chat,
        )
        self.products.append(product)
        self.flush()
        logger.info("Saved product %s (%d fields)", product.id, len(product.fields))
        return product.id


class LocalFileStorage:
    """Stores uploads under a folder as secure_<ms>_<random>.<ext>."""

    def __init__(self, root: Path):
        self.root = root

    @staticmethod
    def sniff_extension(data: bytes, filename: str) -> str:
        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = (img.format or "").lower()
        except (UnidentifiedImageError, OSError):
            fmt = ""
        if fmt:
            return "jpg" if fmt == "jpeg" else fmt
        suffix = Path(filename or "").suffix.lstrip(".").lower()
        return suffix or "bin"

    def store(self, data: bytes, filename: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        ext = self.sniff_extension(data, filename)
        name = f"secure_{int(time.time() * 1000)}_{random.randint(0, 10**9)}.{ext}"
        target = self.root / name
        target.write_bytes(data)
        logger.debug("Stored %s (%d bytes) as %s", filename, len(data), name)
        return str(target)


class InMemorySessionStore:
    def __init__(self):
        self._sessions: Dict[str, ConversationSession] = {}

    def get(self, chat_id: str) -> Optional[ConversationSession]:
        session = self._sessions.get(chat_id)
        return session.model_copy(deep=True) if session else None

    def put(self, session: ConversationSession) -> None:
        self._sessions[session.chat_id] = session.model_copy(deep=True)


class JsonSessionStore:
    """One JSON file per chat id."""

    def __init__(self, root: Path):
        self.root = root

    def _path(self, chat_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in chat_id)
        return self.root / f"{safe}.json"

    def get(self, chat_id: str) -> Optional[ConversationSession]:
        path = self._path(chat_id)
        if not path.exists():
            return None
        return ConversationSession.model_validate_json(path.read_text(encoding="utf-8"))

    def put(self, session: ConversationSession) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self._path(session.chat_id).write_text(session.model_dump_json(indent=2), encoding="utf-8")
