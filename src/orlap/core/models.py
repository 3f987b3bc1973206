import re
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict

class FieldKey(str, Enum):
    # Order / assignment
    NO_ORDER = "noOrder"
    CODE_AGEN = "codeAgen"
    CUSTOMER = "customer"
    BANK = "bank"
    GRADE = "grade"
    KCP = "kcp"
    JENIS_REKENING = "jenisRekening"

    # Identity
    NIK = "nik"
    NAMA = "nama"
    NAMA_IBU_KANDUNG = "namaIbuKandung"
    TEMPAT_TANGGAL_LAHIR = "tempatTanggalLahir"

    # Account / card
    NO_REK = "noRek"
    NO_ATM = "noAtm"
    VALID_THRU = "validThru"
    PIN_ATM = "pinAtm"
    EXPIRED = "expired"

    # Contact
    NO_HP = "noHp"
    EMAIL = "email"
    PASS_EMAIL = "passEmail"

    # Generic channels
    MOBILE_USER = "mobileUser"
    MOBILE_PASSWORD = "mobilePassword"
    MOBILE_PIN = "mobilePin"
    IB_USER = "ibUser"
    IB_PASSWORD = "ibPassword"
    IB_PIN = "ibPin"

    # BCA
    MYBCA_USER = "myBCAUser"
    MYBCA_PASSWORD = "myBCAPassword"
    MYBCA_PIN = "myBCAPin"
    KODE_AKSES = "kodeAkses"
    PIN_MBCA = "pinMBca"

    # BRI
    BRIMO_USER = "brimoUser"
    BRIMO_PASSWORD = "brimoPassword"
    BRIMO_PIN = "brimoPin"
    BRI_MERCHANT_USER = "briMerchantUser"
    BRI_MERCHANT_PASSWORD = "briMerchantPassword"

    # OCBC
    OCBC_NYALA_USER = "ocbcNyalaUser"
    OCBC_NYALA_PASSWORD = "ocbcNyalaPassword"
    OCBC_NYALA_PIN = "ocbcNyalaPin"

    # BNI
    PIN_WONDR = "pinWondr"
    PASS_WONDR = "passWondr"

    # Photos
    UPLOAD_FOTO_ID = "uploadFotoId"
    UPLOAD_FOTO_SELFIE = "uploadFotoSelfie"

    @classmethod
    def lookup(cls, value: str) -> Optional["FieldKey"]:
        """Return the key whose value is exactly `value`, or None."""
        try:
            return cls(value)
        except ValueError:
            return None

class MatchPolicy(str, Enum):
    LAST = "last"
    FIRST = "first"

class DocumentFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    XLSX = "xlsx"
    XLS = "xls"
    CSV = "csv"

class ExtractionStatus(str, Enum):
    OK = "ok"              # structured extraction produced text
    DEGRADED = "degraded"  # fallback heuristic or placeholder text
    EMPTY = "empty"        # document readable but carries no text
    FAILED = "failed"      # document could not be read at all

class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_AUTH_CODE = "awaiting_auth_code"
    COLLECTING = "collecting"

class Config(BaseModel):
    lang: Optional[str] = None # id or en
    default_bank: Optional[str] = None
    min_block_length: int = 20
    match_policy: MatchPolicy = MatchPolicy.LAST
    max_file_size_mb: Optional[int] = None
    required_fields: Optional[List[FieldKey]] = None
    expired_default: Optional[str] = None

class ManifestEntry(BaseModel):
    ts: str = Field(default_factory=lambda: datetime.now().isoformat())
    event: str  # ingest, extract, import
    hash: str
    src: str
    kind: str = "file"
    status: str
    details: Optional[Dict[str, Any]] = None

class RawExtractedRecord(BaseModel):
    """A sparse field map plus provenance.

    A key that was never matched is absent from `fields`; a key matched with
    an empty value is present with "". `extras` keeps spreadsheet columns
    that map to no known field.
    """
    fields: Dict[FieldKey, str] = Field(default_factory=dict)
    extras: Dict[str, str] = Field(default_factory=dict)
    source_file: Optional[str] = None
    source_chat: Optional[str] = None
    block_index: Optional[int] = None

    def get(self, key: FieldKey, default: Optional[str] = None) -> Optional[str]:
        return self.fields.get(key, default)

    def has(self, key: FieldKey) -> bool:
        return key in self.fields

    def with_fields(self, **updates: str) -> "RawExtractedRecord":
        """Copy with some fields replaced; keyword names are FieldKey values."""
        fields = dict(self.fields)
        for name, value in updates.items():
            fields[FieldKey(name)] = value
        return self.model_copy(update={"fields": fields}, deep=True)

    def as_flat_dict(self) -> Dict[str, str]:
        flat = {key.value: value for key, value in self.fields.items()}
        flat.update(self.extras)
        return flat

class RecordError(BaseModel):
    record_index: int
    field_errors: List[str]
    record: RawExtractedRecord

class ValidationSummary(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0

class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid_records: List[RawExtractedRecord] = Field(default_factory=list)
    errors: List[RecordError] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)

class ReconciliationOutcome(BaseModel):
    customer_resolved: bool = False
    order_resolved: bool = False
    field_staff_resolved: bool = False
    is_duplicate: bool = False
    corrected_record: RawExtractedRecord

class ReconciliationReport(BaseModel):
    records: List[RawExtractedRecord] = Field(default_factory=list)
    outcomes: List[ReconciliationOutcome] = Field(default_factory=list)
    missing_customers: List[str] = Field(default_factory=list)
    missing_field_staff: List[str] = Field(default_factory=list)
    missing_orders: List[str] = Field(default_factory=list)

    @property
    def duplicates(self) -> List[RawExtractedRecord]:
        return [o.corrected_record for o in self.outcomes if o.is_duplicate]

    @property
    def is_all_valid(self) -> bool:
        return not (
            self.missing_customers
            or self.missing_field_staff
            or self.missing_orders
            or self.duplicates
        )

class ExtractedImage(BaseModel):
    record_index: int
    field: FieldKey
    content: bytes
    content_type: str = "image/png"

class DocumentText(BaseModel):
    """Uniform adapter output for every supported format."""
    success: bool
    status: ExtractionStatus
    format: DocumentFormat
    text: str = ""
    error: Optional[str] = None
    table_rows: Optional[List[List[str]]] = None
    images: List[ExtractedImage] = Field(default_factory=list)

    @property
    def has_table(self) -> bool:
        return bool(self.table_rows) and len(self.table_rows) > 1

class FileReport(BaseModel):
    filename: str
    format: Optional[DocumentFormat] = None
    status: str  # extracted, degraded, empty, error
    records: int = 0
    error: Optional[str] = None

class SaveReport(BaseModel):
    saved_ids: List[str] = Field(default_factory=list)
    skipped_duplicates: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)

class BatchResult(BaseModel):
    files: List[FileReport] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    records: List[RawExtractedRecord] = Field(default_factory=list)
    validation: ValidationResult = Field(default_factory=ValidationResult)
    reconciliation: ReconciliationReport = Field(default_factory=ReconciliationReport)
    bank_warnings: Dict[int, List[str]] = Field(default_factory=dict)

class Attachment(BaseModel):
    filename: str
    content: bytes
    mime_type: Optional[str] = None

# "/skip", "/start@somebot", "/Batal now"; "/ORD/1" or "/x9!" are answers
COMMAND_RE = re.compile(r"^/([A-Za-z]+)(?:@\w+)?(?:\s|$)")

class InboundMessage(BaseModel):
    chat_id: str
    text: Optional[str] = None
    attachment: Optional[Attachment] = None
    command: Optional[str] = None

    def resolved_command(self) -> Optional[str]:
        """Explicit command, or a leading-slash text such as '/skip'."""
        if self.command:
            return self.command.strip().lstrip("/").lower() or None
        match = COMMAND_RE.match((self.text or "").strip())
        return match.group(1).lower() if match else None

class OutboundReply(BaseModel):
    chat_id: str
    text: str
    options: Optional[List[str]] = None

class ConversationSession(BaseModel):
    chat_id: str
    state: SessionState = SessionState.IDLE
    staff_code: Optional[str] = None
    current_step_index: int = 0
    bank_selection: Optional[str] = None
    collected_fields: Dict[FieldKey, str] = Field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return self.staff_code is not None

# Reference data held by the persistence collaborator

class CustomerRef(BaseModel):
    code: str
    display_name: Optional[str] = None

class OrderRef(BaseModel):
    number: str
    customer: Optional[str] = None

class FieldStaffRef(BaseModel):
    code: str
    name: Optional[str] = None

class StoredProduct(BaseModel):
    id: str
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    fields: Dict[str, str] = Field(default_factory=dict)
    source_file: Optional[str] = None
    source_chat: Optional[str] = None
