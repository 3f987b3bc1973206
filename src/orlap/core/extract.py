import logging
import re
from datetime import datetime
from typing import Optional, List, Dict, Tuple, Pattern, Sequence

from .models import FieldKey, MatchPolicy, RawExtractedRecord
from .normalize import normalize, collapse_whitespace, clean_numeric, normalize_header
from . import banks
from .banks import BankSchema

logger = logging.getLogger(__name__)

F = FieldKey

# Each record starts at an order-number marker ("No ORDER", "No.ORDER", "no . order")
BLOCK_MARKER = re.compile(r"(?=No\s*\.?\s*ORDER)", re.IGNORECASE)

# Value shapes
TEXT = r"(?P<value>[^\n:]+?)(?=<END>)"
TOKEN = r"[(\[]?(?P<value>[^\s()\[\]]+)[)\]]?"
SECRET = r"(?P<value>\S+)"
EMAIL = r"(?P<value>[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,})"
DATE = r"(?P<value>\d{1,4}\s*[/\-.]\s*\d{1,2}(?:\s*[/\-.]\s*\d{1,4})?)"


def digits(low: int, high: int) -> str:
    """Digit run of low..high digits, tolerating single spaces or hyphens between them."""
    return r"(?P<value>\d(?:[ \-]?\d){%d,%d})" % (low - 1, high - 1)


PIN = digits(4, 8)

NAME_FIELDS = {F.NAMA, F.NAMA_IBU_KANDUNG, F.TEMPAT_TANGGAL_LAHIR, F.KCP,
               F.CUSTOMER, F.BANK, F.GRADE, F.JENIS_REKENING}
NUMERIC_FIELDS = {F.NO_HP, F.NIK, F.NO_REK, F.NO_ATM, F.PIN_ATM}
PIN_FIELDS = {F.PIN_ATM, F.MOBILE_PIN, F.IB_PIN, F.MYBCA_PIN, F.PIN_MBCA,
              F.BRIMO_PIN, F.OCBC_NYALA_PIN, F.PIN_WONDR}

EXPIRY_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d-%m-%Y")

# (field, label pattern, value pattern, secondary field)
# Ordered: a later rule for the same field overrides an earlier one.
COMMON_RULES: List[Tuple[FieldKey, str, str, Optional[FieldKey]]] = [
    (F.NO_ORDER, r"No\s*\.?\s*ORDER|Nomor\s*Order|Order\s*No", TOKEN, None),
    (F.CODE_AGEN, r"Code\s*Agen|Kode\s*Agen|Kode\s*Orlap|Code\s*Orlap", TOKEN, None),
    (F.CUSTOMER, r"(?:Nama\s*)?(?:Customer|Pelanggan)", r"[(\[]?" + TEXT, None),
    (F.BANK, r"(?<!-)(?<!M )(?<!Cabang )(?:Nama\s*)?Bank",
     r"(?P<value>[^\n:(]+?)(?:\s*\((?:Grade\s*)?(?P<secondary>[^)\n]+?)\))?(?=<END>)", F.GRADE),
    (F.GRADE, r"Grade", r"(?P<value>[^\n:)]+?)(?=\s*\)|<END>)", None),
    (F.KCP, r"KCP|Kantor\s*Cabang|Cabang\s*Bank", TEXT, None),
    (F.JENIS_REKENING, r"Jenis\s*Rekening|Tipe\s*Rekening", TEXT, None),
    (F.NIK, r"NIK|No\.?\s*KTP|Nomor\s*Induk\s*Kependudukan", digits(14, 20), None),
    (F.NAMA, r"Nama(?:\s*Lengkap|\s*Sesuai\s*KTP)?(?!\s*(?:Ibu|Bank|Customer|Pelanggan))", TEXT, None),
    (F.NAMA_IBU_KANDUNG, r"(?:Nama\s*)?Ibu\s*Kandung", TEXT, None),
    (F.TEMPAT_TANGGAL_LAHIR,
     r"(?:Tempat|Tmpt|Tpt)\s*[/,&]?\s*(?:Tanggal|Tgl)\.?\s*Lahir|(?:Tanggal|Tgl)\.?\s*Lahir"
     r"|Tempat\s*Lahir|TTL", TEXT, None),
    (F.NO_REK, r"No\.?\s*Rek(?:ening)?\.?|Nomor\s*Rek(?:ening)?", digits(8, 25), None),
    (F.NO_ATM, r"No\.?\s*ATM|Nomor\s*ATM|No\.?\s*Kartu(?:\s*Debit)?|Nomor\s*Kartu(?:\s*Debit)?",
     digits(12, 20) + r"(?:\s*\((?P<secondary>[0-9/\s\-]+?)\))?", F.VALID_THRU),
    (F.VALID_THRU, r"Valid\s*(?:Thru|Kartu|s\.?d\.?)|Masa\s*Berlaku", DATE, None),
    (F.NO_HP, r"No\.?\s*(?:HP|Handphone|Telp|Telepon|WA)|Nomor\s*(?:HP|Handphone|Telepon)",
     r"(?P<value>\+?\d(?:[ \-]?\d){6,14})", None),
    (F.PIN_ATM, r"PIN\s*ATM|PIN\s*Kartu", PIN, None),
    (F.EXPIRED, r"(?:Tanggal\s*|Tgl\.?\s*)?Expired", TEXT, None),
    (F.EMAIL, r"(?<!Pass )(?<!Password )(?:Alamat\s*)?E-?mail", EMAIL, None),
    (F.PASS_EMAIL, r"Pass(?:word)?\s*E-?mail|Kata\s*Sandi\s*E-?mail", SECRET, None),

    # Internet banking
    (F.IB_USER, r"User\s*I[\s\-]?Banking|User\s*Internet\s*Banking|User\s*IB|IB\s*User"
     r"|(?<!Pass )(?<!Password )(?<!Pin )I[\s\-]?Banking", SECRET, None),
    (F.IB_PASSWORD, r"Pass(?:word)?\s*(?:I[\s\-]?Banking|Internet\s*Banking|IB)", SECRET, None),
    (F.IB_PIN, r"PIN\s*(?:I[\s\-]?Banking|Internet\s*Banking|IB)", PIN, None),

    # Mobile banking (Livin, Wondr and unbranded apps)
    (F.MOBILE_USER, r"(?:User|Id|Login|Akun)\s*(?:Mobile|M[\s\-]?Banking|M[\s\-]?Bank|Livin|Wondr)",
     SECRET, None),
    (F.MOBILE_PASSWORD, r"(?:Pass(?:word)?|Kata\s*Sandi)\s*(?:Mobile|M[\s\-]?Banking|M[\s\-]?Bank|Livin)",
     SECRET, None),
    (F.MOBILE_PIN, r"PIN\s*(?:Mobile|M[\s\-]?Banking|M[\s\-]?Bank|Livin)", PIN, None),
    (F.PIN_WONDR, r"PIN\s*Wondr", PIN, None),
    (F.PASS_WONDR, r"Pass(?:word)?\s*Wondr", SECRET, None),

    # BCA
    (F.MYBCA_USER, r"User\s*my\s*BCA|(?<!Pass )(?<!Password )BCA[\s\-]?ID", SECRET, None),
    (F.MYBCA_PASSWORD, r"Pass(?:word)?\s*(?:BCA[\s\-]?ID|my\s*BCA)", SECRET, None),
    (F.MYBCA_PIN, r"PIN\s*Transaksi|PIN\s*my\s*BCA", PIN, None),
    (F.KODE_AKSES, r"Kode\s*Akses(?:\s*M[\s\-]?BCA)?", SECRET, None),
    (F.PIN_MBCA, r"PIN\s*M[\s\-]?BCA", PIN, None),

    # BRI
    (F.BRIMO_USER, r"(?:User|Id)\s*BRImo|BRImo\s*(?:User|Id)", SECRET, None),
    (F.BRIMO_PASSWORD, r"Pass(?:word)?\s*BRImo|BRImo\s*Pass(?:word)?", SECRET, None),
    (F.BRIMO_PIN, r"PIN\s*BRImo|BRImo\s*PIN", PIN, None),
    (F.BRI_MERCHANT_USER, r"(?:User|Id)\s*(?:BRI\s*)?Merchant(?:\s*QRIS)?|Merchant\s*(?:User|Id)",
     SECRET, None),
    (F.BRI_MERCHANT_PASSWORD,
     r"(?:Pass(?:word)?|Kata\s*Sandi)\s*(?:BRI\s*)?Merchant(?:\s*QRIS)?|Merchant\s*Pass(?:word)?",
     SECRET, None),

    # OCBC Nyala
    (F.OCBC_NYALA_USER, r"(?:User|Id)\s*Nyala|Nyala\s*(?:User|Id)", SECRET, None),
    (F.OCBC_NYALA_PASSWORD, r"Pass(?:word)?\s*Nyala|Nyala\s*Pass(?:word)?", SECRET, None),
    (F.OCBC_NYALA_PIN, r"PIN\s*Nyala|Nyala\s*PIN", PIN, None),
]

# A free-text value ends at the next "Label:" on the same line or at end of line.
ANY_LABEL = "|".join(f"(?:{label})" for _, label, _, _ in COMMON_RULES)
END = r"\s+(?:%s)\s*[:=]|[ \t]*(?:\r?\n|$)|\s+\S+\s*:" % ANY_LABEL

LABEL_OPEN = r"(?<![A-Za-z])(?:"
LABEL_CLOSE = r")(?![A-Za-z])[ \t]*[:=]?[ \t]*"


class Rule:
    __slots__ = ("field", "pattern", "secondary")

    def __init__(self, field: FieldKey, pattern: Pattern, secondary: Optional[FieldKey] = None):
        self.field = field
        self.pattern = pattern
        self.secondary = secondary

    def __repr__(self):
        return f"Rule({self.field.value})"


def _compile_common(field, label, value, secondary) -> Rule:
    body = LABEL_OPEN + label + LABEL_CLOSE + "(?:" + value.replace("<END>", END) + ")"
    return Rule(field, re.compile(body, re.IGNORECASE), secondary)


def _compile_alias(alias: str, field: FieldKey) -> Rule:
    words = [re.escape(w) for w in re.split(r"[\s\-]+", alias) if w]
    label = r"[\s\-]*".join(words)
    value = PIN if field in PIN_FIELDS else SECRET
    # Dialect labels are bare words like "user" or "pin", so they only count at the
    # start of a line or a tab-separated cell, and need an explicit colon.
    body = r"(?:^|(?<=\t))[ \t]*(?<![A-Za-z])" + label + r"[ \t]*:[ \t]*" + value
    return Rule(field, re.compile(body, re.IGNORECASE | re.MULTILINE))


COMMON: Tuple[Rule, ...] = tuple(_compile_common(*spec) for spec in COMMON_RULES)

_dialect_cache: Dict[str, Tuple[Rule, ...]] = {}


def dialect_rules(schema: BankSchema) -> Tuple[Rule, ...]:
    """Rules compiled from a bank's alias table, shortest alias first so the more specific label wins."""
    if schema.code not in _dialect_cache:
        aliases = sorted(schema.field_aliases.items(), key=lambda kv: len(kv[0]))
        _dialect_cache[schema.code] = tuple(_compile_alias(a, f) for a, f in aliases)
    return _dialect_cache[schema.code]


def split_blocks(text: str, min_length: int = 20) -> List[str]:
    """Cut text at order-number markers; pieces of min_length chars or fewer are noise."""
    return [b for b in BLOCK_MARKER.split(text) if b and len(b) > min_length]


def reparse_expiry(value: str) -> str:
    """ISO date for any supported layout; the raw value when none fits."""
    raw = value.strip()
    for fmt in EXPIRY_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    return raw


def cleanup(fields: Dict[FieldKey, str]) -> Dict[FieldKey, str]:
    cleaned = {}
    for key, value in fields.items():
        value = value.strip()
        if key in NAME_FIELDS:
            value = collapse_whitespace(value)
        if key in NUMERIC_FIELDS or key in PIN_FIELDS:
            value = clean_numeric(value)
        if key == F.CUSTOMER:
            value = value.strip("()[] ")
        elif key == F.VALID_THRU:
            value = re.sub(r"\s+", "", value)
        elif key == F.EXPIRED and value:
            value = reparse_expiry(value)
        cleaned[key] = value
    return cleaned


class Extractor:
    """Free-text field extraction over order-number blocks."""

    def __init__(self, match_policy: MatchPolicy = MatchPolicy.LAST, min_block_length: int = 20,
                 default_bank: Optional[str] = None, dialects: bool = True):
        self.match_policy = MatchPolicy(match_policy)
        self.min_block_length = min_block_length
        self.default_bank = default_bank
        self.dialects = dialects

    @classmethod
    def from_settings(cls) -> "Extractor":
        from .config import settings
        return cls(
            match_policy=settings.match_policy,
            min_block_length=settings.min_block_length,
            default_bank=settings.default_bank,
        )

    def _pick(self, matches: List[re.Match]) -> Optional[re.Match]:
        if not matches:
            return None
        return matches[-1] if self.match_policy == MatchPolicy.LAST else matches[0]

    def _apply(self, rules: Sequence[Rule], block: str, fields: Dict[FieldKey, str],
               pending: List[Tuple[FieldKey, str]]) -> None:
        for rule in rules:
            match = self._pick(list(rule.pattern.finditer(block)))
            if match is None:
                continue
            value = (match.group("value") or "").strip()
            if not value:
                continue
            fields[rule.field] = value
            if rule.secondary is not None:
                secondary = match.group("secondary")
                if secondary and secondary.strip():
                    pending.append((rule.secondary, secondary.strip()))

    def extract_block(self, block: str) -> Dict[FieldKey, str]:
        fields: Dict[FieldKey, str] = {}
        pending: List[Tuple[FieldKey, str]] = []
        self._apply(COMMON, block, fields, pending)

        if self.dialects:
            schema = banks.resolve(fields.get(F.BANK), self.default_bank)
            self._apply(dialect_rules(schema), block, fields, pending)

        # Combined captures like "BCA (Grade A)" only fill fields nothing else matched
        for key, value in pending:
            if key not in fields:
                fields[key] = value
        return cleanup(fields)

    def extract_records(self, text: str, source_file: Optional[str] = None) -> List[RawExtractedRecord]:
        text = normalize(text)
        blocks = split_blocks(text, self.min_block_length)
        logger.debug("Parsing %d chars, %d candidate blocks", len(text), len(blocks))

        records = []
        for block in blocks:
            fields = self.extract_block(block)
            # A block with neither an order number nor a NIK is header or footer text
            if F.NO_ORDER not in fields and F.NIK not in fields:
                continue
            records.append(RawExtractedRecord(
                fields=fields, source_file=source_file, block_index=len(records)
            ))
        return records


def extract_records(text: str, source_file: Optional[str] = None,
                    extractor: Optional[Extractor] = None) -> List[RawExtractedRecord]:
    return (extractor or Extractor.from_settings()).extract_records(text, source_file)


# Spreadsheet / Word table headers, already passed through normalize_header
HEADER_ALIASES: Dict[str, FieldKey] = {
    "no order": F.NO_ORDER, "nomor order": F.NO_ORDER, "order no": F.NO_ORDER,
    "kode agen": F.CODE_AGEN, "code agen": F.CODE_AGEN, "kode orlap": F.CODE_AGEN,
    "code orlap": F.CODE_AGEN,
    "customer": F.CUSTOMER, "pelanggan": F.CUSTOMER, "nama customer": F.CUSTOMER,
    "nama pelanggan": F.CUSTOMER,
    "bank": F.BANK, "nama bank": F.BANK, "jenis bank": F.BANK,
    "grade": F.GRADE, "kcp": F.KCP, "kantor cabang": F.KCP, "cabang bank": F.KCP,
    "jenis rekening": F.JENIS_REKENING, "tipe rekening": F.JENIS_REKENING,
    "nik": F.NIK, "nomor induk kependudukan": F.NIK, "no ktp": F.NIK,
    "nama": F.NAMA, "nama lengkap": F.NAMA, "nama sesuai ktp": F.NAMA,
    "nama ibu kandung": F.NAMA_IBU_KANDUNG, "ibu kandung": F.NAMA_IBU_KANDUNG,
    "tempat tanggal lahir": F.TEMPAT_TANGGAL_LAHIR, "tempat tgl lahir": F.TEMPAT_TANGGAL_LAHIR,
    "ttl": F.TEMPAT_TANGGAL_LAHIR,
    "no rekening": F.NO_REK, "no rek": F.NO_REK, "nomor rekening": F.NO_REK, "rekening": F.NO_REK,
    "no atm": F.NO_ATM, "nomor atm": F.NO_ATM, "nomor kartu debit": F.NO_ATM,
    "no kartu debit": F.NO_ATM,
    "valid thru": F.VALID_THRU, "valid kartu": F.VALID_THRU, "valid sd": F.VALID_THRU,
    "masa aktif": F.VALID_THRU,
    "no hp": F.NO_HP, "nomor hp": F.NO_HP, "nomor handphone": F.NO_HP,
    "pin atm": F.PIN_ATM, "pin kartu": F.PIN_ATM,
    "email": F.EMAIL, "alamat email": F.EMAIL,
    "pass email": F.PASS_EMAIL, "password email": F.PASS_EMAIL,
    "expired": F.EXPIRED, "tanggal expired": F.EXPIRED,
    "foto ktp": F.UPLOAD_FOTO_ID, "upload foto ktp": F.UPLOAD_FOTO_ID,
    "foto selfie": F.UPLOAD_FOTO_SELFIE, "upload foto selfie": F.UPLOAD_FOTO_SELFIE,
    # BCA
    "kode akses": F.KODE_AKSES, "pin m bca": F.PIN_MBCA,
    "bca id": F.MYBCA_USER, "user mybca": F.MYBCA_USER,
    "pass bca id": F.MYBCA_PASSWORD, "password mybca": F.MYBCA_PASSWORD,
    "pin transaksi": F.MYBCA_PIN,
    # Internet banking
    "i banking": F.IB_USER, "user i banking": F.IB_USER, "user ib": F.IB_USER,
    "pass i banking": F.IB_PASSWORD, "password i banking": F.IB_PASSWORD,
    "password internet banking": F.IB_PASSWORD, "pass ib": F.IB_PASSWORD,
    "password ib": F.IB_PASSWORD,
    "pin i banking": F.IB_PIN, "pin ib": F.IB_PIN,
    # BRImo and merchant QRIS
    "user brimo": F.BRIMO_USER, "id brimo": F.BRIMO_USER, "brimo id": F.BRIMO_USER,
    "brimo user": F.BRIMO_USER,
    "password brimo": F.BRIMO_PASSWORD, "pass brimo": F.BRIMO_PASSWORD,
    "brimo password": F.BRIMO_PASSWORD, "brimo pass": F.BRIMO_PASSWORD,
    "pin brimo": F.BRIMO_PIN, "brimo pin": F.BRIMO_PIN,
    "user merchant": F.BRI_MERCHANT_USER, "password merchant": F.BRI_MERCHANT_PASSWORD,
    # Nyala
    "user nyala": F.OCBC_NYALA_USER, "id nyala": F.OCBC_NYALA_USER,
    "user id nyala": F.OCBC_NYALA_USER, "nyala id": F.OCBC_NYALA_USER,
    "nyala user": F.OCBC_NYALA_USER,
    "password nyala": F.OCBC_NYALA_PASSWORD, "pass nyala": F.OCBC_NYALA_PASSWORD,
    "pin nyala": F.OCBC_NYALA_PIN,
    # Livin, Wondr and unbranded mobile apps
    "user livin": F.MOBILE_USER, "id livin": F.MOBILE_USER, "livin id": F.MOBILE_USER,
    "livin user": F.MOBILE_USER,
    "password livin": F.MOBILE_PASSWORD, "pass livin": F.MOBILE_PASSWORD,
    "livin password": F.MOBILE_PASSWORD, "livin pass": F.MOBILE_PASSWORD,
    "pin livin": F.MOBILE_PIN, "livin pin": F.MOBILE_PIN,
    "user wondr": F.MOBILE_USER, "id wondr": F.MOBILE_USER, "wondr id": F.MOBILE_USER,
    "wondr user": F.MOBILE_USER,
    "password wondr": F.PASS_WONDR, "pass wondr": F.PASS_WONDR,
    "wondr password": F.PASS_WONDR, "wondr pass": F.PASS_WONDR,
    "pin wondr": F.PIN_WONDR, "wondr pin": F.PIN_WONDR,
    "user mobile": F.MOBILE_USER, "id mobile": F.MOBILE_USER, "login mobile": F.MOBILE_USER,
    "akun mobile": F.MOBILE_USER, "user m banking": F.MOBILE_USER, "user m bank": F.MOBILE_USER,
    "user mbanking": F.MOBILE_USER, "id mbanking": F.MOBILE_USER,
    "password mobile": F.MOBILE_PASSWORD, "pass mobile": F.MOBILE_PASSWORD,
    "kata sandi mobile": F.MOBILE_PASSWORD, "password mbanking": F.MOBILE_PASSWORD,
    "pass mbanking": F.MOBILE_PASSWORD, "pass login": F.MOBILE_PASSWORD,
    "password login": F.MOBILE_PASSWORD,
    "pin mobile": F.MOBILE_PIN, "pin mbanking": F.MOBILE_PIN, "pin login": F.MOBILE_PIN,
}

MIN_ROW_CELLS = 4


def map_header(header: str) -> Optional[FieldKey]:
    key = normalize_header(header)
    if key in HEADER_ALIASES:
        return HEADER_ALIASES[key]
    return FieldKey.lookup(str(header).strip())


def _header_row(rows: List[List[str]]) -> int:
    """Index of the first row that looks like a header (two or more known columns)."""
    for idx, row in enumerate(rows[:5]):
        if sum(1 for cell in row if map_header(cell) is not None) >= 2:
            return idx
    return 0


def records_from_table(rows: List[List[str]], source_file: Optional[str] = None,
                       default_bank: Optional[str] = None) -> List[RawExtractedRecord]:
    """Header-mapped import of spreadsheet or Word table rows.

    Columns no alias knows are looked up in the row's bank schema and
    otherwise kept in `extras` under the original header text.
    """
    if not rows or len(rows) < 2:
        return []
    start = _header_row(rows)
    headers = [str(h).strip() for h in rows[start]]
    mapped = [map_header(h) for h in headers]

    records = []
    for row in rows[start + 1:]:
        cells = {}
        for idx, cell in enumerate(row):
            if idx >= len(headers) or not headers[idx]:
                continue
            value = "" if cell is None else str(cell).strip()
            if value:
                cells[idx] = value
        if len(cells) < MIN_ROW_CELLS:
            continue

        fields: Dict[FieldKey, str] = {}
        bank_idx = [i for i, key in enumerate(mapped) if key == F.BANK and i in cells]
        schema = banks.resolve(cells[bank_idx[0]] if bank_idx else None, default_bank)

        extras: Dict[str, str] = {}
        for idx, value in cells.items():
            key = mapped[idx]
            if key is None:
                resolved = banks.normalize_field_name(headers[idx], schema)
                if isinstance(resolved, FieldKey):
                    key = resolved
            if key is None:
                extras[headers[idx]] = value
            else:
                fields[key] = value
        if not fields:
            continue

        records.append(RawExtractedRecord(
            fields=cleanup(fields), extras=extras, source_file=source_file,
            block_index=len(records),
        ))
    return records
