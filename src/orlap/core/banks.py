"""Bank field schema registry.

Static, per-bank configuration shared by extraction, validation, display and
the chat flow: which fields a bank requires, how free-text labels typed by
field staff map to canonical field keys, and how fields are labelled back to
them. Everything here is loaded once at import and never mutated.
"""
from typing import Optional, Dict, FrozenSet, Iterable, List, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field

from .models import FieldKey, RawExtractedRecord

F = FieldKey


class SchemaError(ValueError):
    """Raised at load time when the bank table is inconsistent."""


class SubtypeFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    mandatory: FrozenSet[FieldKey]
    optional: FrozenSet[FieldKey] = frozenset()


class BankSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    display_name: str
    bank_codes: Tuple[str, ...] = ()      # numeric interbank codes, e.g. "014"
    name_hints: Tuple[str, ...] = ()      # uppercase substrings that identify the bank
    mandatory_fields: FrozenSet[FieldKey]
    optional_fields: FrozenSet[FieldKey] = frozenset()
    field_aliases: Dict[str, FieldKey] = Field(default_factory=dict)
    display_labels: Dict[FieldKey, str] = Field(default_factory=dict)
    subtypes: Dict[str, SubtypeFields] = Field(default_factory=dict)

    def __hash__(self):
        return hash(self.code)

    def matches(self, text: str) -> bool:
        upper = text.upper()
        return any(h in upper for h in self.name_hints) or any(c in upper for c in self.bank_codes)


# Labels every bank shares unless it overrides them.
COMMON_LABELS: Dict[FieldKey, str] = {
    F.NO_ORDER: "No. Order",
    F.CODE_AGEN: "Kode Orlap",
    F.CUSTOMER: "Customer",
    F.BANK: "Bank",
    F.GRADE: "Grade",
    F.KCP: "Kantor Cabang",
    F.JENIS_REKENING: "Jenis Rekening",
    F.NIK: "NIK",
    F.NAMA: "Nama",
    F.NAMA_IBU_KANDUNG: "Nama Ibu Kandung",
    F.TEMPAT_TANGGAL_LAHIR: "Tempat/Tanggal Lahir",
    F.NO_REK: "No. Rekening",
    F.NO_ATM: "No. ATM",
    F.VALID_THRU: "Valid Thru",
    F.PIN_ATM: "PIN ATM",
    F.EXPIRED: "Expired",
    F.NO_HP: "No. HP",
    F.EMAIL: "Email",
    F.PASS_EMAIL: "Password Email",
    F.MOBILE_USER: "User Mobile",
    F.MOBILE_PASSWORD: "Password Mobile",
    F.MOBILE_PIN: "PIN Mobile",
    F.IB_USER: "User I-Banking",
    F.IB_PASSWORD: "Password I-Banking",
    F.IB_PIN: "PIN I-Banking",
    F.MYBCA_USER: "BCA-ID",
    F.MYBCA_PASSWORD: "Pass BCA-ID",
    F.MYBCA_PIN: "Pin Transaksi",
    F.KODE_AKSES: "Kode Akses",
    F.PIN_MBCA: "Pin M-BCA",
    F.BRIMO_USER: "User BRImo",
    F.BRIMO_PASSWORD: "Password BRImo",
    F.BRIMO_PIN: "PIN BRImo",
    F.BRI_MERCHANT_USER: "User Merchant QRIS",
    F.BRI_MERCHANT_PASSWORD: "Password Merchant QRIS",
    F.OCBC_NYALA_USER: "User Nyala",
    F.OCBC_NYALA_PASSWORD: "Password Nyala",
    F.OCBC_NYALA_PIN: "PIN Nyala",
    F.PIN_WONDR: "PIN Wondr",
    F.PASS_WONDR: "Password Wondr",
    F.UPLOAD_FOTO_ID: "Foto KTP",
    F.UPLOAD_FOTO_SELFIE: "Foto Selfie",
}


def _schema(code, display_name, mandatory, optional=(), aliases=None, labels=None,
            subtypes=None, bank_codes=(), name_hints=()) -> BankSchema:
    merged_labels = dict(COMMON_LABELS)
    merged_labels.update(labels or {})
    return BankSchema(
        code=code,
        display_name=display_name,
        bank_codes=tuple(bank_codes),
        name_hints=tuple(name_hints),
        mandatory_fields=frozenset(mandatory),
        optional_fields=frozenset(optional),
        field_aliases=dict(aliases or {}),
        display_labels=merged_labels,
        subtypes={k: SubtypeFields(mandatory=frozenset(v[0]), optional=frozenset(v[1]))
                  for k, v in (subtypes or {}).items()},
    )


BCA = _schema(
    "BCA", "BCA",
    bank_codes=("014",), name_hints=("BCA",),
    # Not every BCA account has myBCA, m-BCA or internet banking
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_HP, F.EMAIL],
    optional=[F.MYBCA_USER, F.MYBCA_PASSWORD, F.MYBCA_PIN, F.MOBILE_PASSWORD, F.PIN_MBCA,
              F.KODE_AKSES, F.IB_USER, F.IB_PIN, F.NO_ATM, F.PIN_ATM, F.VALID_THRU],
    aliases={
        "bca-id": F.MYBCA_USER,
        "bca id": F.MYBCA_USER,
        "user mybca": F.MYBCA_USER,
        "pass bca-id": F.MYBCA_PASSWORD,
        "password bca-id": F.MYBCA_PASSWORD,
        "password mybca": F.MYBCA_PASSWORD,
        "pin transaksi": F.MYBCA_PIN,
        "pin mybca": F.MYBCA_PIN,
        "kode akses": F.KODE_AKSES,
        "kode akses m-bca": F.KODE_AKSES,
        "pin m-bca": F.PIN_MBCA,
        "user i-banking": F.IB_USER,
        "pin i-banking": F.IB_PIN,
    },
    labels={
        F.MOBILE_PASSWORD: "Kode Akses M-BCA",
        F.IB_USER: "User Internet Banking",
        F.IB_PASSWORD: "Password Internet Banking",
        F.IB_PIN: "Pin Internet Banking",
    },
)

BRI = _schema(
    "BRI", "BRI",
    bank_codes=("002",), name_hints=("BRI",),
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_HP, F.EMAIL],
    optional=[F.NO_ATM, F.PIN_ATM, F.BRIMO_USER, F.BRIMO_PASSWORD, F.BRIMO_PIN,
              F.BRI_MERCHANT_USER, F.BRI_MERCHANT_PASSWORD, F.IB_USER, F.IB_PASSWORD],
    subtypes={
        "TABUNGAN": (
            [F.NIK, F.NAMA, F.NO_REK, F.NO_ATM, F.NO_HP, F.PIN_ATM, F.EMAIL,
             F.BRIMO_USER, F.BRIMO_PASSWORD],
            [F.BRIMO_PIN, F.IB_USER, F.IB_PASSWORD],
        ),
        "QRIS": (
            [F.NIK, F.NAMA, F.NO_REK, F.NO_HP, F.EMAIL,
             F.BRI_MERCHANT_USER, F.BRI_MERCHANT_PASSWORD],
            [F.BRIMO_USER, F.BRIMO_PASSWORD],
        ),
    },
    aliases={
        "user brimo": F.BRIMO_USER,
        "id brimo": F.BRIMO_USER,
        "brimo user": F.BRIMO_USER,
        "user mobile": F.BRIMO_USER,
        "mobile user": F.BRIMO_USER,
        "password brimo": F.BRIMO_PASSWORD,
        "pass brimo": F.BRIMO_PASSWORD,
        "brimo pass": F.BRIMO_PASSWORD,
        "brimo password": F.BRIMO_PASSWORD,
        "password mobile": F.BRIMO_PASSWORD,
        "pin brimo": F.BRIMO_PIN,
        "brimo pin": F.BRIMO_PIN,
        "pin mobile": F.BRIMO_PIN,
        "user merchant": F.BRI_MERCHANT_USER,
        "user bri merchant": F.BRI_MERCHANT_USER,
        "id merchant": F.BRI_MERCHANT_USER,
        "merchant id": F.BRI_MERCHANT_USER,
        "merchant user": F.BRI_MERCHANT_USER,
        "password merchant": F.BRI_MERCHANT_PASSWORD,
        "password bri merchant": F.BRI_MERCHANT_PASSWORD,
        "pass merchant": F.BRI_MERCHANT_PASSWORD,
        "merchant password": F.BRI_MERCHANT_PASSWORD,
        "kata sandi merchant": F.BRI_MERCHANT_PASSWORD,
    },
)

OCBC = _schema(
    "OCBC", "OCBC Nyala",
    bank_codes=("028",), name_hints=("OCBC", "NISP"),
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_ATM, F.NO_HP, F.PIN_ATM, F.EMAIL, F.OCBC_NYALA_USER],
    optional=[F.OCBC_NYALA_PASSWORD, F.OCBC_NYALA_PIN, F.MOBILE_USER, F.IB_USER, F.IB_PASSWORD, F.IB_PIN],
    aliases={
        "user nyala": F.OCBC_NYALA_USER,
        "yala user": F.OCBC_NYALA_USER,
        "nyala user": F.OCBC_NYALA_USER,
        "user m-bank": F.MOBILE_USER,
        "user mobile": F.MOBILE_USER,
        "mobile user": F.MOBILE_USER,
        "password nyala": F.OCBC_NYALA_PASSWORD,
        "pass nyala": F.OCBC_NYALA_PASSWORD,
        "nyala password": F.OCBC_NYALA_PASSWORD,
        "pass login": F.OCBC_NYALA_PASSWORD,
        "password login": F.OCBC_NYALA_PASSWORD,
        "password mobile": F.OCBC_NYALA_PASSWORD,
        "password m-bank": F.OCBC_NYALA_PASSWORD,
        "pin nyala": F.OCBC_NYALA_PIN,
        "pin mobile": F.OCBC_NYALA_PIN,
        "pin login": F.OCBC_NYALA_PIN,
        "pin m-bank": F.OCBC_NYALA_PIN,
        "user i-banking": F.IB_USER,
        "user i banking": F.IB_USER,
        "user internet banking": F.IB_USER,
        "user ib": F.IB_USER,
        "pass i-banking": F.IB_PASSWORD,
        "pass i banking": F.IB_PASSWORD,
        "password i-banking": F.IB_PASSWORD,
        "password internet banking": F.IB_PASSWORD,
        "pass ib": F.IB_PASSWORD,
        "password ib": F.IB_PASSWORD,
        "pin i-banking": F.IB_PIN,
        "pin i banking": F.IB_PIN,
        "pin internet banking": F.IB_PIN,
        "pin ib": F.IB_PIN,
    },
    labels={
        F.MOBILE_USER: "User M-Bank",
        F.OCBC_NYALA_PASSWORD: "Password Login",
        F.OCBC_NYALA_PIN: "PIN Login",
        F.IB_PASSWORD: "Pass I-Banking",
    },
)

MANDIRI = _schema(
    "MANDIRI", "Mandiri Livin",
    bank_codes=("008",), name_hints=("MANDIRI", "BMRI"),
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_ATM, F.NO_HP, F.PIN_ATM, F.EMAIL,
               F.MOBILE_PASSWORD, F.MOBILE_PIN],
    optional=[F.MOBILE_USER],
    aliases={
        "user livin": F.MOBILE_USER,
        "id livin": F.MOBILE_USER,
        "user id": F.MOBILE_USER,
        "id user": F.MOBILE_USER,
        "user": F.MOBILE_USER,
        "password livin": F.MOBILE_PASSWORD,
        "pass livin": F.MOBILE_PASSWORD,
        "mobile password": F.MOBILE_PASSWORD,
        "mobile pass": F.MOBILE_PASSWORD,
        "password mobile": F.MOBILE_PASSWORD,
        "pass mobile": F.MOBILE_PASSWORD,
        "password": F.MOBILE_PASSWORD,
        "pin livin": F.MOBILE_PIN,
        "pin mobile": F.MOBILE_PIN,
        "mobile pin livin": F.MOBILE_PIN,
        "mobile pin": F.MOBILE_PIN,
        "pin": F.MOBILE_PIN,
    },
    labels={
        F.MOBILE_USER: "User Livin",
        F.MOBILE_PASSWORD: "Password Livin",
        F.MOBILE_PIN: "Pin Livin",
    },
)

BNI = _schema(
    "BNI", "BNI Wondr",
    bank_codes=("009",), name_hints=("BNI",),
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_ATM, F.NO_HP, F.PIN_ATM, F.EMAIL,
               F.MOBILE_PASSWORD, F.MOBILE_PIN],
    optional=[F.MOBILE_USER],
    aliases={
        "user wondr": F.MOBILE_USER,
        "id wondr": F.MOBILE_USER,
        "user id": F.MOBILE_USER,
        "id user": F.MOBILE_USER,
        "user": F.MOBILE_USER,
        "password wondr": F.MOBILE_PASSWORD,
        "pass wondr": F.MOBILE_PASSWORD,
        "wondr pass": F.MOBILE_PASSWORD,
        "wondr password": F.MOBILE_PASSWORD,
        "password mobile": F.MOBILE_PASSWORD,
        "password": F.MOBILE_PASSWORD,
        "pin wondr": F.MOBILE_PIN,
        "wondr pin": F.MOBILE_PIN,
        "pin mobile": F.MOBILE_PIN,
        "pin": F.MOBILE_PIN,
    },
    labels={
        F.MOBILE_USER: "User Wondr",
        F.MOBILE_PASSWORD: "Password Wondr",
        F.MOBILE_PIN: "PIN Wondr",
    },
)

PERMATA = _schema(
    "PERMATA", "Permata",
    bank_codes=("013",), name_hints=("PERMATA",),
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_HP, F.EMAIL],
    optional=[F.NO_ATM, F.MOBILE_USER, F.MOBILE_PASSWORD, F.MOBILE_PIN,
              F.IB_USER, F.IB_PASSWORD, F.IB_PIN],
)

GENERIC = _schema(
    "GENERIC", "Generic Bank",
    mandatory=[F.NIK, F.NAMA, F.NO_REK, F.NO_HP],
    optional=[F.EMAIL, F.NO_ATM, F.MOBILE_USER, F.MOBILE_PASSWORD, F.MOBILE_PIN,
              F.IB_USER, F.IB_PASSWORD, F.IB_PIN],
)

# Priority order matters: the first schema whose hints match wins.
KNOWN_BANKS: Tuple[BankSchema, ...] = (BCA, BRI, OCBC, MANDIRI, BNI, PERMATA)

_BY_CODE: Dict[str, BankSchema] = {s.code: s for s in KNOWN_BANKS + (GENERIC,)}


def _check(schemas: Iterable[BankSchema]) -> None:
    for schema in schemas:
        overlap = schema.mandatory_fields & schema.optional_fields
        if overlap:
            raise SchemaError(f"{schema.code}: fields both mandatory and optional: {sorted(overlap)}")
        for name, sub in schema.subtypes.items():
            overlap = sub.mandatory & sub.optional
            if overlap:
                raise SchemaError(f"{schema.code}/{name}: fields both mandatory and optional: {sorted(overlap)}")
        for alias, key in schema.field_aliases.items():
            if alias != alias.strip().lower():
                raise SchemaError(f"{schema.code}: alias {alias!r} is not normalized")
            if not isinstance(key, FieldKey):
                raise SchemaError(f"{schema.code}: alias {alias!r} maps to unknown field {key!r}")


_check(_BY_CODE.values())


def all_schemas() -> List[BankSchema]:
    return list(KNOWN_BANKS) + [GENERIC]


def get(code: str) -> BankSchema:
    """Exact lookup by registry code; raises KeyError."""
    return _BY_CODE[code.upper()]


def resolve(bank: Optional[str], default_bank: Optional[str] = None) -> BankSchema:
    """Map a typed bank name or interbank code to its schema.

    Empty input resolves to the configured default bank; anything that
    matches no known bank resolves to GENERIC.
    """
    if bank is None or not str(bank).strip():
        if default_bank is None:
            from .config import settings
            default_bank = settings.default_bank
        return _BY_CODE.get(default_bank.upper(), GENERIC)

    text = str(bank)
    for schema in KNOWN_BANKS:
        if schema.matches(text):
            return schema
    return GENERIC


def mandatory_fields_for(schema: BankSchema, subtype: Optional[str] = None) -> FrozenSet[FieldKey]:
    if subtype and schema.subtypes:
        sub = schema.subtypes.get(subtype.strip().upper())
        if sub is not None:
            return sub.mandatory
    return schema.mandatory_fields


def normalize_field_name(raw_label: str, schema: BankSchema) -> Union[FieldKey, str]:
    """Canonical key for a free-text label; unknown labels come back unchanged."""
    if not raw_label:
        return raw_label
    return schema.field_aliases.get(raw_label.strip().lower(), raw_label)


def display_label(field: Union[FieldKey, str], schema: BankSchema) -> str:
    key = FieldKey.lookup(field.value if isinstance(field, FieldKey) else field)
    if key is not None and key in schema.display_labels:
        return schema.display_labels[key]
    return field.value if isinstance(field, FieldKey) else field


def missing_fields(record: RawExtractedRecord, schema: Optional[BankSchema] = None) -> List[FieldKey]:
    """Bank-specific mandatory fields absent or blank in `record`.

    Independent of the global validator: a field this returns may still pass
    validation and vice versa.
    """
    if schema is None:
        schema = resolve(record.get(FieldKey.BANK))
    required = mandatory_fields_for(schema, record.get(FieldKey.JENIS_REKENING))
    return sorted(
        (key for key in required if not (record.get(key) or "").strip()),
        key=lambda k: k.value,
    )
