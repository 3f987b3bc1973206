"""Multi-turn data collection over chat.

`ConversationMachine.handle` takes the caller's session and one inbound
message and returns a new session plus the replies to send; it never keeps
sessions itself. `ConversationDriver` is the thin loop that loads and stores
sessions per chat id around it.
"""
import logging
from typing import List, Optional, Tuple

from .models import (
    ConversationSession, FieldKey, InboundMessage, OutboundReply, RawExtractedRecord, SessionState,
)
from .repository import FileStorage, Repository, SessionStore
from . import banks
from .i18n import t

logger = logging.getLogger(__name__)

F = FieldKey

LEADING_STEPS = (F.NO_ORDER, F.BANK)

BANK_STEPS = {
    "BCA": (F.MYBCA_USER, F.MYBCA_PASSWORD, F.MYBCA_PIN, F.KODE_AKSES, F.PIN_MBCA, F.IB_USER, F.IB_PIN),
    "BRI": (F.JENIS_REKENING, F.BRIMO_USER, F.BRIMO_PASSWORD, F.BRI_MERCHANT_USER, F.BRI_MERCHANT_PASSWORD),
    "OCBC": (F.OCBC_NYALA_USER, F.OCBC_NYALA_PASSWORD, F.OCBC_NYALA_PIN, F.IB_USER, F.IB_PASSWORD),
    "MANDIRI": (F.MOBILE_USER, F.MOBILE_PASSWORD, F.MOBILE_PIN),
    "BNI": (F.MOBILE_USER, F.MOBILE_PASSWORD, F.MOBILE_PIN),
}
DEFAULT_BANK_STEPS = (F.MOBILE_USER, F.MOBILE_PASSWORD, F.MOBILE_PIN)

TRAILING_STEPS = (
    F.GRADE, F.KCP, F.CUSTOMER, F.NIK, F.NAMA, F.NAMA_IBU_KANDUNG, F.TEMPAT_TANGGAL_LAHIR,
    F.NO_REK, F.NO_ATM, F.VALID_THRU, F.NO_HP, F.PIN_ATM, F.EMAIL, F.PASS_EMAIL, F.EXPIRED,
)
PHOTO_STEPS = (F.UPLOAD_FOTO_ID, F.UPLOAD_FOTO_SELFIE)

NON_SKIPPABLE = frozenset({F.NO_ORDER, F.BANK, F.NAMA, F.NIK})

# Commands, with the Indonesian words field staff actually type
COMMANDS = {
    "start": "start", "mulai": "start",
    "back": "back", "kembali": "back",
    "skip": "skip", "lewati": "skip",
    "cancel": "cancel", "batal": "cancel",
    "help": "help", "bantuan": "help",
}


def steps_for(bank: Optional[str]) -> Tuple[FieldKey, ...]:
    """Full question sequence; which credentials are asked depends on the bank answer."""
    credentials = DEFAULT_BANK_STEPS
    if bank:
        credentials = BANK_STEPS.get(banks.resolve(bank).code, DEFAULT_BANK_STEPS)
    return LEADING_STEPS + credentials + TRAILING_STEPS + PHOTO_STEPS


def _reset(session: ConversationSession) -> ConversationSession:
    return session.model_copy(update={
        "state": SessionState.IDLE,
        "current_step_index": 0,
        "bank_selection": None,
        "collected_fields": {},
    })


class ConversationMachine:
    def __init__(self, repo: Repository, storage: FileStorage, default_bank: Optional[str] = None):
        self.repo = repo
        self.storage = storage
        self.default_bank = default_bank

    # --- replies ---------------------------------------------------------

    def _reply(self, session, text, options=None) -> OutboundReply:
        return OutboundReply(chat_id=session.chat_id, text=text, options=options)

    def _prompt(self, session: ConversationSession) -> OutboundReply:
        steps = steps_for(session.bank_selection)
        step = steps[session.current_step_index]
        schema = banks.resolve(session.bank_selection, self.default_bank)
        label = banks.display_label(step, schema)
        progress = f"({session.current_step_index + 1}/{len(steps)})"

        if step in PHOTO_STEPS:
            text = t("bot.ask_photo", label=label, progress=progress)
        else:
            text = t("bot.ask_field", label=label, progress=progress)

        options = []
        if step == F.BANK:
            options = [s.code for s in banks.KNOWN_BANKS]
        if step not in NON_SKIPPABLE:
            options.append("/skip")
        options += ["/back", "/cancel"]
        return self._reply(session, text, options)

    # --- entry point -----------------------------------------------------

    def handle(self, session: Optional[ConversationSession],
               message: InboundMessage) -> Tuple[ConversationSession, List[OutboundReply]]:
        if session is None or (session.state == SessionState.IDLE and not session.authenticated):
            session = ConversationSession(chat_id=message.chat_id, state=SessionState.AWAITING_AUTH_CODE)
            return session, [self._reply(session, t("bot.welcome")),
                             self._reply(session, t("bot.ask_auth_code"))]

        session = session.model_copy(deep=True)
        raw_command = message.resolved_command()
        command = COMMANDS.get(raw_command) if raw_command else None

        if session.state == SessionState.AWAITING_AUTH_CODE:
            return self._on_auth(session, message, raw_command)
        if session.state == SessionState.IDLE:
            return self._on_idle(session, command)
        if raw_command is not None:
            return self._on_navigation(session, command)
        return self._on_answer(session, message)

    # --- states ----------------------------------------------------------

    def _on_auth(self, session, message, raw_command):
        code = (message.text or "").strip()
        if raw_command is not None or not code:
            return session, [self._reply(session, t("bot.ask_auth_code"))]

        staff = self.repo.find_field_staff_by_code(code, ignore_case=True)
        if staff is None:
            logger.info("Chat %s: unknown staff code", session.chat_id)
            return session, [self._reply(session, t("bot.auth_not_found", code=code))]

        session = session.model_copy(update={"state": SessionState.IDLE, "staff_code": staff.code})
        logger.info("Chat %s authenticated as %s", session.chat_id, staff.code)
        return session, [self._reply(session, t("bot.auth_ok", name=staff.name or staff.code), ["/start"])]

    def _on_idle(self, session, command):
        if command == "start":
            session = session.model_copy(update={
                "state": SessionState.COLLECTING,
                "current_step_index": 0,
                "bank_selection": None,
                "collected_fields": {},
            })
            return session, [self._reply(session, t("bot.started")), self._prompt(session)]
        if command == "cancel":
            return session, [self._reply(session, t("bot.nothing_to_cancel"), ["/start"])]
        return session, [self._reply(session, t("bot.idle_hint"), ["/start"])]

    def _on_navigation(self, session, command):
        steps = steps_for(session.bank_selection)
        step = steps[session.current_step_index]

        if command == "cancel":
            session = _reset(session)
            return session, [self._reply(session, t("bot.cancelled"), ["/start"])]

        if command == "back":
            if session.current_step_index == 0:
                return session, [self._reply(session, t("bot.at_first_step")), self._prompt(session)]
            session = session.model_copy(update={"current_step_index": session.current_step_index - 1})
            return session, [self._prompt(session)]

        if command == "skip":
            if step in NON_SKIPPABLE:
                label = banks.display_label(step, banks.resolve(session.bank_selection, self.default_bank))
                return session, [self._reply(session, t("bot.cannot_skip", label=label)), self._prompt(session)]
            return self._advance(session)

        if command == "help":
            return session, [self._reply(session, t("bot.help")), self._prompt(session)]
        if command == "start":
            return session, [self._reply(session, t("bot.already_collecting")), self._prompt(session)]
        return session, [self._reply(session, t("bot.unknown_command")), self._prompt(session)]

    def _on_answer(self, session, message):
        steps = steps_for(session.bank_selection)
        step = steps[session.current_step_index]

        if step in PHOTO_STEPS:
            if message.attachment is None:
                return session, [self._reply(session, t("bot.need_photo")), self._prompt(session)]
            try:
                url = self.storage.store(message.attachment.content, message.attachment.filename)
            except Exception as e:
                logger.error("Chat %s: storing %s failed: %s", session.chat_id, step.value, e)
                return session, [self._reply(session, t("bot.upload_failed")), self._prompt(session)]
            session.collected_fields[step] = url
            return self._advance(session)

        text = (message.text or "").strip()
        if not text:
            return session, [self._reply(session, t("bot.need_text")), self._prompt(session)]

        if step == F.BANK:
            return self._advance(self._choose_bank(session, text))

        session.collected_fields[step] = text
        return self._advance(session)

    def _choose_bank(self, session, text):
        schema = banks.resolve(text)
        value = text if schema is banks.GENERIC else schema.code
        # Credentials asked for a previously chosen bank no longer apply
        keep = set(steps_for(value))
        fields = {k: v for k, v in session.collected_fields.items() if k in keep}
        fields[F.BANK] = value
        return session.model_copy(update={"bank_selection": value, "collected_fields": fields})

    def _advance(self, session):
        steps = steps_for(session.bank_selection)
        index = session.current_step_index + 1
        session = session.model_copy(update={"current_step_index": index})
        if index < len(steps):
            return session, [self._prompt(session)]
        return self._submit(session)

    def _submit(self, session):
        fields = dict(session.collected_fields)
        fields[F.CODE_AGEN] = session.staff_code
        record = RawExtractedRecord(fields=fields, source_chat=session.chat_id)

        try:
            product_id = self.repo.save(record)
            replies = [self._reply(session, t("bot.saved", id=product_id, count=len(fields)), ["/start"])]
        except Exception:
            logger.exception("Chat %s: saving submission failed", session.chat_id)
            replies = [self._reply(session, t("bot.save_failed"), ["/start"])]

        # Either way the chat starts over; nothing is kept for a retry
        return _reset(session), replies


class ConversationDriver:
    """Keeps one session per chat id between turns."""

    def __init__(self, machine: ConversationMachine, sessions: SessionStore):
        self.machine = machine
        self.sessions = sessions

    def receive(self, message: InboundMessage) -> List[OutboundReply]:
        session = self.sessions.get(message.chat_id)
        session, replies = self.machine.handle(session, message)
        self.sessions.put(session)
        return replies
