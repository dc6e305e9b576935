"""
Configuration and constants for the voice lead agent.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# =============================
# Prompts
# =============================
SYSTEM_MESSAGE = (
    "You are an AI assistant making a phone call. Your primary goal is to have a friendly "
    "conversation and collect the customer's email address. Follow these guidelines:\n"
    "1. Introduce yourself and ask how you can help.\n"
    "2. During the conversation, politely ask for the customer's email address if they haven't provided it.\n"
    "3. After receiving the email, confirm it by repeating it back to the customer and asking if it's correct.\n"
    "4. Once you have confirmed the email, say \"Thank you, I've recorded your email as [email address].\"\n"
    "5. Always keep the conversation going by asking relevant follow-up questions or offering additional assistance.\n"
    "6. Never end the call abruptly. Wait for the customer to indicate they're done talking.\n"
    "7. If there's a pause in the conversation, take the initiative to ask if there's anything else you can help with.\n"
    "8. Be patient, friendly, and attentive throughout the entire call."
)

DEFAULT_GREETING = "Hello! How can I assist you today?"

SILENCE_PROMPT = (
    "There has been a pause in the conversation. Politely ask if there's anything else "
    "you can help with or if the customer has any questions."
)

CONTINUE_PROMPT = (
    "Continue the conversation naturally. If there's been a pause, politely ask if "
    "there's anything else you can help with."
)

GREETING_INSTRUCTION = "Greet the caller warmly and ask how you can help them today."

# Placeholder content stored for caller speech; audio is not transcribed inline.
USER_AUDIO_PLACEHOLDER = "User audio received"

LOG_EVENT_TYPES = [
    "error",
    "response.content.done",
    "rate_limits.updated",
    "response.done",
    "input_audio_buffer.committed",
    "input_audio_buffer.speech_stopped",
    "input_audio_buffer.speech_started",
    "session.created",
    "session.updated",
]

# =============================
# Twilio Media Streams
# =============================
MARK_NAME = "responsePart"
OUTBOUND_CALL_SAY = "Hello, this is an automated call."

SPEECH_MODES = ("ai_audio", "provider_tts", "both")


def _env_str(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


def _env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or str(v).strip() == "":
        return default
    try:
        return int(v)
    except ValueError as e:
        raise ValueError(f"{key} must be an int, got {v!r}") from e


def _env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or str(v).strip() == "":
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ValueError(f"{key} must be a float, got {v!r}") from e


def _env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None or str(v).strip() == "":
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


def strip_domain(raw: str) -> str:
    """Drop any scheme and trailing slashes from a public host name."""
    domain = raw.strip()
    if "//" in domain:
        domain = domain.split("//", 1)[1]
    return domain.rstrip("/")


@dataclass(frozen=True)
class BridgeCapabilities:
    """Which side effects a call session bridge performs."""

    records_audio: bool = True
    transcribes_after_call: bool = True
    speech_mode: str = "ai_audio"

    @property
    def forwards_ai_audio(self) -> bool:
        return self.speech_mode in ("ai_audio", "both")

    @property
    def sends_provider_tts(self) -> bool:
        return self.speech_mode in ("provider_tts", "both")


@dataclass(frozen=True)
class Settings:
    openai_api_key: str

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    domain: str = ""

    # OpenAI
    realtime_model: str = "gpt-4o-realtime-preview-2024-10-01"
    realtime_url: str = "wss://api.openai.com/v1/realtime"
    voice: str = "alloy"
    temperature: float = 0.8
    system_message: str = SYSTEM_MESSAGE
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    phone_number_from: str = ""
    dev_phone: str = ""
    dial_dev_phone_only: bool = False
    call_interval_s: float = 5.0

    # Storage
    database_path: str = "./leads.sqlite"
    csv_file_path: str = ""
    recordings_dir: str = "recordings"
    recording_format: str = "mp3"

    # Bridge behaviour
    record_audio: bool = True
    transcribe_after_call: bool = True
    speech_mode: str = "ai_audio"
    send_greeting: bool = True
    greeting: str = DEFAULT_GREETING
    silence_timeout_s: float = 10.0
    nudge_delay_s: float = 5.0
    session_init_delay_s: float = 0.1
    barge_in: bool = False

    # Resend notifications (optional)
    resend_api_key: str = ""
    resend_from: str = "leads@example.com"
    notify_recipients: List[str] = field(default_factory=list)

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"
    log_file: Optional[str] = None

    @property
    def realtime_endpoint(self) -> str:
        return f"{self.realtime_url}?model={self.realtime_model}"

    @property
    def media_stream_url(self) -> str:
        return f"wss://{self.domain}/media-stream"

    def capabilities(self) -> BridgeCapabilities:
        return BridgeCapabilities(
            records_audio=self.record_audio,
            transcribes_after_call=self.transcribe_after_call,
            speech_mode=self.speech_mode,
        )


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings from .env + environment.

    Precedence: real environment wins over .env values.
    """
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    openai_api_key = _env_str("OPENAI_API_KEY")
    if not openai_api_key:
        raise ValueError("Missing the OpenAI API key. Please set it in the .env file.")

    speech_mode = _env_str("SPEECH_MODE", "ai_audio").lower() or "ai_audio"
    if speech_mode not in SPEECH_MODES:
        raise ValueError(f"SPEECH_MODE must be one of {', '.join(SPEECH_MODES)}, got {speech_mode!r}")

    recipients = _env_str("EMAIL_RECIPIENTS")

    return Settings(
        openai_api_key=openai_api_key,
        host=_env_str("HOST", "0.0.0.0"),
        port=_env_int("PORT", 8080),
        domain=strip_domain(_env_str("DOMAIN")),
        realtime_model=_env_str("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview-2024-10-01"),
        realtime_url=_env_str("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"),
        voice=_env_str("VOICE", "alloy"),
        temperature=_env_float("TEMPERATURE", 0.8),
        system_message=_env_str("SYSTEM_MESSAGE") or SYSTEM_MESSAGE,
        transcription_model=_env_str("TRANSCRIPTION_MODEL", "whisper-1"),
        transcription_language=_env_str("TRANSCRIPTION_LANGUAGE", "en"),
        twilio_account_sid=_env_str("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=_env_str("TWILIO_AUTH_TOKEN"),
        phone_number_from=_env_str("PHONE_NUMBER_FROM"),
        dev_phone=_env_str("TWILIO_DEV_PHONE"),
        dial_dev_phone_only=_env_bool("DIAL_DEV_PHONE_ONLY", False),
        call_interval_s=_env_float("CALL_INTERVAL_S", 5.0),
        database_path=_env_str("DATABASE_PATH", "./leads.sqlite"),
        csv_file_path=_env_str("CSV_FILE_PATH"),
        recordings_dir=_env_str("RECORDINGS_DIR", "recordings"),
        recording_format=_env_str("RECORDING_FORMAT", "mp3").lower(),
        record_audio=_env_bool("RECORD_AUDIO", True),
        transcribe_after_call=_env_bool("TRANSCRIBE_AFTER_CALL", True),
        speech_mode=speech_mode,
        send_greeting=_env_bool("SEND_GREETING", True),
        greeting=_env_str("GREETING") or DEFAULT_GREETING,
        silence_timeout_s=_env_float("SILENCE_TIMEOUT_S", 10.0),
        nudge_delay_s=_env_float("NUDGE_DELAY_S", 5.0),
        session_init_delay_s=_env_float("SESSION_INIT_DELAY_S", 0.1),
        barge_in=_env_bool("BARGE_IN", False),
        resend_api_key=_env_str("RESEND_API_KEY"),
        resend_from=_env_str("RESEND_FROM", "leads@example.com"),
        notify_recipients=[email.strip() for email in recipients.split(",") if email.strip()],
        log_level=_env_str("LOG_LEVEL", "INFO"),
        log_format=_env_str("LOG_FORMAT", "console").lower(),
        log_file=_env_str("LOG_FILE") or None,
    )
