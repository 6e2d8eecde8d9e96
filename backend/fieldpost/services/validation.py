"""Input validation and sanitization for user-supplied content."""

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from email_validator import EmailNotValidError
from email_validator import validate_email as check_email_syntax

from fieldpost.core.errors import ValidationFailed

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_NOTES_LENGTH = 10000
MAX_FEEDBACK_LENGTH = 2000
MAX_EMAIL_LENGTH = 254
MAX_FILENAME_LENGTH = 255

_SAFE_FILENAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")

_PROMPT_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore\s+(previous|all|above)\s+(instructions?|prompts?)",
        r"system\s+prompt",
        r"forget\s+(previous|all)",
        r"you\s+are\s+now",
        r"override\s+(previous|system)",
        r"disregard\s+(previous|all|above)",
        r"new\s+instructions?",
        r"act\s+as\s+if",
        r"pretend\s+to\s+be",
        r"output\s+(your|the)\s+system",
        r"reveal\s+(your|the)\s+prompt",
        r"show\s+(me|us)\s+(your|the)\s+prompt",
    )
]

# (type, pattern, replacement), applied in order
_PII_PATTERNS: list[tuple[str, re.Pattern, str]] = [
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[email redacted]"),
    (
        "gps",
        re.compile(r"-?\b\d{1,3}\.\d{4,},\s*-?\d{1,3}\.\d{4,}\b"),
        "[coordinates redacted]",
    ),
    (
        "phone",
        re.compile(r"(?:\+|\b00)353[\s-]?\(?0?\)?\d{1,2}[\s-]?\d{3}[\s-]?\d{3,4}\b"),
        "[phone redacted]",
    ),
    (
        "phone",
        re.compile(r"(?:\+\d{1,3}[\s.-]?)?\(?\b\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b"),
        "[phone redacted]",
    ),
    (
        "date_of_birth",
        re.compile(r"\b(0[1-9]|[12][0-9]|3[01])[/.-](0[1-9]|1[0-2])[/.-](19[2-9][0-9]|20[01][0-9])\b"),
        "[date redacted]",
    ),
    ("medical_record", re.compile(r"\b(MR|MRN|HSE|PPS)[\s-]?\d{6,}\b", re.IGNORECASE), "[medical record redacted]"),
    ("pps_number", re.compile(r"\b\d{7}[A-Z]{1,2}\b", re.IGNORECASE), "[PPS redacted]"),
    ("postcode", re.compile(r"\b(?:[A-Z]\d{2}\s?[A-Z0-9]{4}|Dublin\s+\d{1,2})\b"), "[location redacted]"),
]

_TITLED_NAME_RE = re.compile(r"\b(Mr|Mrs|Ms|Dr|Prof)(\.?)\s+[A-Z][a-z]+\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?\b")


@dataclass
class PIIScan:
    """Result of scrubbing personal data from text."""

    text: str
    detected_types: list[str] = field(default_factory=list)

    @property
    def has_pii(self) -> bool:
        return bool(self.detected_types)


def validate_notes_length(notes: str | None) -> str:
    if not notes or not notes.strip():
        raise ValidationFailed("Notes cannot be empty", code="NOTES_REQUIRED")
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationFailed(
            f"Notes exceed maximum length of {MAX_NOTES_LENGTH} characters",
            code="NOTES_TOO_LONG",
        )
    return notes


def validate_feedback_length(feedback: str | None) -> str | None:
    if feedback is not None and len(feedback) > MAX_FEEDBACK_LENGTH:
        raise ValidationFailed(
            f"Feedback exceeds maximum length of {MAX_FEEDBACK_LENGTH} characters",
            code="FEEDBACK_TOO_LONG",
        )
    return feedback


def validate_email(email: str | None) -> str:
    """Check format and reject header injection.

    The format check runs on the trimmed value, but the email is returned
    as supplied: allow-list matching is whitespace-sensitive.
    """
    if not email or not isinstance(email, str):
        raise ValidationFailed("Email is required", code="EMAIL_REQUIRED")
    candidate = email.strip()
    if "\r" in candidate or "\n" in candidate:
        raise ValidationFailed("Invalid email format", code="INVALID_EMAIL")
    try:
        check_email_syntax(candidate, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationFailed("Invalid email format", code="INVALID_EMAIL") from e
    if len(candidate) > MAX_EMAIL_LENGTH:
        raise ValidationFailed("Email address too long", code="INVALID_EMAIL")
    return email


def validate_file(filename: str | None, content_type: str | None, size: int) -> None:
    """Validate one uploaded photo.

    Raises:
        ValidationFailed: If the file is empty, too large, of a disallowed type,
            or has an unsafe name
    """
    if size == 0:
        raise ValidationFailed("Empty file not allowed", code="INVALID_FILE")
    if size > MAX_FILE_SIZE:
        raise ValidationFailed(
            f"File size exceeds maximum of {MAX_FILE_SIZE // (1024 * 1024)}MB",
            code="FILE_TOO_LARGE",
        )
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationFailed(
            f"Invalid file type. Allowed types: {', '.join(ALLOWED_IMAGE_TYPES)}",
            code="INVALID_FILE_TYPE",
        )
    if not filename or ".." in filename or not _SAFE_FILENAME_RE.match(filename):
        raise ValidationFailed(
            "Invalid filename. Filename contains dangerous characters",
            code="INVALID_FILENAME",
        )
    if len(filename) > MAX_FILENAME_LENGTH:
        raise ValidationFailed("Filename too long", code="INVALID_FILENAME")


def validate_photo_url(url: str) -> bool:
    """Only absolute https URLs may be handed to the social APIs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme == "https" and bool(parsed.hostname) and not parsed.username


def sanitize_prompt_input(text: str | None) -> str:
    if not text or not isinstance(text, str):
        return ""
    sanitized = text
    for pattern in _PROMPT_INJECTION_PATTERNS:
        sanitized = pattern.sub("[removed]", sanitized)
    sanitized = sanitized[:MAX_NOTES_LENGTH]
    sanitized = re.sub(r"\s{3,}", " ", sanitized)
    return sanitized.strip()


def sanitize_pii(text: str | None) -> PIIScan:
    if not text or not isinstance(text, str):
        return PIIScan(text="")

    scan = PIIScan(text=text)
    for pii_type, pattern, replacement in _PII_PATTERNS:
        scrubbed, count = pattern.subn(replacement, scan.text)
        if count:
            scan.text = scrubbed
            if pii_type not in scan.detected_types:
                scan.detected_types.append(pii_type)

    scrubbed, count = _TITLED_NAME_RE.subn(lambda m: f"{m.group(1)}{m.group(2)} [name redacted]", scan.text)
    if count:
        scan.text = scrubbed
        scan.detected_types.append("name_with_title")
    return scan


def sanitize_for_ai(text: str | None) -> str:
    """Strip prompt-injection phrases, then redact personal data."""
    return sanitize_pii(sanitize_prompt_input(text)).text
