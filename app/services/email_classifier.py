"""
Heuristic email classifier for job-application emails.

classify() turns a RawMessage into a ParsedApplication, or None when the
message is not job related. It never raises: broken markup, empty bodies and
failing extractors degrade to fallback fields instead of aborting a batch.

Pipeline:
    1. normalise the body (markup stripped, entities decoded, whitespace collapsed)
    2. relevance: any job-vocabulary term in subject + body
    3. status: first matching keyword group in priority order
    4. fields: ordered strategy lists, first non-empty result wins
    5. confidence: sum of fixed weights for the fields that were found
"""

import re
from collections.abc import Callable
from datetime import UTC, datetime

from bs4 import BeautifulSoup

from app.infrastructure.observability.logging import get_logger
from app.models.domain.application_domain import (
    UNKNOWN_COMPANY,
    UNKNOWN_ROLE,
    ApplicationStatus,
    ParsedApplication,
)
from app.models.domain.gmail_domain import RawMessage

logger = get_logger(__name__)

# =================================================================
# VOCABULARIES
# =================================================================

# Regex fragments, matched case-insensitively on word boundaries
JOB_TERMS = [
    r"applications?",
    r"apply",
    r"applying",
    r"applied",
    r"interview(?:s|ing|ed)?",
    r"offers?",
    r"positions?",
    r"roles?",
    r"jobs?",
    r"careers?",
    r"hiring",
    r"recruit(?:er|ers|ing|ment)?",
    r"candidates?",
    r"rejection",
    r"rejected",
    r"thanks for applying",
    r"congratulations",
    r"phone screen",
    r"video call",
    r"next steps",
]

SPAM_TERMS = [
    r"unsubscribe",
    r"promotional",
    r"sale",
    r"discount",
    r"deals?",
    r"coupons?",
    r"newsletter",
    r"update your",
    r"verify your",
    r"reset password",
    r"confirm email",
]

# Evaluated top to bottom; the first group with a hit decides the status
STATUS_RULES: list[tuple[ApplicationStatus, list[str]]] = [
    (
        ApplicationStatus.REJECTED,
        [
            r"unfortunately",
            r"regret to inform",
            r"not\s+(?:to\s+)?(?:be\s+)?mov(?:e|ing)\s+forward",
            r"(?:pursue|proceed|move forward) with other candidates",
            r"other candidates (?:whose|who)",
            r"position has been filled",
            r"no longer (?:being )?considered",
            r"not (?:been )?selected",
            r"will not be proceeding",
            r"rejected",
            r"rejection",
        ],
    ),
    (
        ApplicationStatus.OFFER,
        [
            r"(?:pleased|excited|happy|delighted) to (?:offer|extend)",
            r"offer letter",
            r"offer of employment",
            r"extend (?:you )?an offer",
            r"job offer",
            r"congratulations",
        ],
    ),
    (
        ApplicationStatus.INTERVIEW,
        [
            r"interview (?:invitation|invite|request|scheduled|confirmation|confirmed)",
            r"invite you (?:to|for) (?:an? )?(?:interview|call|conversation|chat)",
            r"schedule (?:an? |your |the )?(?:interview|call|phone screen|chat|conversation)",
            r"(?:like|love) to (?:schedule|set up|invite you|speak with you|meet you)",
            r"phone screen",
            r"video (?:call|interview)",
            r"(?:technical|onsite|on-site|final|first|second)[- ]round",
            r"(?:technical|onsite|on-site|final|panel) interview",
            r"calendly\.com",
        ],
    ),
    (
        ApplicationStatus.APPLIED,
        [
            r"thank(?:s| you) for (?:applying|your application|submitting)",
            r"application (?:has been |was )?(?:received|submitted|confirmed)",
            r"received your application",
            r"successfully (?:applied|submitted)",
            r"application confirmation",
            r"applied",
        ],
    ),
]

# =================================================================
# FIELD EXTRACTION TABLES
# =================================================================

# Senders that speak for many companies (ATS, job boards) or for nobody (free mail)
NON_COMPANY_DOMAINS = {
    # ATS platforms
    "greenhouse.io",
    "greenhouse-mail.io",
    "lever.co",
    "workday.com",
    "myworkday.com",
    "myworkdayjobs.com",
    "icims.com",
    "jobvite.com",
    "smartrecruiters.com",
    "ashbyhq.com",
    "workablemail.com",
    "workable.com",
    "applytojob.com",
    "breezy.hr",
    "recruitee.com",
    "bamboohr.com",
    "jazzhr.com",
    "teamtailor.com",
    "successfactors.com",
    "taleo.net",
    "ultipro.com",
    "paylocity.com",
    # Job boards
    "linkedin.com",
    "indeed.com",
    "indeedemail.com",
    "glassdoor.com",
    "ziprecruiter.com",
    "monster.com",
    "dice.com",
    "wellfound.com",
    "angel.co",
    "hired.com",
    "otta.com",
    # Free mail providers
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
    "live.com",
    "icloud.com",
    "me.com",
    "aol.com",
    "proton.me",
    "protonmail.com",
}

# Second-level labels under a country TLD (acme.co.uk -> acme)
COUNTRY_SECOND_LEVELS = {"co", "com", "org", "net", "ac", "gov"}

# Only the first word may carry a dotted suffix (Booking.com); later words stop at a period
_NAME = r"[A-Z][\w&'-]*(?:\.[a-z]{2,})?(?:\s+(?:&\s+)?[A-Z][\w&'-]*){0,3}"
_SHORT_NAME = r"[A-Z][\w&'-]*(?:\.[a-z]{2,})?(?:\s+[A-Z][\w&'-]*){0,2}?"
_TITLE = r"[A-Z][\w/&+'-]*(?:\s+(?:of\s+|and\s+|&\s+|-\s+)?[A-Z0-9][\w/&+'-]*){0,6}"
_SUBJECT_END = r"\s*(?:[!:|,\-–]|$)"

SUBJECT_COMPANY_PATTERNS = [
    re.compile(
        r"(?:applying|application|applied|interest)\s+(?:to|at|with|in)\s+(?:join\s+)?"
        rf"(?P<value>[\w&.' ]+?){_SUBJECT_END}",
        re.IGNORECASE,
    ),
    re.compile(r"\bat\s+(?P<value>[\w&.' ]+?)" + _SUBJECT_END, re.IGNORECASE),
    re.compile(
        r"(?:thank you|thanks|update|news|message)\s+from\s+(?P<value>[\w&.' ]+?)" + _SUBJECT_END,
        re.IGNORECASE,
    ),
    re.compile(
        r"^(?P<value>[\w&.' ]+?)\s+(?:application|interview|offer)\s+"
        r"(?:update|confirmation|invitation|received)\b",
        re.IGNORECASE,
    ),
]

BODY_COMPANY_PATTERNS = [
    re.compile(
        r"(?i:thank(?:s| you) for (?:applying|your interest|your application))\s+"
        rf"(?i:to|at|with|in)\s+(?:(?i:joining)\s+)?(?P<value>{_NAME})"
    ),
    re.compile(
        rf"(?i:position|role|opportunity|opening|career)s?\s+(?i:at|with)\s+(?P<value>{_NAME})"
    ),
    re.compile(rf"(?i:welcome to|join)\s+(?P<value>{_NAME})"),
    re.compile(
        rf"\b(?i:the)\s+(?P<value>{_SHORT_NAME})\s+(?i:(?:recruiting|talent|hiring)\s+)?(?i:team)\b"
    ),
]

SUBJECT_ROLE_PATTERNS = [
    re.compile(
        r"application\s+(?:received|submitted|confirmed|confirmation|update)\s*"
        r"(?:for\s+|[:\-–|]\s*)(?:the\s+)?(?P<value>.+?)"
        r"(?:\s+(?:position|role|opening))?\s*(?:\b(?:at|with)\b.*)?$",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:application|applying|applied|interview(?:ing)?|offer)\s+for\s+(?:the\s+)?"
        r"(?P<value>.+?)(?:\s+(?:position|role|opening))?\s*(?:\b(?:at|with)\b.*|[!|–].*)?$",
        re.IGNORECASE,
    ),
]

BODY_ROLE_PATTERNS = [
    re.compile(
        r"(?i:applying|applied|application|interest|candidacy)\s+(?i:for|to)\s+(?:(?i:the|our)\s+)?"
        rf"(?P<value>{_TITLE})\s+(?i:position|role|opening|job)"
    ),
    re.compile(rf"(?i:for|to)\s+(?i:the)\s+(?P<value>{_TITLE})\s+(?i:position|role|opening)"),
    re.compile(rf"(?i:position|role)\s+(?i:of|as)\s+(?:(?i:an?|the)\s+)?(?P<value>{_TITLE})"),
    re.compile(
        r"(?i:applying|applied|application)\s+(?i:for)\s+(?:(?i:the)\s+)?"
        rf"(?P<value>{_TITLE})"
    ),
]

BODY_LOCATION_PATTERNS = [
    re.compile(r"(?i:location)\s*[:\-]\s*(?P<value>[A-Z][\w .'-]*?(?:,\s*[A-Z][\w .'-]*?)?)(?=[.;|()]|\s{2}|\s+[a-z]|$)"),
    re.compile(
        r"(?i:based in|located in|office in|offices in|position in|role in)\s+"
        r"(?P<value>[A-Z][A-Za-z.'-]*(?:\s+[A-Z][A-Za-z.'-]*){0,2},\s*[A-Z]{2}\b)"
    ),
    re.compile(
        r"(?i:based in|located in|office in)\s+"
        r"(?P<value>[A-Z][A-Za-z.'-]*(?:\s+[A-Z][A-Za-z.'-]*){0,2})"
    ),
    re.compile(r"\b(?P<value>(?i:remote|hybrid))\b(?=\s*(?:[-–,;.)]|\s(?i:position|role|opportunity)))"),
]

GENERIC_NAMES = {
    "the",
    "our",
    "your",
    "you",
    "us",
    "we",
    "a",
    "an",
    "this",
    "team",
    "hiring",
    "careers",
    "career",
    "jobs",
    "job",
    "recruiting",
    "talent",
    "position",
    "role",
    "application",
    "your application",
    "the position",
    "the role",
    "unknown",
    "noreply",
    "no-reply",
}
COMPANY_SUFFIXES = re.compile(r"[,\s]+(?:inc|llc|ltd|corp|corporation|co|gmbh|plc)\.?$", re.IGNORECASE)
TRAILING_PUNCTUATION = " \t.,;:!?-–|\"'()"

# =================================================================
# CONFIDENCE
# =================================================================

CONFIDENCE_WEIGHTS = {
    "company": 0.25,
    "role": 0.25,
    "date": 0.15,
    "location": 0.10,
    "status": 0.25,
}

_MARKUP = re.compile(r"<\s*(?:html|body|div|p|br|table|span|a|td|tr|head|style|!doctype)\b", re.IGNORECASE)


def _term_regex(terms: list[str]) -> re.Pattern:
    body = "|".join(term.replace(" ", r"\s+") for term in terms)
    return re.compile(rf"\b(?:{body})\b", re.IGNORECASE)


JOB_REGEX = _term_regex(JOB_TERMS)
SPAM_REGEX = _term_regex(SPAM_TERMS)
STATUS_REGEXES = [(status, _term_regex(patterns)) for status, patterns in STATUS_RULES]


# =================================================================
# NORMALISATION
# =================================================================


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def strip_markup(html: str) -> str:
    """Visible text of an HTML fragment; script and style content dropped."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head", "title"]):
        tag.decompose()
    return soup.get_text(separator=" ")


def normalize_body(body: str, is_html: bool = False) -> str:
    """
    Plain text that all matching runs against.

    Markup (flagged by the fetcher or sniffed) goes through BeautifulSoup,
    which also decodes entities. Non-ASCII characters pass through untouched.
    """
    if not body:
        return ""
    text = body
    if is_html or _MARKUP.search(body):
        try:
            text = strip_markup(body)
        except Exception as e:
            logger.warning("Markup stripping failed, using raw body", error=str(e))
    return collapse_whitespace(text)


# =================================================================
# STRATEGIES (text -> value or None)
# =================================================================


def _clean_name(value: str | None, max_length: int = 80) -> str | None:
    if not value:
        return None
    value = collapse_whitespace(value).strip(TRAILING_PUNCTUATION)
    value = COMPANY_SUFFIXES.sub("", value).strip(TRAILING_PUNCTUATION)
    if len(value) < 2 or len(value) > max_length:
        return None
    if value.casefold() in GENERIC_NAMES:
        return None
    return value


def _first_match(patterns: list[re.Pattern], text: str, max_length: int = 80) -> str | None:
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = _clean_name(match.group("value"), max_length=max_length)
            if value:
                return value
    return None


def company_from_sender_domain(sender: str) -> str | None:
    """Registrable label of the sender's domain: jobs@mail.acme.com -> acme."""
    address = sender.strip()
    if "<" in address and ">" in address:
        address = address.split("<", 1)[1].split(">", 1)[0]
    if "@" not in address:
        return None

    domain = address.rsplit("@", 1)[1].strip().strip(">").lower().rstrip(".")
    if not domain or "." not in domain:
        return None
    if any(domain == skip or domain.endswith("." + skip) for skip in NON_COMPANY_DOMAINS):
        return None

    labels = domain.split(".")
    if len(labels) >= 3 and len(labels[-1]) == 2 and labels[-2] in COUNTRY_SECOND_LEVELS:
        label = labels[-3]
    else:
        label = labels[-2]

    return label if label and label not in GENERIC_NAMES else None


def company_from_subject(subject: str) -> str | None:
    return _first_match(SUBJECT_COMPANY_PATTERNS, subject)


def company_from_body(body: str) -> str | None:
    return _first_match(BODY_COMPANY_PATTERNS, body[:2000])


def role_from_subject(subject: str) -> str | None:
    return _first_match(SUBJECT_ROLE_PATTERNS, subject, max_length=100)


def role_from_body(body: str) -> str | None:
    return _first_match(BODY_ROLE_PATTERNS, body[:3000], max_length=100)


def location_from_body(body: str) -> str | None:
    value = _first_match(BODY_LOCATION_PATTERNS, body[:4000], max_length=60)
    if value and value.lower() in ("remote", "hybrid"):
        return value.capitalize()
    return value


# Each entry: (message field the extractor reads, extractor)
Strategy = tuple[str, Callable[[str], str | None]]

COMPANY_STRATEGIES: list[Strategy] = [
    ("sender", company_from_sender_domain),
    ("subject", company_from_subject),
    ("body", company_from_body),
]
ROLE_STRATEGIES: list[Strategy] = [
    ("subject", role_from_subject),
    ("body", role_from_body),
]
LOCATION_STRATEGIES: list[Strategy] = [
    ("body", location_from_body),
]


class EmailClassifier:
    """Classifies mailbox messages into job-application events."""

    def __init__(self, weights: dict[str, float] | None = None):
        self.weights = dict(weights or CONFIDENCE_WEIGHTS)

    def classify(self, message: RawMessage) -> ParsedApplication | None:
        """
        Classify one message.

        Args:
            message: Message as fetched from the mailbox

        Returns:
            ParsedApplication for job-related messages, otherwise None
        """
        try:
            return self._classify(message)
        except Exception as e:
            logger.error(
                "Classifier failed, treating message as not job related",
                message_id=message.message_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _classify(self, message: RawMessage) -> ParsedApplication | None:
        subject = collapse_whitespace(message.subject or "")
        body = normalize_body(message.body or "", message.is_html)
        fields = {"sender": message.sender or "", "subject": subject, "body": body}

        text = f"{subject} {body}"
        if not self.is_job_related(text):
            return None

        status, status_matched = self.detect_status(text)
        company = self._run_strategies(COMPANY_STRATEGIES, fields, message.message_id)
        role = self._run_strategies(ROLE_STRATEGIES, fields, message.message_id)
        location = self._run_strategies(LOCATION_STRATEGIES, fields, message.message_id)
        date_applied, date_extracted = self._date_applied(message)

        found = {
            "company": company is not None,
            "role": role is not None,
            "date": date_extracted,
            "location": location is not None,
            "status": status_matched,
        }

        parsed = ParsedApplication(
            company=company or UNKNOWN_COMPANY,
            role=role or UNKNOWN_ROLE,
            status=status,
            date_applied=date_applied,
            location=location,
            confidence=self.score(found),
            email_id=message.message_id,
        )

        logger.debug(
            "Message classified",
            message_id=message.message_id,
            status=parsed.status.value,
            confidence=parsed.confidence,
            fields_found=[name for name, ok in found.items() if ok],
        )
        return parsed

    def is_job_related(self, text: str) -> bool:
        """True iff the text carries at least one job-vocabulary term."""
        if JOB_REGEX.search(text):
            return True
        if SPAM_REGEX.search(text):
            logger.debug("Skipping marketing message without job terms")
        return False

    def detect_status(self, text: str) -> tuple[ApplicationStatus, bool]:
        """Highest-priority status with a keyword hit, and whether any group hit."""
        for status, regex in STATUS_REGEXES:
            if regex.search(text):
                return status, True
        return ApplicationStatus.APPLIED, False

    def score(self, found: dict[str, bool]) -> float:
        total = sum(weight for name, weight in self.weights.items() if found.get(name))
        return round(min(total, 1.0), 4)

    def _run_strategies(
        self, strategies: list[Strategy], fields: dict[str, str], message_id: str
    ) -> str | None:
        for source, extractor in strategies:
            try:
                value = extractor(fields[source])
            except Exception as e:
                logger.warning(
                    "Extractor failed",
                    message_id=message_id,
                    extractor=extractor.__name__,
                    error=str(e),
                )
                continue
            if value:
                return value
        return None

    def _date_applied(self, message: RawMessage) -> tuple[str, bool]:
        """received_at as YYYY-MM-DD, else today's date (not counted as extracted)."""
        received = message.received_at
        if isinstance(received, datetime):
            try:
                if received.tzinfo is not None:
                    received = received.astimezone(UTC)
                return received.date().isoformat(), True
            except (ValueError, OverflowError):
                pass
        return datetime.now(UTC).date().isoformat(), False


# Singleton instance for application use
email_classifier = EmailClassifier()
