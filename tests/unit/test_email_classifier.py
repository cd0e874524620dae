from datetime import UTC, datetime

import pytest

from app.models.domain.application_domain import ApplicationStatus
from app.models.domain.gmail_domain import RawMessage
from app.services import email_classifier as classifier_module
from app.services.email_classifier import (
    EmailClassifier,
    company_from_sender_domain,
    location_from_body,
    normalize_body,
)
from tests.fakes import make_message


@pytest.fixture
def classifier():
    return EmailClassifier()


def test_application_received_from_company_domain(classifier):
    message = RawMessage(
        message_id="m-1",
        sender="jobs@acme.com",
        subject="Application Received: Backend Engineer",
        body="Thank you for applying to Acme. We will review your application shortly.",
        received_at=datetime(2024, 3, 5, 9, 0, tzinfo=UTC),
    )

    parsed = classifier.classify(message)

    assert parsed is not None
    assert parsed.company == "acme"
    assert parsed.role == "Backend Engineer"
    assert parsed.status == ApplicationStatus.APPLIED
    assert parsed.date_applied == "2024-03-05"
    assert parsed.email_id == "m-1"
    assert parsed.confidence > 0
    # company + role + date + status
    assert parsed.confidence == pytest.approx(0.9)


def test_marketing_email_is_not_job_related(classifier):
    message = make_message(
        "m-2",
        sender="deals@shop.example.com",
        subject="Weekend deals inside",
        body="50% off everything in our sale. Unsubscribe at any time.",
    )

    assert classifier.classify(message) is None


def test_empty_message_returns_none(classifier):
    assert classifier.classify(RawMessage(message_id="m-3")) is None


def test_rejection_beats_interview(classifier):
    message = make_message(
        "m-4",
        subject="Your application",
        body=(
            "Thank you for interviewing with us. Unfortunately, we have decided "
            "to move forward with other candidates."
        ),
    )

    parsed = classifier.classify(message)

    assert parsed.status == ApplicationStatus.REJECTED


def test_offer_beats_interview(classifier):
    message = make_message(
        "m-5",
        subject="Next steps",
        body="After your final interview we are pleased to offer you the position.",
    )

    assert classifier.classify(message).status == ApplicationStatus.OFFER


def test_interview_invitation(classifier):
    message = make_message(
        "m-6",
        sender="talent@hooli.com",
        subject="Interview invitation - Software Engineer at Hooli",
        body="We would like to schedule a phone screen with you next week.",
    )

    parsed = classifier.classify(message)

    assert parsed.status == ApplicationStatus.INTERVIEW
    assert parsed.company == "hooli"


def test_no_status_keyword_defaults_to_applied_without_status_weight(classifier):
    message = make_message(
        "m-7",
        sender="digest@weeklyjobs.io",
        subject="Careers digest",
        body="New jobs this week.",
    )

    parsed = classifier.classify(message)

    assert parsed.status == ApplicationStatus.APPLIED
    assert parsed.role == "Unknown Position"
    # company + date only
    assert parsed.confidence == pytest.approx(0.4)


def test_html_body_is_stripped_before_matching(classifier):
    message = make_message(
        "m-8",
        sender="no-reply@greenhouse.io",
        subject="Thanks for applying",
        body=(
            "<html><head><style>.x { color: red; }</style></head><body>"
            "<p>Thank you for applying for the <b>Data Analyst</b> position at Initech.</p>"
            "</body></html>"
        ),
        is_html=True,
    )

    parsed = classifier.classify(message)

    assert parsed.company == "Initech"
    assert parsed.role == "Data Analyst"
    assert parsed.status == ApplicationStatus.APPLIED


def test_unicode_survives_classification(classifier):
    message = make_message("m-9", subject="Application Received: Ingénieur Logiciel")

    parsed = classifier.classify(message)

    assert parsed.role == "Ingénieur Logiciel"


def test_missing_received_at_uses_today_without_date_weight(classifier):
    message = make_message("m-10", received_at=None)

    parsed = classifier.classify(message)

    assert parsed.date_applied == datetime.now(UTC).date().isoformat()
    assert parsed.confidence == pytest.approx(0.75)


def test_broken_markup_degrades_instead_of_raising(classifier):
    message = make_message(
        "m-11",
        subject="",
        body="<div><p>Interview invitation for the role</div <<<",
        received_at=None,
    )

    parsed = classifier.classify(message)

    assert parsed is not None
    assert parsed.status == ApplicationStatus.INTERVIEW
    assert 0.0 <= parsed.confidence <= 1.0


def test_failing_extractor_falls_through_to_next(monkeypatch, classifier):
    def boom(text):
        raise ValueError("bad input")

    monkeypatch.setattr(
        classifier_module,
        "COMPANY_STRATEGIES",
        [("subject", boom), ("sender", company_from_sender_domain)],
    )

    parsed = classifier.classify(make_message("m-12"))

    assert parsed.company == "acme"


def test_classify_never_raises(monkeypatch, classifier):
    def boom(body, is_html=False):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(classifier_module, "normalize_body", boom)

    assert classifier.classify(make_message("m-13")) is None


def test_score_is_additive():
    classifier = EmailClassifier()

    assert classifier.score({}) == 0.0
    assert classifier.score({"company": True, "status": True}) == pytest.approx(0.5)
    assert classifier.score({"status": True, "company": True}) == pytest.approx(0.5)
    assert classifier.score(dict.fromkeys(classifier.weights, True)) == pytest.approx(1.0)


def test_score_is_capped_at_one():
    classifier = EmailClassifier(weights={"company": 0.8, "role": 0.8})

    assert classifier.score({"company": True, "role": True}) == 1.0


def test_detect_status_without_keywords():
    assert EmailClassifier().detect_status("") == (ApplicationStatus.APPLIED, False)


@pytest.mark.parametrize(
    "sender, expected",
    [
        ("jobs@acme.com", "acme"),
        ("Acme Careers <careers@mail.acme.com>", "acme"),
        ("Jobs <jobs@initech.co.uk>", "initech"),
        ("no-reply@greenhouse.io", None),
        ("notifications@us.greenhouse-mail.io", None),
        ("friend@gmail.com", None),
        ("not an address", None),
    ],
)
def test_company_from_sender_domain(sender, expected):
    assert company_from_sender_domain(sender) == expected


def test_location_extraction():
    assert location_from_body("Location: San Francisco, CA. Apply today") == "San Francisco, CA"
    assert location_from_body("This is a remote position on our team") == "Remote"
    assert location_from_body("No location here") is None


def test_normalize_body_decodes_entities_and_keeps_unicode():
    assert normalize_body("<p>Tom &amp; Jerry&nbsp;Inc</p>", is_html=True) == "Tom & Jerry Inc"
    assert normalize_body("Café — naïve 日本") == "Café — naïve 日本"
    assert normalize_body("") == ""
