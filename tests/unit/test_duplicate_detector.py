from app.models.domain.application_domain import ApplicationStatus, ParsedApplication
from app.services.duplicate_detector import DuplicateDetector, DuplicateIndex


def _application(**overrides) -> ParsedApplication:
    data = {
        "company": "Acme",
        "role": "Backend Engineer",
        "status": ApplicationStatus.APPLIED,
        "date_applied": "2024-03-05",
        "confidence": 0.9,
        "email_id": "m-1",
    }
    data.update(overrides)
    return ParsedApplication(**data)


def test_same_key_and_status_is_duplicate():
    detector = DuplicateDetector()
    existing = [_application(email_id="m-0")]

    assert detector.is_duplicate(_application(), existing) is True


def test_key_comparison_ignores_case_and_whitespace():
    detector = DuplicateDetector()
    existing = [_application(company="  ACME ", role="backend engineer")]

    assert detector.is_duplicate(_application(), existing) is True


def test_different_status_is_not_duplicate():
    detector = DuplicateDetector()
    existing = [_application()]

    candidate = _application(status=ApplicationStatus.INTERVIEW)

    assert detector.is_duplicate(candidate, existing) is False


def test_different_date_is_a_distinct_application():
    detector = DuplicateDetector()
    existing = [_application()]

    assert detector.is_duplicate(_application(date_applied="2024-06-01"), existing) is False


def test_empty_existing_set():
    assert DuplicateDetector().is_duplicate(_application(), []) is False


def test_index_sees_records_added_during_the_run():
    detector = DuplicateDetector()
    index = detector.build_index([])

    first = _application(email_id="m-1")
    second = _application(email_id="m-2")

    assert detector.is_duplicate(first, index) is False
    index.add(first)
    assert detector.is_duplicate(second, index) is True
    assert len(index) == 1


def test_index_matches_list_answer():
    existing = [_application(), _application(role="Data Analyst", email_id="m-9")]
    index = DuplicateIndex(existing)
    detector = DuplicateDetector()

    for candidate in (
        _application(),
        _application(role="data analyst"),
        _application(role="Designer"),
        _application(status=ApplicationStatus.REJECTED),
    ):
        assert detector.is_duplicate(candidate, index) == detector.is_duplicate(
            candidate, existing
        )
