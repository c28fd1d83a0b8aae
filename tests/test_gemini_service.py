from app.services.gemini_service import (
    GeminiService,
    _strip_code_fence,
    cefr_level_from_percentage,
)


def test_cefr_bands_from_percentage():
    assert cefr_level_from_percentage(95) == "C2"
    assert cefr_level_from_percentage(75) == "C1"
    assert cefr_level_from_percentage(58.8) == "B1"
    assert cefr_level_from_percentage(30) == "A2"
    assert cefr_level_from_percentage(0) == "A1"


def test_code_fences_are_stripped():
    assert _strip_code_fence('```json\n{"score": 3}\n```') == '{"score": 3}'
    assert _strip_code_fence('```\n{"score": 3}\n```') == '{"score": 3}'
    assert _strip_code_fence(' {"score": 3} ') == '{"score": 3}'


def test_service_without_api_key_degrades():
    service = GeminiService()
    assert service.enabled is False

    score, feedback = service.grade_writing("B1", {"prompt": "Write", "max_score": 15}, "text")
    assert score == 0.0
    assert "GEMINI_API_KEY" in feedback

    level, _ = service.evaluate_cefr_level(10, 17, 58.82, "uz")
    assert level == "B1"


def test_transcription_of_missing_file_returns_none(tmp_path):
    service = GeminiService()
    assert service.transcribe_audio(str(tmp_path / "missing.webm")) is None


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    def __init__(self, text):
        self.text = text

    def generate_content(self, prompt):
        return FakeResponse(self.text)


def test_cefr_evaluation_falls_back_on_invalid_level():
    service = GeminiService()
    service.enabled = True
    service.model = FakeModel('{"cefrLevel": "Z9", "feedback": "Good work"}')

    level, feedback = service.evaluate_cefr_level(16, 20, 80.0, "en")

    assert level == "C1"
    assert feedback == "Good work"


def test_writing_grade_is_parsed_from_model_json():
    service = GeminiService()
    service.enabled = True
    service.model = FakeModel('```json\n{"score": 7.5, "feedback": "Clear structure"}\n```')

    score, feedback = service.grade_writing("B2", {"prompt": "Write", "rubric": {"content": 5}, "max_score": 10}, "text")

    assert score == 7.5
    assert feedback == "Clear structure"
