"""
Gemini AI service for writing/speaking grading, CEFR evaluation and audio transcription
"""
import google.generativeai as genai
from app.config import settings
import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")

# Percentage thresholds used when no evaluator model is configured
CEFR_PERCENTAGE_FLOOR = (
    (90, "C2"),
    (75, "C1"),
    (60, "B2"),
    (45, "B1"),
    (30, "A2"),
)

# Configure Gemini API
if settings.GEMINI_API_KEY:
    genai.configure(api_key=settings.GEMINI_API_KEY)


def _strip_code_fence(text: str) -> str:
    """Remove markdown code blocks around a JSON payload"""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:-3].strip()
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:-3].strip()
    return cleaned


def cefr_level_from_percentage(percentage: float) -> str:
    for floor, level in CEFR_PERCENTAGE_FLOOR:
        if percentage >= floor:
            return level
    return "A1"


class GeminiService:
    """Service for all Gemini AI operations"""

    def __init__(self):
        self.enabled = bool(settings.GEMINI_API_KEY)
        self.model = genai.GenerativeModel(settings.GEMINI_MODEL) if self.enabled else None

    # ---- Writing / Speaking ----

    def grade_writing(self, level: str, task: Dict[str, Any], user_text: str) -> Tuple[float, str]:
        """
        Grade a writing response against the task rubric

        Args:
            level: Target CEFR level of the attempt
            task: {"prompt", "rubric", "max_score"}
            user_text: Learner's text

        Returns:
            Tuple of (score, feedback); score is not clamped here
        """
        return self._grade_task("writing", level, task, user_text)

    def grade_speaking(self, level: str, task: Dict[str, Any], transcript: str) -> Tuple[float, str]:
        """Grade a speaking response from its transcript"""
        return self._grade_task("speaking", level, task, transcript)

    def _grade_task(self, skill: str, level: str, task: Dict[str, Any], response_text: str) -> Tuple[float, str]:
        if not self.enabled:
            return 0.0, "GEMINI_API_KEY not set; grading skipped."

        prompt = f"""
You are a CEFR Arabic (fus'ha) {skill} assessor grading a {level} level exam task.

**Task:** {task["prompt"]}
**Rubric:** {json.dumps(task.get("rubric") or {}, ensure_ascii=False)}
**Maximum score:** {task["max_score"]}
**Learner response{" (transcript)" if skill == "speaking" else ""}:**
{response_text}

Score the response from 0 to {task["max_score"]} following the rubric.
An empty or off-topic response scores 0.

Return ONLY valid JSON (no markdown):
{{
  "score": 7.5,
  "feedback": "Short, specific feedback for the learner",
  "rubricBreakdown": {{"content": 3, "grammar": 2.5}}
}}
"""
        response = self.model.generate_content(prompt)
        result = json.loads(_strip_code_fence(response.text))

        score = float(result.get("score", 0.0))
        feedback = str(result.get("feedback") or "No feedback provided")
        return score, feedback

    # ---- CEFR level ----

    def evaluate_cefr_level(
        self,
        total_score: float,
        max_score: float,
        percentage: float,
        language: str
    ) -> Tuple[str, str]:
        """
        Estimate the CEFR level achieved for a completed attempt

        Returns:
            Tuple of (cefr_level, feedback)
        """
        if not self.enabled:
            return (
                cefr_level_from_percentage(percentage),
                "CEFR level was derived from the score (AI evaluator not configured)."
            )

        prompt = f"""
You are an expert CEFR examiner for Arabic (fus'ha).

Score: {total_score:.1f}/{max_score:.1f}, percentage: {percentage:.1f}%.
Write the feedback in the language with code "{language}".

Return ONLY valid JSON (no markdown):
{{
  "cefrLevel": "B1",
  "feedback": "Two or three sentences about the learner's level and next steps"
}}
"""
        try:
            response = self.model.generate_content(prompt)
            result = json.loads(_strip_code_fence(response.text))
        except Exception as e:
            logger.error(f"CEFR evaluation failed, falling back to score bands: {str(e)}")
            return cefr_level_from_percentage(percentage), "Level was estimated from the score."

        level = str(result.get("cefrLevel") or result.get("level") or "").strip().upper()[:2]
        if level not in CEFR_LEVELS:
            level = cefr_level_from_percentage(percentage)
        feedback = str(result.get("feedback") or "").strip()[:500] or "Evaluation complete."
        return level, feedback

    # ---- Audio ----

    def transcribe_audio(self, file_path: str) -> Optional[str]:
        """
        Transcribe a locally stored speaking recording

        Returns:
            Transcript text, or None when the file is missing or AI is disabled
        """
        resolved = os.path.abspath(file_path)
        if not os.path.exists(resolved):
            logger.warning(f"Audio file not found for transcription: {resolved}")
            return None

        if not self.enabled:
            logger.warning("Audio transcription requires GEMINI_API_KEY")
            return None

        uploaded_file = genai.upload_file(path=resolved)
        logger.info(f"Uploaded audio to Gemini: {uploaded_file.name}")

        response = self.model.generate_content([
            uploaded_file,
            "Transcribe this Arabic speech verbatim. Return only the transcript text."
        ])
        transcript = (response.text or "").strip()
        return transcript or None


# Global instance
gemini_service = GeminiService()
