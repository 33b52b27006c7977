# path: app/services/gemini.py
# 外部 AI（Gemini）產生限時任務建議。這裡只負責「問」，回來的東西一律交給 quests.validate_batch 檢查。
from __future__ import annotations
import json

from app.core.config import settings

QUEST_SYSTEM_PROMPT = """You are a quest designer. Rank candidate businesses and output STRICT JSON only in this schema:
{
 "generated_for_window_minutes": number,
 "quests": [
  {
   "quest_id": string,
   "business_id": string,
   "type": "CHECK_IN"|"PHOTO"|"ROUTE",
   "title": string,
   "short_prompt": string,
   "steps": [{"text": string}],
   "points": number,
   "expires_in_minutes": number,
   "suggested_percent_off": number,
   "safety_note": string
  }
 ]
}
No extra text. Ensure business_id is from candidates.
Pick expires_in_minutes tailored to the situation (time of day, busyness, distance) but <= window_minutes.
Suggest coupon within the business min/max bounds.
Each quest must differ in phrasing, structure, and player action.
For landmarks or non-commerce points (tags may include "landmark"), design leisure/experience-oriented tasks only
(photo, observation, route, trivia); avoid any language about buying or spending money."""


class GeminiQuestGenerator:
    """Provider for Google Gemini using the official SDK."""

    def __init__(self, api_key: str, model_name: str | None = None, timeout: float | None = None):
        self.api_key = api_key
        self.model_name = model_name or settings.GEMINI_MODEL
        self.timeout = timeout or settings.GEMINI_TIMEOUT_SECONDS

    def __call__(self, payload: dict) -> str:
        import google.generativeai as genai

        # SDK 是模組層級設定 key，每次呼叫前重設
        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(
            model_name=self.model_name,
            system_instruction=QUEST_SYSTEM_PROMPT,
        )
        response = model.generate_content(
            json.dumps(payload, ensure_ascii=False, indent=2),
            generation_config={"temperature": 0.5, "max_output_tokens": 1024},
            request_options={"timeout": self.timeout},
        )
        return response.text


def get_quest_generator() -> GeminiQuestGenerator | None:
    # 沒設 key 就回 None，任務產生會直接走備用模板
    if not settings.GEMINI_API_KEY:
        return None
    return GeminiQuestGenerator(api_key=settings.GEMINI_API_KEY)
