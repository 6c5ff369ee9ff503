# medscan/llm/prompts.py
from __future__ import annotations

from typing import Dict

from medscan.intake.schema import LiveFeedbackContext, ServiceType


_RESULT_SHAPE = """{{
  "{score_key}": <number 0-100>,
  "overallAssessment": "<2-sentence summary>",
  "keyProblemPoints": ["<point1>", "<point2>", "<point3>"],
  "detectedProblems": [
    {{
      "problem": "<issue name>",
      "description": "<1-sentence description>",
      "suggestedTreatment": "<treatment>"
    }}
  ]
}}"""


ANALYSIS_SYSTEM_PROMPTS: Dict[ServiceType, str] = {
    ServiceType.FACIAL: (
        "You are an expert facial analysis AI. Your task is to analyze patient images "
        "of their face to identify potential issues, suggest treatments, and provide a "
        "holistic summary. Respond in JSON format only. Do not wrap the JSON in markdown backticks."
    ),
    ServiceType.DENTAL: (
        "You are an expert dental analysis AI. Your task is to analyze patient images "
        "of teeth to identify potential issues, suggest treatments, and provide a "
        "holistic summary. Respond in JSON format only. Do not wrap the JSON in markdown backticks."
    ),
}

_SUBJECT = {
    ServiceType.FACIAL: (
        "a patient's face and skin",
        "all visible potential skincare and aesthetic issues",
    ),
    ServiceType.DENTAL: (
        "a patient's teeth and gums",
        "all visible potential dental and oral health issues",
    ),
}


def analysis_user_prompt(service_type: ServiceType, image_count: int) -> str:
    subject, scope = _SUBJECT[service_type]
    shape = _RESULT_SHAPE.format(score_key=service_type.score_key)
    return (
        f"Analyze these {image_count} images of {subject}. "
        f"Perform a comprehensive analysis to identify {scope}.\n\n"
        f"Provide the following JSON response:\n{shape}"
    )


_LIVE_FOCUS = {
    ServiceType.FACIAL: (
        "- If the person is smiling, say \"kya muskurahat hai!\" or \"bahut acchi smile hai!\".\n"
        "- If they look happy, say \"kitne khush lag rahe hain!\".\n"
        "- If they look neutral or serious, say \"thoda smile kijiye\" or \"camera ki taraf dekhiye\".\n"
    ),
    ServiceType.DENTAL: (
        "- If the teeth are clearly visible, praise the smile, e.g. \"bahut acchi smile hai!\".\n"
        "- If the mouth is closed, ask them to show their teeth, e.g. \"daant dikhaiye\".\n"
        "- If they are too far away, say \"thoda paas aaiye\".\n"
    ),
}


def live_feedback_prompt(context: LiveFeedbackContext) -> str:
    used = ", ".join(f'"{p}"' for p in context.previously_used_phrases) or "none"
    return (
        "You are a fun, encouraging AI assistant. Look at a single camera frame of "
        f"{context.name} and give a very short, positive comment about their expression "
        "in Hindi.\n"
        f"{_LIVE_FOCUS[context.service_type]}"
        "- If no clear face is visible, return an empty string: { \"expressionText\": \"\" }\n"
        f"- Do not repeat any of these phrases: {used}.\n"
        "- Respond in JSON format only: { \"expressionText\": \"<your_hindi_phrase>\" }\n"
        "- Keep the phrase to 4-5 words maximum."
    )
