"""
Prompt builder for activity recommendations.

Renders a fixed template asking the AI provider for a single JSON document:

    {
      "analysis": {"overall", "pace", "heartRate", "caloriesBurned"},
      "improvements": [{"area", "recommendation"}],
      "suggestions": [{"workout", "nutrition"}],
      "safetyTips": [str]
    }

Pure and deterministic: the same activity always yields a byte-identical
prompt (additional metrics are rendered with sorted keys).
"""
import json
from typing import Any, Mapping, Optional


RECOMMENDATION_PROMPT_TEMPLATE = """Analyze the fitness activity and provide a detailed recommendation in the following EXACT JSON format:
{{
  "analysis": {{
    "overall": "Provide an overall assessment of the activity.",
    "pace": "Evaluate the pace of the activity and suggest improvements if necessary.",
    "heartRate": "Analyze heart rate data and provide insights on cardiovascular performance.",
    "caloriesBurned": "Comment on the calories burned and suggest dietary recommendations if applicable."
  }},
  "improvements": [
    {{
      "area": "Specify the area of improvement (e.g., pace, endurance, technique).",
      "recommendation": "Provide a specific recommendation to improve in this area."
    }}
  ],
  "suggestions": [
    {{
      "workout": "Workout suggestion based on the activity data.",
      "nutrition": "Nutritional advice to complement the activity."
    }}
  ],
  "safetyTips": [
    "Safety tip relevant to the activity performed."
  ]
}}

Analyze the following activity data:
Activity Type: {activity_type}
Duration (minutes): {duration}
Calories Burned: {calories_burned}
Additional Metrics: {additional_metrics}

Provide the response in JSON format only, without any additional text."""


def _activity_type_name(activity_type: Any) -> str:
    # Enum member or the raw stored string
    return getattr(activity_type, "value", activity_type)


def _render_metrics(metrics: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(dict(metrics or {}), sort_keys=True, default=str)


def build_prompt(activity) -> str:
    """
    Render the recommendation prompt for an activity.

    Accepts anything exposing activity_type, duration, calories_burned and
    additional_metrics (ORM Activity or the ActivityResponse message).
    """
    return RECOMMENDATION_PROMPT_TEMPLATE.format(
        activity_type=_activity_type_name(activity.activity_type),
        duration=activity.duration,
        calories_burned=activity.calories_burned,
        additional_metrics=_render_metrics(activity.additional_metrics),
    )
