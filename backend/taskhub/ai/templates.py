"""Prompt templates for AI features.

Templates are Jinja2 strings rendered with ``render_template``.
"""

from typing import Any

from jinja2 import Environment, BaseLoader


# Jinja2 environment for template rendering
_jinja_env = Environment(loader=BaseLoader())


def render_template(template_str: str, variables: dict[str, Any]) -> str:
    """Render a Jinja2 template string with variables.

    Args:
        template_str: Template string with {{ variable }} placeholders
        variables: Variables to substitute

    Returns:
        Rendered string
    """
    template = _jinja_env.from_string(template_str)
    return template.render(**variables)


# =============================================================================
# Task Prioritization
# =============================================================================

TASK_PRIORITIZATION = {
    "template_key": "task_prioritization",
    "display_name": "Prioritize Tasks",
    "system_prompt": """You are a project management AI that provides task prioritization in JSON format.""",
    "user_prompt_template": """Analyze the following tasks and provide prioritization.

Project context:
- Name: {{ name }}
{% if description %}
- Description: {{ description }}
{% endif %}
- Status: {{ status }}
- Team size: {{ team_size }}

Tasks to analyze:
{{ tasks }}

For each task, provide:
1. Suggested priority (low/medium/high/urgent)
2. Priority score (0-100, where 100 is most urgent)
3. Brief reasoning for the prioritization
4. Suggested due date (ISO 8601) if not set
5. Estimated complexity (1-10 scale)

Consider dependencies between tasks, project deadlines, task complexity and
business impact.

Respond with JSON only:
{"prioritization": [ {"taskId": "...", "suggestedPriority": "...", "priorityScore": 0,
"reasoning": "...", "suggestedDueDate": null, "estimatedComplexity": 1} ]}""",
}
