"""Email template generation from a short description: one LLM call in JSON mode, fixed template without a key."""
from .config import settings
from .email_classifier import _get_client, parse_json_response

TEMPLATE_FIELDS = ("name", "description", "subject", "body")


def fallback_template(prompt: str) -> dict:
    return {
        "name": "Generated Template",
        "description": f"Template based on: {prompt}",
        "subject": "Regarding {{subject}}",
        "body": (
            "Dear {{client_name}},\n\n"
            "Thank you for contacting us regarding {{subject}}.\n\n"
            "We would like to inform you that {{details}}.\n\n"
            "If you have any questions, please do not hesitate to contact us.\n\n"
            "Best regards,\n"
            "{{signature}}"
        ),
    }


def build_template_prompt(prompt: str) -> str:
    return f"""Based on the following description, generate a professional email template.

Description: {prompt}

Return a JSON object with:
- name (string): short template name
- description (string): brief description
- subject (string): email subject line with {{{{variables}}}} for dynamic content
- body (string): email body with {{{{variables}}}} for dynamic content like {{{{client_name}}}}, {{{{date}}}}, {{{{address}}}}, {{{{signature}}}}

Use {{{{variable_name}}}} syntax for all dynamic parts. Return ONLY valid JSON."""


def generate_template(prompt: str) -> dict:
    """Returns {name, description, subject, body}; the fixed template when no OpenAI key is set."""
    if not settings.openai_api_key:
        return fallback_template(prompt)
    client = _get_client()
    response = client.chat.completions.create(
        model=settings.openai_model,
        temperature=settings.draft_temperature,
        max_tokens=1000,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": "You are a professional email template generator. Always return valid JSON."},
            {"role": "user", "content": build_template_prompt(prompt)},
        ],
    )
    data = parse_json_response((response.choices[0].message.content or "").strip())
    if not data:
        raise ValueError("No template generated")
    return {key: str(data.get(key) or "") for key in TEMPLATE_FIELDS}
