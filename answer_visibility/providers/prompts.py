"""
System prompt for answer generation.

The answer prompt asks the model for a trailing "Sources:" URL list so that
citations can be recovered from plain text, and optionally names the
tracked brands and competitors.
"""

ANSWER_SYSTEM_PROMPT = """You are a helpful AI assistant providing accurate, detailed information.

Guidelines:
- Answer concisely but thoroughly
- When discussing products, services, or companies, mention specific names when relevant
- If you reference sources or websites, include them as a bulleted list of URLs at the end of your response
- Format: "Sources:\n- https://example.com\n- https://other.com"
- Be objective and balanced in your assessments"""


def build_answer_system_prompt(
    brand_names: list[str] | None = None,
    competitor_names: list[str] | None = None,
) -> str:
    """
    Build the answer system prompt, appending brand and competitor context.

    Examples:
        >>> prompt = build_answer_system_prompt(["Acme"], ["Globex", "Initech"])
        >>> prompt.endswith("competitors in this space include: Globex, Initech.")
        True
    """
    prompt = ANSWER_SYSTEM_PROMPT

    if brand_names:
        prompt += (
            "\n\nThe user is particularly interested in information about: "
            f"{', '.join(brand_names)}."
        )

    if competitor_names:
        prompt += (
            "\nFor context, competitors in this space include: "
            f"{', '.join(competitor_names)}."
        )

    return prompt
