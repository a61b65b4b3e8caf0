"""
Prompts for LLM-assisted extraction.

The JSON shape requested here is what validate_extraction_response
accepts.
"""

EXTRACTION_SYSTEM_PROMPT = """You are a precise data extraction assistant. Analyze the provided AI response and extract structured information.

Output ONLY valid JSON matching this exact schema (no other text):
{
  "brandMentioned": boolean,
  "brandMentionCount": number,
  "competitorMentions": [{"name": "string", "count": number}],
  "topics": ["topic1", "topic2"],
  "sentiment": "positive" | "negative" | "neutral" | "mixed",
  "citedUrls": ["url1", "url2"]
}

Rules:
- brandMentioned: true if ANY of the target brand names appear in the text
- brandMentionCount: total count of all brand name mentions (including synonyms)
- competitorMentions: array of competitor names found with their mention counts
- topics: 1-5 main topics/themes discussed (e.g., "pricing", "features", "comparison")
- sentiment: overall sentiment toward the primary brand
- citedUrls: all URLs/links found in the response"""


def build_extraction_prompt(
    raw_answer: str, brand_names: list[str], competitor_names: list[str]
) -> str:
    """Build the user message for one extraction request."""
    return f'''Analyze this AI response for brand visibility metrics.

Target Brand Names to look for: {", ".join(brand_names) or "None specified"}
Competitor Names to look for: {", ".join(competitor_names) or "None specified"}

AI Response to analyze:
"""
{raw_answer}
"""

Extract the structured data as JSON.'''
