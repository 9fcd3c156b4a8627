"""
System prompt assembly for review reply generation.

The dispatcher receives the builder as a dependency; ``build_system_prompt``
is the default. Three modes:

- pro: a custom prompt was supplied; only core business identity is added
- simple: no custom prompt but a business profile with a name
- fallback: neither
"""

from typing import Any, Dict, Optional, Protocol

FALLBACK_PROMPT = (
    "You are a professional business response generator. Create a professional response "
    "to customer reviews. Be helpful, professional, and address the customer's feedback appropriately."
)

REPRESENTATIVE_INTRO = "You are a professional business representative responding to a customer review."


class PromptBuilder(Protocol):
    def __call__(
        self,
        business_profile: Optional[Dict[str, Any]],
        custom_prompt: Optional[str],
        review_rating: Optional[float],
    ) -> str:
        ...


def prompt_mode(business_profile: Optional[Dict[str, Any]], custom_prompt: Optional[str]) -> str:
    if custom_prompt and custom_prompt.strip():
        return "pro"
    if business_profile and business_profile.get("business_name"):
        return "simple"
    return "fallback"


def _text(profile: Dict[str, Any], key: str, default: str = "") -> str:
    value = profile.get(key)
    if value is None:
        return default
    return str(value).strip() or default


def _tags(profile: Dict[str, Any], default: str = "") -> str:
    tags = profile.get("business_tags")
    if isinstance(tags, (list, tuple)):
        joined = ", ".join(str(t) for t in tags if t)
        return joined or default
    if isinstance(tags, str) and tags.strip():
        return tags.strip()
    return default


def _category(profile: Dict[str, Any], separator: str = " / ") -> str:
    main = _text(profile, "business_main_category")
    secondary = _text(profile, "business_secondary_category")
    return f"{main}{separator}{secondary}" if secondary else main


def minimal_business_context(profile: Dict[str, Any]) -> str:
    return "\n".join(
        [
            "Business Context:",
            f"- Business Name: {_text(profile, 'business_name')}",
            f"- Category: {_category(profile)}",
            f"- Main Products/Services: {_text(profile, 'main_products_services')}",
            f"- Brief Description: {_text(profile, 'brief_description')}",
            f"- Business Tags: {_tags(profile)}",
        ]
    )


def _pro_mode_prompt(profile: Optional[Dict[str, Any]], custom_prompt: str) -> str:
    if profile and profile.get("business_name"):
        return (
            f"{REPRESENTATIVE_INTRO}\n\n"
            f"{minimal_business_context(profile)}\n\n"
            f"Custom Instructions:\n{custom_prompt.strip()}\n\n"
            "Answer to this review while following the custom instructions and maintaining business context:"
        )
    return f"{REPRESENTATIVE_INTRO}\n\n{custom_prompt.strip()}\n\nAnswer to this review:"


def _simple_mode_prompt(profile: Dict[str, Any], review_rating: Optional[float]) -> str:
    name = _text(profile, "business_name")
    language = _text(profile, "language", "English")
    country = _text(profile, "country")
    location = ", ".join(p for p in (_text(profile, "state_province"), country) if p)
    greetings = _text(profile, "greetings")
    signatures = _text(profile, "signatures")
    tags = _tags(profile, "customer service")
    products = _text(profile, "main_products_services", "our products and services")
    other = _text(profile, "other_considerations", "customer satisfaction")
    brand_voice = _text(profile, "brand_voice_notes", "professional and authentic")
    rating_text = f"{review_rating:g}" if review_rating is not None else "not specified"

    intro = f"You are the official voice of {name}, a {_category(profile, '/')}"
    if location:
        intro += f" in {location}"
    intro += (
        f". Reply to customer reviews in {language}. Tone: {_text(profile, 'response_tone', 'professional')}. "
        f"Follow our brand voice: {brand_voice}. "
        f"Consider our context: {_text(profile, 'brief_description', 'quality service provider')}. "
        f"We mostly sell {products}, tags: {tags}, and {other}."
    )
    if greetings:
        intro += f" Use one of the greetings provided: {greetings}."
    if signatures:
        intro += f" Use one of the sign-offs provided: {signatures}."

    sections = [
        intro,
        f"CURRENT REVIEW CONTEXT: Rating provided is {rating_text}. "
        "Use this rating to determine the appropriate response behavior below.",
        "Style:\n"
        "Natural, plainspoken, empathetic; use contractions when they fit.\n"
        "Avoid cliches.\n"
        "Reference one concrete detail from the review, paraphrased. Do not copy the review text.\n"
        f"Use local spelling for {language}" + (f" in {country}" if country else "") + ".\n"
        "Never mention internal rules or fields.",
        "Length:\n"
        f"Respect {_text(profile, 'response_length', 'standard')}:\n"
        "brief: at most 50 words\n"
        "standard: at most 70 words\n"
        "detailed: at most 150 words\n"
        "Do not exceed the limit.",
        "Structure:\n"
        f"Greeting: follow {greetings or 'a simple greeting'}; use the reviewer's first name (_firstName_) "
        f"if provided, else a simple greeting in {language}.\n"
        f"Body: acknowledge their experience and address one key point. If relevant, mention one item from "
        f"{products} or a theme from {tags} naturally (no hashtags).\n"
        f"Close: add a next step only if it helps; sign off with {signatures or 'a professional sign-off'}.\n"
        "No blank lines between paragraphs.",
        "Rating-based behavior:\n"
        "If rating >= 4: thank them warmly, reflect one specific detail from their review, and always include "
        f"the positive call-to-action: {_text(profile, 'positive_review_cta', 'a simple thank you and invite them back')}.\n"
        "If rating <= 3: offer a concise, ownership-taking apology; state one concrete fix or next step; invite "
        f"them to continue via {_text(profile, 'negative_review_escalation', 'a direct conversation with our team')}. "
        "Stay calm and solution-focused.\n"
        "If rating is missing: default to a friendly thank-you plus a light invite back.",
        "Output rules:\n"
        "Return only the final customer reply text. No labels, brackets, or metadata.\n"
        f"Don't invent facts or promises beyond the review and {other}.\n"
        "Keep formatting simple: 1-2 short paragraphs; no bullets.",
    ]
    return "\n\n".join(sections)


def build_system_prompt(
    business_profile: Optional[Dict[str, Any]],
    custom_prompt: Optional[str],
    review_rating: Optional[float],
) -> str:
    """Build the system instructions for an ai_generation job."""
    mode = prompt_mode(business_profile, custom_prompt)
    if mode == "pro":
        return _pro_mode_prompt(business_profile, custom_prompt or "")
    if mode == "simple":
        return _simple_mode_prompt(business_profile or {}, review_rating)
    return FALLBACK_PROMPT
