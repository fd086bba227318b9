from typing import Iterable, List, Optional
from flask import current_app
import anthropic
from anthropic import Anthropic

SYSTEM_PROMPT = (
    "You are a helpful assistant that writes authentic, positive Google reviews for businesses. "
    "Each review should sound like it was written by a different person with their own unique voice, "
    "writing style, and perspective. Avoid repetitive patterns and make each review feel fresh and original."
)

# 4-point emoji scale; only these get a drafted review
POSITIVE_RATINGS = {3: "good", 4: "excellent"}


def opening_words(reviews: Iterable[str], words: int = 4) -> List[str]:
    return [" ".join(r.split()[:words]) for r in reviews if r and r.strip()]


def build_prompt(*, business_name: str, location: Optional[str], keywords: List[str], rating: int,
                 previous_reviews: Iterable[str] = ()) -> str:
    rating_text = POSITIVE_RATINGS.get(rating, "excellent")
    keyword_list = ", ".join(keywords)
    avoid = ""
    beginnings = opening_words(previous_reviews)
    if beginnings:
        lines = "\n".join(f'- "{b}..."' for b in beginnings)
        avoid = (
            "\n\nIMPORTANT: Avoid starting your review with these phrases that were used in recent reviews "
            f"for this business:\n{lines}\n\nMake sure your review starts with completely different words and phrases."
        )
    where = f" in {location}" if location else ""
    return (
        f"Write a positive Google review for {business_name}{where}.\n\n"
        f"The customer had a {rating_text} experience. The business is related to: {keyword_list}.\n\n"
        "Requirements:\n"
        "- Write in first person as a customer\n"
        "- Mention the business name and location naturally\n"
        f"- Include relevant keywords: {keyword_list}\n"
        "- Keep it authentic and specific (not generic) but not too specific (no details).\n"
        "- 3-4 sentences long\n"
        "- End with a recommendation\n"
        "- Make it sound like a real customer review\n"
        "- Do not use em dashes\n"
        f"- Make every review different and unique.{avoid}\n"
    )


class ReviewGenerator:
    """
    Drafts review text with Claude. Any failure (no key, timeout, API error)
    yields an empty string: the customer page then lets them write their own.
    """

    def __init__(self, client: Optional[Anthropic], *, model: str, max_tokens: int = 200, temperature: float = 0.9):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_config(cls, config) -> "ReviewGenerator":
        key = config.get("ANTHROPIC_API_KEY")
        client = None
        if key:
            client = Anthropic(
                api_key=key,
                timeout=float(config.get("ANTHROPIC_TIMEOUT_SECONDS", 15)),
                max_retries=int(config.get("ANTHROPIC_MAX_RETRIES", 1)),
            )
        return cls(client, model=config.get("ANTHROPIC_MODEL", "claude-sonnet-4-5"))

    def generate(self, *, business_name: str, location: Optional[str], keywords: List[str], rating: int,
                 previous_reviews: Iterable[str] = ()) -> str:
        if self.client is None:
            current_app.logger.error("review.generate.api_key_missing")
            return ""
        prompt = build_prompt(
            business_name=business_name,
            location=location,
            keywords=keywords,
            rating=rating,
            previous_reviews=previous_reviews,
        )
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError:
            current_app.logger.warning("review.generate.timeout", extra={"model": self.model})
            return ""
        except anthropic.APIError as exc:
            current_app.logger.warning(
                "review.generate.failed", extra={"model": self.model, "error": type(exc).__name__}
            )
            return ""
        return _extract_text(response)


def _extract_text(response) -> str:
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            return (block.text or "").strip()
    return ""


def init_generator(app) -> None:
    app.extensions["review_generator"] = ReviewGenerator.from_config(app.config)


def get_review_generator() -> ReviewGenerator:
    return current_app.extensions["review_generator"]
