"""
Preset Library: hidden prompts wrapped around the caller's direction.
Callers pick a style or a landing section; we inject the actual instructions.
"""

from typing import Optional

from .errors import ValidationError

ANALYSIS_PROMPT = """You are a senior e-commerce creative strategist.

Study the product in this image and return ONLY a JSON object (no markdown) with:
{
  "product": "short product name",
  "category": "product category",
  "audience": "who buys this",
  "selling_points": ["3 to 5 concrete benefits"],
  "visual_style": "colors, materials and mood visible in the photo",
  "ad_angles": ["2 or 3 hooks for a short video ad"]
}
Be specific and factual about what is visible. Do not invent certifications or prices."""


IMAGE_STYLES = {
    "studio": {
        "id": "studio",
        "name": "Studio Packshot",
        "prompt": (
            "Premium product packshot on a seamless light-grey studio background, soft box "
            "lighting with a gentle rim light, crisp reflections, centered composition, "
            "commercial e-commerce quality"
        ),
    },
    "lifestyle": {
        "id": "lifestyle",
        "name": "Lifestyle",
        "prompt": (
            "The product in use in a bright, modern home setting, natural window light, shallow "
            "depth of field, warm inviting tones, authentic social-media ad aesthetic"
        ),
    },
    "minimal": {
        "id": "minimal",
        "name": "Minimal",
        "prompt": (
            "Minimalist composition, the product on a pastel color block with a single hard "
            "shadow, generous negative space for ad copy, bold and clean"
        ),
    },
    "ugc": {
        "id": "ugc",
        "name": "UGC Selfie",
        "prompt": (
            "Handheld smartphone photo of a person showing the product to camera, casual "
            "everyday setting, natural imperfect lighting, authentic user-generated look"
        ),
    },
}

DEFAULT_IMAGE_STYLE = "studio"


LANDING_SECTIONS = {
    "hero": "A hero block: a headline under 10 words, a one-sentence subheadline and a call-to-action label.",
    "features": "A features block: a title and 3 to 4 items, each with a short title and one-sentence description.",
    "benefits": "A benefits block: a title and 3 outcome-focused benefits, each with a title and description.",
    "testimonials": "A testimonials block: a title and 3 plausible short customer quotes with first name and city.",
    "faq": "An FAQ block: a title and 4 question/answer pairs addressing common purchase objections.",
    "cta": "A closing call-to-action block: a headline, a one-sentence urgency line and a button label.",
}

SECTION_FORMAT = """Return ONLY a JSON object (no markdown) shaped like:
{"type": "<section>", "title": "...", "subtitle": "...", "items": [{"title": "...", "text": "..."}], "cta": "..."}
Omit keys that do not apply to this section."""


VIDEO_MOTION_PROMPT = (
    "Smooth cinematic product ad, slow camera push-in, subtle parallax, soft natural "
    "lighting, keep the product shape, label and colors exactly as in the image."
)


def image_style_names() -> list:
    return list(IMAGE_STYLES.keys())


def landing_section_names() -> list:
    return list(LANDING_SECTIONS.keys())


def get_image_style(style_id: Optional[str]) -> dict:
    style = IMAGE_STYLES.get(style_id or DEFAULT_IMAGE_STYLE)
    if not style:
        raise ValidationError(f"Unknown image style: {style_id}. Available: {image_style_names()}")
    return style


def build_analysis_prompt(direction: Optional[str] = None) -> str:
    if direction:
        return f"{ANALYSIS_PROMPT}\n\nAdditional direction: {direction}"
    return ANALYSIS_PROMPT


def build_image_prompt(prompt: str, style_id: Optional[str] = None, has_reference: bool = False) -> str:
    style = get_image_style(style_id)
    lines = [style["prompt"], f"Direction: {prompt}"]
    if has_reference:
        lines.append("Keep the product exactly as it appears in the reference image.")
    return "\n\n".join(lines)


def build_section_prompt(
    section: str,
    prompt: str,
    product_name: Optional[str] = None,
    language: str = "en",
) -> str:
    instructions = LANDING_SECTIONS.get(section)
    if not instructions:
        raise ValidationError(f"Unknown landing section: {section}. Available: {landing_section_names()}")
    product = f" for the product '{product_name}'" if product_name else ""
    return (
        f"You write high-converting landing page copy{product}.\n"
        f"{instructions}\n"
        f"Write in language: {language}.\n"
        f"Brief: {prompt}\n\n"
        f"{SECTION_FORMAT.replace('<section>', section)}"
    )


def build_video_prompt(prompt: str) -> str:
    return f"{VIDEO_MOTION_PROMPT} {prompt}".strip()
