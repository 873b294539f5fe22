"""Image prompt compilation for storyboard scenes."""

from enum import Enum
from typing import Union

from .models import Scene, SceneLabel


class VisualStyle(str, Enum):
    """Aesthetic applied uniformly to every image prompt in a batch."""
    CINEMATIC = "cinematic"
    BOLD = "bold"
    MINIMAL = "minimal"
    DOCUMENTARY = "documentary"


STYLE_MODIFIERS: dict[VisualStyle, str] = {
    VisualStyle.CINEMATIC: (
        "cinematic lighting, dramatic shadows, film grain, letterbox framing, "
        "professional cinematography, moody atmosphere, high contrast"
    ),
    VisualStyle.BOLD: (
        "vibrant colors, high saturation, bold contrast, attention-grabbing, "
        "dynamic composition, punchy visuals, energetic"
    ),
    VisualStyle.MINIMAL: (
        "clean composition, lots of negative space, simple, elegant, "
        "soft lighting, muted colors, understated"
    ),
    VisualStyle.DOCUMENTARY: (
        "natural lighting, authentic feel, realistic, candid, "
        "photojournalistic style, genuine moment captured"
    ),
}

LABEL_MOODS: dict[SceneLabel, str] = {
    SceneLabel.HOOK: "attention-grabbing opening shot, intriguing, curiosity-inducing",
    SceneLabel.PAIN: "emotional tension, relatable struggle, empathetic mood",
    SceneLabel.SOLUTION: "hopeful, transformative moment, breakthrough feeling",
    SceneLabel.CTA: "compelling call to action, urgency, decisive moment",
    SceneLabel.TRANSITION: "smooth visual bridge, connecting narrative flow",
}

COMPOSITION_DIRECTIVE = "Vertical 9:16 aspect ratio, mobile-first composition."


def resolve_style(style: Union[VisualStyle, str]) -> VisualStyle:
    """Return the VisualStyle for ``style``, falling back to cinematic."""
    try:
        return VisualStyle(style)
    except ValueError:
        return VisualStyle.CINEMATIC


def compile_prompt(scene: Scene, style: Union[VisualStyle, str]) -> str:
    """Build the image generation prompt for a scene.

    The prompt is the scene's own description (its prompt override when set,
    otherwise the script), the style modifier, the mood of the scene's label
    and the fixed composition directive. Empty parts are left out, so a scene
    with no script still gets style, mood and directive.

    Args:
        scene: Scene to describe.
        style: Visual style; unknown values fall back to cinematic.

    Returns:
        The prompt string. Identical inputs always give identical output.
    """
    description = (scene.image_prompt or scene.script or "").strip().rstrip(".")
    modifier = STYLE_MODIFIERS[resolve_style(style)]
    mood = LABEL_MOODS.get(scene.label, "")

    parts = [description, f"Visual style: {modifier}", mood]
    body = ". ".join(part for part in parts if part)
    return f"{body}. {COMPOSITION_DIRECTIVE}"
