"""Scene data model."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..errors import InvalidTransitionError


class SceneLabel(str, Enum):
    """Narrative role of a scene."""
    HOOK = "HOOK"
    PAIN = "PAIN"
    SOLUTION = "SOLUTION"
    CTA = "CTA"
    TRANSITION = "TRANSITION"


class SceneStatus(str, Enum):
    """Media generation status of a scene."""
    DRAFT = "draft"
    IMAGE_GENERATING = "image_generating"
    IMAGE_READY = "image_ready"
    VIDEO_GENERATING = "video_generating"
    VIDEO_READY = "video_ready"


# Forward steps plus the resets a regeneration or a failed stage may make.
# Only IMAGE_READY leads into VIDEO_GENERATING.
ALLOWED_TRANSITIONS: dict[SceneStatus, frozenset[SceneStatus]] = {
    SceneStatus.DRAFT: frozenset({
        SceneStatus.IMAGE_GENERATING,
    }),
    SceneStatus.IMAGE_GENERATING: frozenset({
        SceneStatus.IMAGE_READY,
        SceneStatus.DRAFT,
    }),
    SceneStatus.IMAGE_READY: frozenset({
        SceneStatus.VIDEO_GENERATING,
        SceneStatus.IMAGE_GENERATING,
        SceneStatus.DRAFT,
    }),
    SceneStatus.VIDEO_GENERATING: frozenset({
        SceneStatus.VIDEO_READY,
        SceneStatus.IMAGE_READY,
        SceneStatus.DRAFT,
    }),
    SceneStatus.VIDEO_READY: frozenset({
        SceneStatus.IMAGE_READY,
        SceneStatus.IMAGE_GENERATING,
        SceneStatus.DRAFT,
    }),
}

_IMAGE_HOLDING = frozenset({
    SceneStatus.IMAGE_READY,
    SceneStatus.VIDEO_GENERATING,
    SceneStatus.VIDEO_READY,
})


def check_transition(
    current: SceneStatus,
    target: SceneStatus,
    scene_id: Optional[str] = None,
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move scene from {current.value} to {target.value}",
            scene_id=scene_id,
        )


class ReferenceImage(BaseModel):
    """A user-selected reference image attached to a scene."""

    id: str = Field(..., description="Reference identifier")
    url: str = Field(..., description="Image locator")
    name: str = Field(default="", description="Display name")
    asset_id: Optional[str] = Field(None, alias="assetId", description="Originating asset")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class Scene(BaseModel):
    """A narrative unit of a video script and its generated media."""

    id: str = Field(..., description="Unique scene identifier")
    label: SceneLabel = Field(..., description="Narrative role")
    script: str = Field(default="", description="Script text spoken over the scene")
    duration_estimate: float = Field(
        default=5.0,
        alias="durationEstimate",
        description="Estimated duration in seconds",
        ge=0,
    )
    image_prompt: Optional[str] = Field(
        None, alias="imagePrompt", description="Prompt override for image generation"
    )
    generated_image_url: Optional[str] = Field(
        None, alias="generatedImageUrl", description="Generated image locator"
    )
    generated_video_url: Optional[str] = Field(
        None, alias="generatedVideoUrl", description="Generated video locator"
    )
    status: SceneStatus = Field(default=SceneStatus.DRAFT, description="Generation status")
    reference_images: list[ReferenceImage] = Field(
        default_factory=list, alias="referenceImages", description="Reference images"
    )
    thumbnail_candidate: bool = Field(
        default=False, alias="thumbnailCandidate", description="Offered as a thumbnail source"
    )
    image_is_placeholder: bool = Field(
        default=False,
        alias="imageIsPlaceholder",
        description="Image is a fallback placeholder, not a generated result",
    )
    last_error: Optional[str] = Field(
        None, alias="lastError", description="Most recent generation failure"
    )

    class Config:
        """Pydantic config."""
        frozen = False
        populate_by_name = True

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Scene":
        """Build a scene from a stored record (camelCase or snake_case keys)."""
        return cls.model_validate(record)

    def to_record(self) -> dict[str, Any]:
        """Return the scene as plain data using the store's camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @property
    def has_image(self) -> bool:
        """True when the scene holds a usable image for the video stage."""
        return self.status in _IMAGE_HOLDING and bool(self.generated_image_url)

    @property
    def reference_urls(self) -> list[str]:
        return [ref.url for ref in self.reference_images]
