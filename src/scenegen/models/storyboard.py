"""Storyboard data model."""

from typing import List
from pathlib import Path
from pydantic import BaseModel, Field
import yaml

from ..errors import StoryboardError
from .scene import Scene


class Storyboard(BaseModel):
    """Ordered scenes of one video project."""

    project_name: str = Field(..., description="Project name")
    visual_style: str = Field(default="cinematic", description="Visual style for image prompts")
    aspect_ratio: str = Field(default="9:16", description="Output aspect ratio")
    scenes: List[Scene] = Field(default_factory=list, description="Scenes in narrative order")

    class Config:
        """Pydantic config."""
        frozen = False

    @classmethod
    def from_yaml(cls, path: Path) -> "Storyboard":
        """Load storyboard from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save storyboard to YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(
                self.model_dump(mode="json", exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    def validate_scenes(self) -> None:
        """Raise StoryboardError if the scene list cannot be processed."""
        seen: set[str] = set()
        for scene in self.scenes:
            if not scene.id:
                raise StoryboardError("Scene without an id")
            if scene.id in seen:
                raise StoryboardError("Duplicate scene id", scene_id=scene.id)
            seen.add(scene.id)

    @property
    def total_duration(self) -> float:
        return sum(scene.duration_estimate for scene in self.scenes)
