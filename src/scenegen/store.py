"""Scene state storage.

Readers get copies of scenes. The only way to change a scene is through a
SceneWriter, and a store hands out one writer at a time, so a batch run that
holds the writer is the sole writer of scene status until it closes it.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional

from .errors import SceneNotFoundError, StoreLockedError, StoryboardError
from .models import Scene, SceneStatus, Storyboard
from .models.scene import check_transition

logger = logging.getLogger(__name__)


class SceneStore(ABC):
    """Storage of a storyboard's scenes, keyed by scene id."""

    def __init__(self) -> None:
        self._writer: Optional["SceneWriter"] = None

    @abstractmethod
    def scene_ids(self) -> list[str]:
        """Return scene ids in storyboard order."""
        ...

    @abstractmethod
    def _load(self, scene_id: str) -> Optional[Scene]:
        ...

    @abstractmethod
    def _save(self, scene: Scene) -> None:
        ...

    def get(self, scene_id: str) -> Scene:
        """Return a copy of the scene.

        Raises:
            SceneNotFoundError: If the id is unknown.
        """
        scene = self._load(scene_id)
        if scene is None:
            raise SceneNotFoundError("Scene not found", scene_id=scene_id)
        return scene.model_copy(deep=True)

    def scenes(self) -> list[Scene]:
        """Return copies of all scenes in storyboard order."""
        return [self.get(scene_id) for scene_id in self.scene_ids()]

    @property
    def locked(self) -> bool:
        return self._writer is not None

    def writer(self) -> "SceneWriter":
        """Acquire the exclusive writer.

        Raises:
            StoreLockedError: If another writer is still open.
        """
        if self._writer is not None:
            raise StoreLockedError("Scene store already has an open writer")
        self._writer = SceneWriter(self)
        return self._writer

    def _release(self, writer: "SceneWriter") -> None:
        if self._writer is writer:
            self._writer = None


class SceneWriter:
    """Exclusive write handle on a SceneStore.

    Every status change is checked against the allowed transitions, so a
    scene can only reach ``video_generating`` from ``image_ready``.
    """

    def __init__(self, store: SceneStore) -> None:
        self._store = store
        self._open = True

    def __enter__(self) -> "SceneWriter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        if self._open:
            self._open = False
            self._store._release(self)

    def get(self, scene_id: str) -> Scene:
        return self._store.get(scene_id)

    def update(self, scene_id: str, **changes: Any) -> Scene:
        """Apply field changes to a scene and persist it.

        Args:
            scene_id: Scene to change.
            **changes: Field values; ``status`` must be a legal transition.

        Returns:
            The updated scene.

        Raises:
            StoreLockedError: If the writer was closed.
            InvalidTransitionError: If the status change is not allowed.
        """
        if not self._open:
            raise StoreLockedError("Writer is closed", scene_id=scene_id)

        scene = self._store.get(scene_id)
        status = changes.get("status")
        if status is not None:
            status = SceneStatus(status)
            if status != scene.status:
                check_transition(scene.status, status, scene_id=scene_id)
            changes["status"] = status

        updated = scene.model_copy(update=changes)
        self._store._save(updated)
        logger.debug(f"Scene {scene_id}: {scene.status.value} -> {updated.status.value}")
        return updated.model_copy(deep=True)

    def reset(self, scene_id: str) -> Scene:
        """Return a scene to draft, clearing its generated media."""
        return self.update(
            scene_id,
            status=SceneStatus.DRAFT,
            generated_image_url=None,
            generated_video_url=None,
            image_is_placeholder=False,
            last_error=None,
        )


class InMemorySceneStore(SceneStore):
    """Scene store backed by a dict."""

    def __init__(self, scenes: Iterable[Scene] = ()) -> None:
        super().__init__()
        self._scenes: dict[str, Scene] = {}
        for scene in scenes:
            if scene.id in self._scenes:
                raise StoryboardError("Duplicate scene id", scene_id=scene.id)
            self._scenes[scene.id] = scene.model_copy(deep=True)

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> "InMemorySceneStore":
        """Build a store from plain scene records."""
        return cls(Scene.from_record(record) for record in records)

    def to_records(self) -> list[dict[str, Any]]:
        return [scene.to_record() for scene in self.scenes()]

    def scene_ids(self) -> list[str]:
        return list(self._scenes)

    def _load(self, scene_id: str) -> Optional[Scene]:
        return self._scenes.get(scene_id)

    def _save(self, scene: Scene) -> None:
        self._scenes[scene.id] = scene


class YamlSceneStore(SceneStore):
    """Scene store persisted as a storyboard YAML file.

    The file is rewritten after every scene update so an interrupted run
    leaves the last known state on disk.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        self._storyboard = Storyboard.from_yaml(path)
        self._storyboard.validate_scenes()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def storyboard(self) -> Storyboard:
        return self._storyboard.model_copy(deep=True)

    def scene_ids(self) -> list[str]:
        return [scene.id for scene in self._storyboard.scenes]

    def _load(self, scene_id: str) -> Optional[Scene]:
        for scene in self._storyboard.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def _save(self, scene: Scene) -> None:
        for i, existing in enumerate(self._storyboard.scenes):
            if existing.id == scene.id:
                self._storyboard.scenes[i] = scene
                break
        else:
            raise SceneNotFoundError("Scene not found", scene_id=scene.id)
        self._storyboard.to_yaml(self._path)
