from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TaskDefinition:
    id: str
    title: str
    description: str
    category: str
    requires_duration: bool = False
    required_duration: int | None = None  # minutes
    requires_notes: bool = False
    requires_photo: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "requires_duration": self.requires_duration,
            "required_duration": self.required_duration,
            "requires_notes": self.requires_notes,
            "requires_photo": self.requires_photo,
        }


TASK_DEFINITIONS: tuple[TaskDefinition, ...] = (
    TaskDefinition(
        id="workout-indoor",
        title="Indoor Workout",
        description="Complete a 45-minute indoor workout",
        category="workout_indoor",
        requires_duration=True,
        required_duration=45,
        requires_notes=True,
    ),
    TaskDefinition(
        id="workout-outdoor",
        title="Outdoor Workout",
        description="Complete a 45-minute outdoor workout",
        category="workout_outdoor",
        requires_duration=True,
        required_duration=45,
        requires_notes=True,
    ),
    TaskDefinition(
        id="read-nonfiction",
        title="Read 10 Pages",
        description="Read 10 pages of a non-fiction book",
        category="reading",
        requires_notes=True,
    ),
    TaskDefinition(
        id="progress-photo",
        title="Progress Photo",
        description="Take a daily progress photo",
        category="progress_photo",
        requires_photo=True,
    ),
    TaskDefinition(
        id="water-intake",
        title="Water Intake",
        description="Drink 1 gallon (3.78L) of water",
        category="water",
    ),
    TaskDefinition(
        id="follow-diet",
        title="Follow Diet",
        description="Stick to your chosen diet with no cheat meals or alcohol",
        category="diet",
        requires_notes=True,
    ),
)

TASK_IDS = frozenset(t.id for t in TASK_DEFINITIONS)


def get_task(task_id: str) -> TaskDefinition | None:
    return next((t for t in TASK_DEFINITIONS if t.id == task_id), None)
