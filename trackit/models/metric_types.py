"""Fixed mapping between local metric names and server metric type ids."""

from dataclasses import dataclass


@dataclass(frozen=True)
class MetricTypeMapping:
    local_name: str
    server_type_id: int
    unit: str


# Only base measurements; calculated metrics (BMI etc.) are never synced.
METRIC_TYPES: tuple[MetricTypeMapping, ...] = (
    MetricTypeMapping("Weight", 1, "kg"),
    MetricTypeMapping("Height", 2, "cm"),
    MetricTypeMapping("Body Fat", 3, "%"),
    MetricTypeMapping("Chest", 4, "cm"),
    MetricTypeMapping("Waist", 5, "cm"),
    MetricTypeMapping("Bicep", 6, "cm"),
    MetricTypeMapping("Thigh", 7, "cm"),
    MetricTypeMapping("Shoulder", 8, "cm"),
    MetricTypeMapping("Glutes", 9, "cm"),
    MetricTypeMapping("Calf", 10, "cm"),
    MetricTypeMapping("Neck", 11, "cm"),
    MetricTypeMapping("Forearm", 12, "cm"),
)

# Must match the server's image_types table
IMAGE_TYPES: dict[int, str] = {
    1: "FRONT",
    2: "BACK",
    3: "SIDE",
    4: "BICEPS",
    5: "CHEST",
    6: "LEGS",
    7: "FULL_BODY",
    8: "OTHER",
}

_BY_NAME = {m.local_name: m for m in METRIC_TYPES}
_BY_ID = {m.server_type_id: m for m in METRIC_TYPES}


def metric_type_id(local_name: str) -> int | None:
    """Server type id for a local metric name, or None if it isn't synced."""
    mapping = _BY_NAME.get(local_name)
    return mapping.server_type_id if mapping else None


def metric_type_for_id(server_type_id: int) -> MetricTypeMapping | None:
    return _BY_ID.get(server_type_id)


def image_category(image_type_id: int) -> str:
    return IMAGE_TYPES.get(image_type_id, "OTHER")
