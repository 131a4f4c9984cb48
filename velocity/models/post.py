from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class BlogPost:
    title: str
    publish_date: str


@dataclass
class ScrapeResult:
    title: str | None = None
    posts: list[BlogPost] = field(default_factory=list)


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    NO_CHANGE = "no-change"


@dataclass(frozen=True)
class WindowMetrics:
    days: int
    current_count: int
    previous_count: int
    trend: Trend
    percentage_change: float


@dataclass
class VelocityMetrics:
    windows: dict[int, WindowMetrics] = field(default_factory=dict)

    def __getitem__(self, days: int) -> WindowMetrics:
        return self.windows[days]


@dataclass
class TitleClassification:
    title: str
    aeo_optimized: bool
    reason: str = ""


@dataclass
class ClassificationResult:
    total_titles: int = 0
    aeo_optimized_count: int = 0
    non_aeo_count: int = 0
    aeo_percentage: float = 0.0
    non_aeo_percentage: float = 0.0
    details: list[TitleClassification] = field(default_factory=list)

    @property
    def aeo_optimized_titles(self) -> list[str]:
        return [d.title for d in self.details if d.aeo_optimized]

    @property
    def non_aeo_titles(self) -> list[str]:
        return [d.title for d in self.details if not d.aeo_optimized]
