"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

SCAN_MODES = ("incremental", "firehose")
MATCHER_MODES = ("multi", "single")
RECIPIENT_RESOLUTIONS = ("batched", "direct")


@dataclass(frozen=True)
class MatcherConfig:
    """Matcher selection for the scan pipeline."""

    mode: str = "multi"

    def __post_init__(self) -> None:
        if self.mode not in MATCHER_MODES:
            raise ValueError(f"Unsupported matcher mode: {self.mode}")


@dataclass(frozen=True)
class FirehoseConfig:
    """Id-range scan settings (firehose mode only)."""

    batches: int = 20
    batch_size: int = 100


@dataclass(frozen=True)
class ScanConfig:
    """Scan cycle settings."""

    mode: str = "incremental"
    lease_minutes: int = 5
    page_size: int = 100
    preview_chars: int = 200

    def __post_init__(self) -> None:
        if self.mode not in SCAN_MODES:
            raise ValueError(f"Unsupported scan mode: {self.mode}")


@dataclass(frozen=True)
class DispatchConfig:
    """Dispatch cycle settings."""

    batch_size: int = 50
    recipient_resolution: str = "batched"
    stuck_after_minutes: int = 30

    def __post_init__(self) -> None:
        if self.recipient_resolution not in RECIPIENT_RESOLUTIONS:
            raise ValueError(f"Unsupported recipient resolution: {self.recipient_resolution}")
        if self.batch_size < 1:
            raise ValueError(f"Dispatch batch_size must be at least 1, got {self.batch_size}")
