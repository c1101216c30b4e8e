from dataclasses import dataclass


@dataclass
class AnalyticsConfig:
    """Tunables for deriving dashboard views."""

    # Rows shown per detail table page
    page_size: int = 10
    # Placeholder comparison series as a fraction of the primary value
    comparison_ratio: float = 0.75
    # Entries in the top performers chart until the viewer picks another count
    default_top_count: int = 5
