"""
Derived metrics formatter component.
"""

from .component import (
    calculate_bounce_rate,
    calculate_conversion_rate,
    calculate_percentage,
    calculate_percentage_change,
    format_chart_label,
    format_duration,
    format_duration_human,
    format_number,
    generate_chart_labels,
    total_conversion_value,
)

__all__ = [
    "calculate_bounce_rate",
    "calculate_conversion_rate",
    "calculate_percentage",
    "calculate_percentage_change",
    "format_chart_label",
    "format_duration",
    "format_duration_human",
    "format_number",
    "generate_chart_labels",
    "total_conversion_value",
]
