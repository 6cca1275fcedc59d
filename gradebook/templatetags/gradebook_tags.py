from django import template

from ..aggregation import format_score

register = template.Library()


@register.filter
def score(value, places=2):
    """
    Format a score or average, N/A when undefined.
    Usage: {{ summary.average|score }} or {{ summary.total|score:0 }}
    """
    return format_score(value, places=int(places))
