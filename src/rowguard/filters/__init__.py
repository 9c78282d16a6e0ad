from .instance_filters import DynamicRestriction, FilterPredicate, InstanceFilterSet
from .rendering import render_sql

__all__ = ["DynamicRestriction", "FilterPredicate", "InstanceFilterSet", "render_sql"]
