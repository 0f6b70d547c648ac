# graph package: category taxonomy, day-part windows, data model, edge service
from services.townintel.graph.taxonomy import Category, infer_category
from services.townintel.graph.windows import Window, parse_window

__all__ = [
    "Category",
    "Window",
    "infer_category",
    "parse_window",
]
