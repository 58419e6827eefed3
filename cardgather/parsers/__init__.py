# Import all parsers to trigger registration with the registry.
from cardgather.parsers import cagematch  # noqa: F401
from cardgather.parsers import profightdb  # noqa: F401
