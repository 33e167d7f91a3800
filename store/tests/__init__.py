"""Test package for room store unit and integration tests."""

import logging
import warnings

warnings.filterwarnings(
    "ignore",
    message=r".*recommended to use web\.AppKey.*",
    category=Warning,
)

logging.getLogger("asyncio").setLevel(logging.ERROR)
