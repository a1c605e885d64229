import logging
import os
import sys

logger = logging.getLogger("healthvault")

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)

# Read directly so the client side can log without server configuration.
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
