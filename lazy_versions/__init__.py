"""Version algebra and concurrent-safe release state for monorepos."""

from loguru import logger

# Library code stays quiet until the application opts in with
# logger.enable("lazy_versions").
logger.disable("lazy_versions")
