import logging

__version__ = "0.1.0"

logger = logging.getLogger("fetchdmc")
logger.setLevel("INFO")
logger.propagate = 0
ch = logging.StreamHandler()
FORMAT = "[%(asctime)s] - %(name)s - %(levelname)s: %(message)s"
formatter = logging.Formatter(FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
ch.setFormatter(formatter)
logger.addHandler(ch)

from fetchdmc.fetchdata import FetchData, get_data  # NOQA
