import logging

from buildpipe.config import config

logging.basicConfig(
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
    level=logging.INFO,
)
if config.debug:
    logging.getLogger('buildpipe.runner').setLevel(logging.DEBUG)
    logging.getLogger('buildpipe.utils').setLevel(logging.DEBUG)
