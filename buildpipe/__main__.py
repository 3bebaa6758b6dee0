import sys

import asyncio
import uvicorn

from buildpipe.cli import run_once
from buildpipe.config import config

USAGE = 'usage: python -m buildpipe server | run <repo> <commit> [branch]'


if len(sys.argv) == 1:
    raise SystemExit(USAGE)
if sys.argv[1] == 'server':
    from buildpipe.web import app

    uvicorn.run(app, host=config.host, port=config.port)
elif sys.argv[1] == 'run' and len(sys.argv) in (4, 5):
    ok = asyncio.run(run_once(*sys.argv[2:4], sys.argv[4] if len(sys.argv) == 5 else None))
    raise SystemExit(0 if ok else 1)
else:
    raise SystemExit(USAGE)
